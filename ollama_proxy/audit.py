#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
AUDIT - OLLAMA PROXY
====================

Request audit trail.

Features:
- One AuditEvent per proxied request (backend, model, status, duration)
- Fire-and-forget dispatch through a bounded queue
- A background worker persists events to daily JSON Lines files
- Read back recent events, errors, or events for a model/server

A slow or failing store never adds latency or errors to a request:
when the queue is full the event is dropped, when the store fails
the error is logged and the event discarded.
"""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from pathlib import Path
import json
import queue
import threading
import logging

logger = logging.getLogger(__name__)

# =============================================================================
# AUDIT EVENT STRUCTURE
# =============================================================================

@dataclass
class AuditEvent:
    """A proxied request, as recorded in the audit trail."""
    backend_used: Optional[str]
    model_name: Optional[str]
    http_status: Optional[int]
    duration_ms: float
    error_message: Optional[str] = None
    method: Optional[str] = None
    path: Optional[str] = None
    user: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def is_error(self) -> bool:
        return bool(self.error_message) or (self.http_status or 0) >= 400

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        """Create an event from a dictionary."""
        return cls(
            backend_used=data.get("backend_used"),
            model_name=data.get("model_name"),
            http_status=data.get("http_status"),
            duration_ms=data.get("duration_ms", 0.0),
            error_message=data.get("error_message"),
            method=data.get("method"),
            path=data.get("path"),
            user=data.get("user"),
            timestamp=data.get("timestamp", ""),
        )


# =============================================================================
# AUDIT STORE
# =============================================================================

class AuditStore:
    """
    Audit event persistence.

    Stores events in daily JSON Lines files (audit_YYYY-MM-DD.jsonl),
    one event per line, so writes are plain appends.

    Usage:
        store = AuditStore(Path("~/.ollama_proxy/audit").expanduser())
        store.write(event)
        events = store.get_recent(20, errors_only=True)
    """

    def __init__(self, directory: Path):
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def directory(self) -> Path:
        return self._dir

    def _get_daily_file(self, date: Optional[datetime] = None) -> Path:
        """Return the file for a given date."""
        date = date or datetime.now(timezone.utc)
        return self._dir / f"audit_{date.strftime('%Y-%m-%d')}.jsonl"

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def write(self, event: AuditEvent) -> None:
        """Append an event to today's file."""
        line = json.dumps(event.to_dict(), ensure_ascii=False)
        with self._lock:
            with open(self._get_daily_file(), 'a', encoding='utf-8') as f:
                f.write(line + "\n")

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def _read_file(self, filepath: Path) -> List[AuditEvent]:
        events = []
        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        events.append(AuditEvent.from_dict(json.loads(line)))
                    except json.JSONDecodeError:
                        logger.warning(f"Skipping corrupt audit line in {filepath.name}")
        except OSError as e:
            logger.error(f"Error reading {filepath}: {e}")
        return events

    def get_recent(
        self,
        n: int = 20,
        model: Optional[str] = None,
        server: Optional[str] = None,
        errors_only: bool = False,
    ) -> List[AuditEvent]:
        """
        Get the n most recent events, optionally filtered.

        Args:
            n: Number of events to retrieve
            model: Only events for this model
            server: Only events routed to this backend
            errors_only: Only failed requests (status >= 400 or error message)

        Returns:
            Events ordered from most recent to oldest
        """
        results: List[AuditEvent] = []

        for filepath in sorted(self._dir.glob("audit_*.jsonl"), reverse=True):
            for event in reversed(self._read_file(filepath)):
                if model and event.model_name != model:
                    continue
                if server and event.backend_used != server:
                    continue
                if errors_only and not event.is_error:
                    continue
                results.append(event)
                if len(results) >= n:
                    return results

        return results

    def get_stats(self) -> Dict[str, Any]:
        """Aggregate counts over all stored events."""
        total = 0
        errors = 0
        by_server: Dict[str, int] = {}
        by_model: Dict[str, int] = {}
        total_ms = 0.0

        for filepath in sorted(self._dir.glob("audit_*.jsonl")):
            for event in self._read_file(filepath):
                total += 1
                total_ms += event.duration_ms or 0.0
                if event.is_error:
                    errors += 1
                server = event.backend_used or "none"
                by_server[server] = by_server.get(server, 0) + 1
                if event.model_name:
                    by_model[event.model_name] = by_model.get(event.model_name, 0) + 1

        return {
            "total_requests": total,
            "errors": errors,
            "avg_duration_ms": round(total_ms / total, 2) if total else 0.0,
            "by_server": by_server,
            "by_model": by_model,
        }


# =============================================================================
# ASYNC DISPATCH
# =============================================================================

class AuditLogger:
    """
    Best-effort audit dispatcher.

    log() never blocks and never raises; a daemon thread drains the
    queue into the store.

    Usage:
        audit = AuditLogger(store, queue_size=1000)
        audit.start()
        audit.log(event)
        audit.stop()
    """

    _STOP = object()

    def __init__(self, store: Optional[AuditStore], queue_size: int = 1000):
        self._store = store
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=queue_size)
        self._worker: Optional[threading.Thread] = None
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def dropped(self) -> int:
        """Events dropped because the queue was full."""
        return self._dropped

    def start(self) -> None:
        if self._store is None or self.is_running:
            return
        self._worker = threading.Thread(target=self._run, name="audit-writer", daemon=True)
        self._worker.start()
        logger.debug(f"Audit writer started ({self._store.directory})")

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def log(self, event: AuditEvent) -> None:
        """Queue an event for persistence."""
        if self._store is None:
            return
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1
            logger.warning(f"Audit queue full, dropping event for {event.path}")

    def flush(self) -> None:
        """Block until every queued event has been handled."""
        if self.is_running:
            self._queue.join()

    def stop(self, timeout: float = 5.0) -> None:
        """Drain the queue and stop the worker."""
        if not self.is_running:
            return
        self._queue.put(self._STOP)
        self._worker.join(timeout)
        self._worker = None

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is self._STOP:
                    return
                self._store.write(item)
            except Exception as e:
                logger.error(f"Failed to log request: {e}")
            finally:
                self._queue.task_done()
