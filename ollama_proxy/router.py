#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
ROUTER - OLLAMA PROXY
=====================

Per-request orchestration: the entry point of the routing engine.

For every proxied request the Router:
- Extracts the model name (JSON body or query string)
- Asks the BackendSelector for a backend
- Forwards through the RequestForwarder, timing the call
- Sends an AuditEvent to the audit logger (best effort)
- Returns the upstream response verbatim

Any failure before the upstream answers becomes a generic 500;
the real cause only goes to the log and the audit event.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, Optional
from urllib.parse import parse_qs
import json
import re
import time
import logging

from .audit import AuditEvent, AuditLogger
from .config import ProxyConfig
from .estimator import ModelMemoryEstimator
from .forwarder import ProxyRequest, RequestForwarder, UpstreamResponse
from .prober import AvailabilityProber
from .selector import BackendSelector, SelectedBackend

logger = logging.getLogger(__name__)

# =============================================================================
# MODEL NAME EXTRACTION
# =============================================================================

# Endpoints carrying the model in the JSON body
BODY_MODEL_ENDPOINTS = (
    "/api/generate",
    "/api/chat",
    "/api/embed",
    "/v1/chat/completions",
    "/v1/completions",
    "/v1/embeddings",
)

# Endpoints carrying the model as a name/model parameter
NAMED_MODEL_ENDPOINTS = re.compile(r"/api/(pull|push|show)")


def _json_object(body: bytes) -> Optional[dict]:
    if not body:
        return None
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def _as_name(value) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def extract_model_name(request: ProxyRequest) -> Optional[str]:
    """
    Find the model a request is about.

    Malformed bodies yield None, never an error.
    """
    path = request.path

    if any(endpoint in path for endpoint in BODY_MODEL_ENDPOINTS):
        body = _json_object(request.body)
        return _as_name(body.get("model")) if body else None

    if NAMED_MODEL_ENDPOINTS.search(path):
        params = parse_qs(request.query_string or "")
        for key in ("name", "model"):
            if params.get(key):
                return _as_name(params[key][0])
        body = _json_object(request.body)
        if body:
            return _as_name(body.get("name")) or _as_name(body.get("model"))

    return None


# =============================================================================
# ROUTER RESPONSE
# =============================================================================

ERROR_BODY = json.dumps({"error": "Internal server error"}).encode("utf-8")


@dataclass
class RouterResponse:
    """What the HTTP layer sends back to the caller."""
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Iterable[bytes] = ()
    backend_name: Optional[str] = None

    @classmethod
    def internal_error(cls) -> 'RouterResponse':
        return cls(
            status_code=500,
            headers={"Content-Type": "application/json"},
            body=[ERROR_BODY],
        )


class AuditedBody:
    """
    Response body that reports completion exactly once.

    Iterating relays the upstream body; close() (called by the WSGI
    server, also on client disconnect) releases the upstream
    connection and fires the completion callback.
    """

    def __init__(self, upstream: UpstreamResponse, on_complete: Callable[[Optional[str]], None]):
        self._upstream = upstream
        self._on_complete = on_complete
        self._error: Optional[str] = None
        self._closed = False

    def __iter__(self) -> Iterator[bytes]:
        try:
            for chunk in self._upstream.iter_raw():
                yield chunk
        except Exception as e:
            self._error = str(e)
            logger.error(f"Upstream relay from {self._upstream.backend.name} aborted: {e}")
            raise
        finally:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._upstream.close()
        finally:
            self._on_complete(self._error)


# =============================================================================
# MAIN CLASS
# =============================================================================

class Router:
    """
    Request router.

    Usage:
        router = Router.from_config(config, audit_logger)
        response = router.handle(proxy_request, user="alice")
        for chunk in response.body:
            ...
    """

    def __init__(
        self,
        selector: BackendSelector,
        forwarder: RequestForwarder,
        audit: Optional[AuditLogger] = None,
    ):
        self.selector = selector
        self.forwarder = forwarder
        self.audit = audit

    @classmethod
    def from_config(cls, config: ProxyConfig, audit: Optional[AuditLogger] = None) -> 'Router':
        """Wire estimator, prober, selector and forwarder from one config."""
        estimator = ModelMemoryEstimator(config)
        prober = AvailabilityProber(config)
        selector = BackendSelector(config, estimator, prober)
        return cls(selector, RequestForwarder(config), audit)

    # -------------------------------------------------------------------------
    # Request Handling
    # -------------------------------------------------------------------------

    def handle(self, request: ProxyRequest, user: Optional[str] = None) -> RouterResponse:
        """Route one request and return the response to relay."""
        start = time.perf_counter()
        model_name: Optional[str] = None
        selected: Optional[SelectedBackend] = None

        try:
            model_name = extract_model_name(request)
            selected = self.selector.select(model_name)
            logger.info(
                f"Routing {request.method} {request.path} to {selected.name} "
                f"for model: {model_name or 'unknown'}"
            )
            upstream = self.forwarder.forward(request, selected.backend)
        except Exception as e:
            logger.error(f"Proxy error: {e}")
            self._dispatch(AuditEvent(
                backend_used=selected.name if selected else None,
                model_name=model_name,
                http_status=500,
                duration_ms=_elapsed_ms(start),
                error_message=str(e),
                method=request.method,
                path=request.path,
                user=user,
            ))
            return RouterResponse.internal_error()

        def on_complete(error: Optional[str]) -> None:
            self._dispatch(AuditEvent(
                backend_used=selected.name,
                model_name=model_name,
                http_status=upstream.status_code,
                duration_ms=_elapsed_ms(start),
                error_message=error,
                method=request.method,
                path=request.path,
                user=user,
            ))

        return RouterResponse(
            status_code=upstream.status_code,
            headers=upstream.headers,
            body=AuditedBody(upstream, on_complete),
            backend_name=selected.name,
        )

    def _dispatch(self, event: AuditEvent) -> None:
        if self.audit is None:
            return
        try:
            self.audit.log(event)
        except Exception as e:
            logger.error(f"Failed to log request: {e}")


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)
