#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
MEMORY CACHE - OLLAMA PROXY
===========================

Thread-safe TTL cache of model memory estimates (model name -> GB).

Entries are replaced, never mutated. Concurrent writers for the same
model simply overwrite each other; the TTL bounds how stale a value
can get.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional
import threading
import time
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """A cached memory estimate."""
    model_name: str
    memory_gb: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class MemoryCache:
    """
    TTL key-value store for model memory estimates.

    Usage:
        cache = MemoryCache(ttl_seconds=3600)
        cache.set("llama2:13b", 7.4)
        cache.get("llama2:13b")  # 7.4 until the entry expires
    """

    def __init__(self, ttl_seconds: float = 3600, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, model_name: str) -> Optional[float]:
        """Return the cached value, or None if missing or expired."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(model_name)
            if entry is None:
                return None
            if entry.is_expired(now):
                del self._entries[model_name]
                logger.debug(f"Cache entry expired for {model_name}")
                return None
            return entry.memory_gb

    def set(self, model_name: str, memory_gb: float, ttl_seconds: Optional[float] = None) -> CacheEntry:
        """Store (or replace) the estimate for a model."""
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        entry = CacheEntry(model_name, memory_gb, self._clock() + ttl)
        with self._lock:
            self._entries[model_name] = entry
        return entry

    def invalidate(self, model_name: str) -> None:
        with self._lock:
            self._entries.pop(model_name, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
