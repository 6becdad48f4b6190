#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
MODEL MEMORY ESTIMATOR - OLLAMA PROXY
=====================================

Resolves a model name to the memory (GB) it needs.

Resolution order, first hit wins:
1. No model name          -> default_memory_gb
2. memory_overrides       -> operator value
3. Memory cache           -> previous live lookup (if enabled)
4. Live /api/tags query   -> reported size of the model on a backend
5. memory_patterns        -> first matching regex
6. default_memory_gb

estimate() never raises: backend failures are logged and skipped.
"""

from typing import Any, Iterable, List, Optional, Tuple
import logging

import ollama

from .cache import MemoryCache
from .config import BackendConfig, ProxyConfig, DEFAULT_MEMORY_GB

logger = logging.getLogger(__name__)

BYTES_PER_GB = 1024 ** 3


def bytes_to_gb(size_bytes: float) -> float:
    """Convert a byte count to GB rounded to one decimal."""
    return round(float(size_bytes) / BYTES_PER_GB, 1)


def _catalog_entries(response: Any) -> List[Tuple[str, Optional[int]]]:
    """
    Normalize an ollama list() response to (name, size) pairs.

    Handles both the typed ListResponse and the plain dict returned by
    older client versions.
    """
    if isinstance(response, dict):
        raw_models: Iterable[Any] = response.get("models", [])
    else:
        raw_models = getattr(response, 'models', None) or []

    entries = []
    for m in raw_models:
        if isinstance(m, dict):
            name = m.get("model") or m.get("name")
            size = m.get("size")
        else:
            name = getattr(m, 'model', None) or getattr(m, 'name', None)
            size = getattr(m, 'size', None)
        if name:
            entries.append((name, size))
    return entries


def _same_model(requested: str, listed: str) -> bool:
    """Exact match, or an untagged name against its ':latest' entry."""
    if requested == listed:
        return True
    return ":" not in requested and listed == f"{requested}:latest"


class ModelMemoryEstimator:
    """
    Model memory estimator.

    Usage:
        estimator = ModelMemoryEstimator(config, cache)
        estimator.estimate("llama2:70b")  # 38.9
    """

    def __init__(self, config: ProxyConfig, cache: Optional[MemoryCache] = None):
        self._config = config
        self._model_config = config.model
        if cache is None and self._model_config.cache_enabled:
            cache = MemoryCache(ttl_seconds=self._model_config.cache_ttl_seconds)
        self._cache = cache if self._model_config.cache_enabled else None
        # One client (and connection pool) per server, reused across lookups
        self._clients = {
            backend.name: ollama.Client(host=backend.base_url, timeout=config.model_info_timeout)
            for backend in config.enabled_local_backends()
        }

    @property
    def default_memory_gb(self) -> float:
        value = self._model_config.default_memory_gb
        return value if value is not None else DEFAULT_MEMORY_GB

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def estimate(self, model_name: Optional[str]) -> float:
        """
        Estimate the memory needed by a model.

        Args:
            model_name: Model name as sent by the client (may be None)

        Returns:
            Memory in GB, always a usable number
        """
        if not model_name:
            return self.default_memory_gb

        overrides = self._model_config.memory_overrides
        if model_name in overrides:
            return overrides[model_name]

        memory_gb = self.fetch_from_backends(model_name)
        if memory_gb is not None:
            return memory_gb

        memory_gb = self.match_pattern(model_name)
        if memory_gb is not None:
            return memory_gb

        return self.default_memory_gb

    def match_pattern(self, model_name: str) -> Optional[float]:
        """Return the memory of the first matching pattern rule."""
        for rule in self._model_config.memory_patterns:
            if rule.matches(model_name):
                return rule.memory_gb
        return None

    def fetch_from_backends(self, model_name: str) -> Optional[float]:
        """
        Look the model up in the cache, then in each enabled server's catalog.

        Returns:
            Memory in GB, or None if no backend knows the model
        """
        if self._cache is not None:
            cached = self._cache.get(model_name)
            if cached is not None:
                logger.debug(f"Memory cache hit for {model_name}: {cached} GB")
                return cached

        for backend in self._config.enabled_local_backends():
            try:
                size = self._query_size(backend, model_name)
            except Exception as e:
                logger.warning(f"Failed to fetch model info from {backend.name}: {e}")
                continue

            if size is None:
                continue

            memory_gb = bytes_to_gb(size)
            logger.debug(f"{model_name} reported by {backend.name}: {memory_gb} GB")
            if self._cache is not None:
                self._cache.set(model_name, memory_gb, self._model_config.cache_ttl_seconds)
            return memory_gb

        return None

    # -------------------------------------------------------------------------
    # Backend Query
    # -------------------------------------------------------------------------

    def _query_size(self, backend: BackendConfig, model_name: str) -> Optional[int]:
        """Return the size in bytes reported by one backend, if listed."""
        client = self._clients[backend.name]
        for name, size in _catalog_entries(client.list()):
            if _same_model(model_name, name) and size:
                return size
        return None
