#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
AVAILABILITY PROBER - OLLAMA PROXY
==================================

Point-in-time liveness/latency check against a backend root endpoint.

A backend is available when GET / answers with a success status in
less than server_busy_threshold_ms. No retry: this runs for every
candidate on every request, so it has to stay cheap.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import time
import logging

import requests

from .config import BackendConfig, ProxyConfig

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    """Outcome of a single probe."""
    ok: bool
    status_code: Optional[int] = None
    response_time_ms: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"status": "healthy" if self.ok else "unhealthy"}
        if self.response_time_ms is not None:
            data["response_time_ms"] = self.response_time_ms
        if self.error:
            data["error"] = self.error
        return data


class AvailabilityProber:
    """
    Backend availability checker.

    Usage:
        prober = AvailabilityProber(config)
        if prober.is_available(backend):
            ...
    """

    def __init__(self, config: ProxyConfig, session: Optional[requests.Session] = None):
        self.timeout = config.probe_timeout
        self.busy_threshold_ms = config.server_busy_threshold_ms
        self._http = session or requests

    def probe(self, backend: BackendConfig, timeout: Optional[float] = None) -> ProbeResult:
        """GET the backend root and measure the round trip."""
        url = f"{backend.base_url}/"
        start = time.perf_counter()
        try:
            response = self._http.get(url, timeout=timeout or self.timeout)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Probe of {backend.name} failed: {e}")
            return ProbeResult(ok=False, error=str(e))

        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
        return ProbeResult(
            ok=200 <= response.status_code < 300,
            status_code=response.status_code,
            response_time_ms=elapsed_ms,
        )

    def is_available(self, backend: BackendConfig) -> bool:
        """True if the backend answered successfully and below the busy threshold."""
        result = self.probe(backend)
        if not result.ok:
            return False
        if result.response_time_ms >= self.busy_threshold_ms:
            logger.info(
                f"{backend.name} is busy ({result.response_time_ms:.0f} ms "
                f">= {self.busy_threshold_ms:.0f} ms)"
            )
            return False
        return True
