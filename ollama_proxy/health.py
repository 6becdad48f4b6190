#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
HEALTH - OLLAMA PROXY
=====================

JSON health report for GET /health: one entry per enabled backend.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from .config import BackendConfig, ProxyConfig
from .prober import AvailabilityProber


HEALTH_TIMEOUT = 5


def _server_status(prober: AvailabilityProber, backend: BackendConfig) -> Dict[str, Any]:
    status = prober.probe(backend, timeout=HEALTH_TIMEOUT).to_dict()
    status["priority"] = backend.priority
    status["max_memory_gb"] = backend.max_memory_gb
    return status


def _external_status(prober: AvailabilityProber, backend: BackendConfig) -> Dict[str, Any]:
    result = prober.probe(backend, timeout=HEALTH_TIMEOUT)
    # Hosted APIs often answer / with 401/404; only 5xx means down
    healthy = result.status_code is not None and result.status_code < 500
    status = result.to_dict()
    status["status"] = "healthy" if healthy else "unhealthy"
    status["protocol"] = backend.protocol
    return status


def build_health_report(config: ProxyConfig, prober: AvailabilityProber) -> Dict[str, Any]:
    """Probe every enabled backend and shape the result."""
    servers = {
        b.name: _server_status(prober, b)
        for b in config.local_backends() if b.enabled
    }
    external = {
        b.name: _external_status(prober, b)
        for b in config.external_backends() if b.enabled
    }
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "servers": servers,
        "external_hosts": external,
    }
