#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
OLLAMA PROXY - Memory-aware Reverse Proxy for Ollama
====================================================

Sits in front of several Ollama servers (and optional hosted APIs)
and forwards each request to the backend best able to serve it.

Features:
    - Model memory estimation (overrides, live /api/tags, patterns)
    - Per-request availability probing with a busy threshold
    - Priority-based backend selection with degraded fallback
    - Explicit model -> backend assignments (incl. external hosts)
    - Verbatim streaming relay of requests and responses
    - Asynchronous audit trail of every proxied request

Usage:
    # Start the proxy
    ollama-proxy serve

    # Or import components
    from ollama_proxy import load_config, Router
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .config import load_config, ProxyConfig, BackendConfig, ModelConfig
from .cache import MemoryCache
from .estimator import ModelMemoryEstimator
from .prober import AvailabilityProber
from .selector import BackendSelector, SelectedBackend
from .forwarder import RequestForwarder, ProxyRequest, build_request_url
from .router import Router, extract_model_name
from .audit import AuditEvent, AuditLogger, AuditStore
from .exceptions import ProxyError, ConfigError, NoEnabledBackendError, ForwardingError

__all__ = [
    "__version__",

    # Configuration
    "load_config",
    "ProxyConfig",
    "BackendConfig",
    "ModelConfig",

    # Routing engine
    "MemoryCache",
    "ModelMemoryEstimator",
    "AvailabilityProber",
    "BackendSelector",
    "SelectedBackend",
    "RequestForwarder",
    "ProxyRequest",
    "build_request_url",
    "Router",
    "extract_model_name",

    # Audit
    "AuditEvent",
    "AuditLogger",
    "AuditStore",

    # Errors
    "ProxyError",
    "ConfigError",
    "NoEnabledBackendError",
    "ForwardingError",
]


def main():
    """Main entry point - runs the CLI."""
    from .main import main as cli_main
    cli_main()
