#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
EXCEPTIONS - OLLAMA PROXY
=========================

Error types raised by the routing engine.

Only configuration and forwarding errors ever leave the core:
probe and catalog failures are absorbed where they happen.
"""

from typing import Optional


class ProxyError(Exception):
    """Base class for all proxy errors."""


class ConfigError(ProxyError):
    """Configuration is invalid or unusable."""


class NoEnabledBackendError(ConfigError):
    """No backend is enabled, nothing can be routed."""

    def __init__(self, message: str = "No enabled servers configured"):
        super().__init__(message)


class ForwardingError(ProxyError):
    """The upstream call failed at the transport level."""

    def __init__(self, backend_name: str, url: str, cause: Optional[Exception] = None):
        self.backend_name = backend_name
        self.url = url
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Forwarding to {backend_name} ({url}) failed{detail}")


class AuthError(ProxyError):
    """The caller could not be authenticated."""
