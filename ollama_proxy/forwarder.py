#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
REQUEST FORWARDER - OLLAMA PROXY
================================

Relays an inbound HTTP request to the chosen backend and hands the
upstream response back untouched.

This module handles:
- Target URL construction
- Header filtering (the caller's credential never reaches a backend)
- API key injection for external hosts
- Streaming relay of the raw upstream body

One upstream attempt per inbound request, no retry.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterator, Mapping, Optional
import os
import logging

import requests

from .config import BackendConfig, ProxyConfig
from .exceptions import ForwardingError

logger = logging.getLogger(__name__)

# =============================================================================
# HEADER RULES
# =============================================================================

# Never forwarded upstream. "version" is the HTTP-version pseudo-header
# some servers expose as a regular header.
EXCLUDED_REQUEST_HEADERS = frozenset({
    "authorization",
    "host",
    "version",
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "content-length",
})

EXCLUDED_RESPONSE_HEADERS = frozenset({"transfer-encoding", "connection"})

CHUNK_SIZE = 8192

# =============================================================================
# REQUEST / RESPONSE STRUCTURES
# =============================================================================

@dataclass
class ProxyRequest:
    """An inbound request, owned by one request-handling flow."""
    method: str
    path: str
    query_string: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""


class UpstreamResponse:
    """
    Backend response relayed to the caller.

    The body is streamed raw (no content decoding) so that
    Content-Encoding and Content-Length stay truthful.
    """

    def __init__(self, response: requests.Response, backend: BackendConfig):
        self._response = response
        self.backend = backend
        self.status_code: int = response.status_code
        self.headers: Dict[str, str] = response_headers(response.headers)

    @property
    def content_type(self) -> Optional[str]:
        return self._response.headers.get("content-type")

    def iter_raw(self, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        """Yield the body as received; closes the connection when done or abandoned."""
        try:
            for chunk in self._response.raw.stream(chunk_size, decode_content=False):
                if chunk:
                    yield chunk
        finally:
            self.close()

    def read(self) -> bytes:
        """Read the whole body at once."""
        return b"".join(self.iter_raw())

    def close(self) -> None:
        self._response.close()


# =============================================================================
# PURE HELPERS
# =============================================================================

def build_request_url(backend: BackendConfig, path: str, query_string: Optional[str] = None) -> str:
    """
    Build the upstream URL.

    >>> build_request_url(backend, "/api/tags", "format=json")
    'http://localhost:11435/api/tags?format=json'
    """
    if not path.startswith("/"):
        path = "/" + path
    url = f"{backend.base_url}{path}"
    if query_string:
        url += f"?{query_string}"
    return url


def forward_headers(headers: Mapping[str, str], backend: BackendConfig) -> Dict[str, str]:
    """
    Copy inbound headers for the upstream call.

    Drops credentials and connection-management headers, then injects
    the backend's own API key when one is configured.
    """
    forwarded = {
        key: value for key, value in headers.items()
        if key.lower() not in EXCLUDED_REQUEST_HEADERS
    }

    if backend.api_key_env:
        api_key = os.environ.get(backend.api_key_env)
        if api_key:
            forwarded["Authorization"] = f"Bearer {api_key}"
        else:
            logger.warning(f"API key environment variable {backend.api_key_env} not set")

    return forwarded


def response_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Upstream headers to send back to the caller."""
    return {
        key: value for key, value in headers.items()
        if key.lower() not in EXCLUDED_RESPONSE_HEADERS
    }


# =============================================================================
# MAIN CLASS
# =============================================================================

class RequestForwarder:
    """
    Single-attempt HTTP relay.

    Usage:
        forwarder = RequestForwarder(config)
        upstream = forwarder.forward(proxy_request, backend)
        for chunk in upstream.iter_raw():
            ...
    """

    def __init__(self, config: ProxyConfig, session: Optional[requests.Session] = None):
        self.timeout = config.request_timeout
        self._http = session or requests

    def forward(self, request: ProxyRequest, backend: BackendConfig) -> UpstreamResponse:
        """
        Send the request to the backend.

        Raises:
            ForwardingError: On connection failure or timeout
        """
        url = build_request_url(backend, request.path, request.query_string)
        headers = forward_headers(request.headers, backend)
        # Body goes up whatever the method: DELETE /api/delete carries one
        data = request.body or None

        logger.debug(f"{request.method} {url}")
        try:
            response = self._http.request(
                request.method.upper(),
                url,
                headers=headers,
                data=data,
                stream=True,
                allow_redirects=False,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Upstream request to {backend.name} failed: {e}")
            raise ForwardingError(backend.name, url, e) from e

        return UpstreamResponse(response, backend)
