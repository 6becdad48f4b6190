"""Test doubles for the HTTP and ollama clients."""

import time
from typing import Any, Dict, List, Optional

import requests
from requests.structures import CaseInsensitiveDict


class FakeRaw:
    """Stands in for urllib3's raw response."""

    def __init__(self, chunks: List[bytes]):
        self.chunks = list(chunks)
        self.closed = False
        self.decode_flags: List[Any] = []

    def stream(self, amt=None, decode_content=None):
        self.decode_flags.append(decode_content)
        for chunk in self.chunks:
            yield chunk

    def close(self):
        self.closed = True


def make_response(status: int = 200, body: bytes = b"", headers: Optional[Dict[str, str]] = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.headers = CaseInsensitiveDict(headers or {})
    response.raw = FakeRaw([body] if body else [])
    return response


class FakeHTTP:
    """
    Minimal requests replacement keyed by URL.

    Each route maps to a response, an exception to raise, or a
    (delay_seconds, response) tuple.
    """

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes: Dict[str, Any] = dict(routes or {})
        self.calls: List[Dict[str, Any]] = []

    def _answer(self, url: str):
        answer = self.routes.get(url)
        if answer is None:
            raise requests.exceptions.ConnectionError(f"Connection refused: {url}")
        if isinstance(answer, tuple):
            delay, answer = answer
            time.sleep(delay)
        if isinstance(answer, Exception):
            raise answer
        return answer

    def get(self, url, timeout=None, **kwargs):
        self.calls.append({"method": "GET", "url": url, "timeout": timeout, **kwargs})
        return self._answer(url)

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        return self._answer(url)

    def calls_to(self, url: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["url"] == url]


class FakeOllamaClient:
    """
    Replacement for ollama.Client serving canned /api/tags catalogs.

    `catalogs` maps a host URL to a list of {"model", "size"} dicts,
    or to an exception raised by list().
    """

    catalogs: Dict[str, Any] = {}
    list_calls: List[str] = []
    created: List[str] = []

    def __init__(self, host=None, timeout=None, **kwargs):
        self.host = host
        self.timeout = timeout
        FakeOllamaClient.created.append(host)

    def list(self):
        FakeOllamaClient.list_calls.append(self.host)
        catalog = FakeOllamaClient.catalogs.get(self.host)
        if catalog is None:
            raise ConnectionError(f"Failed to connect to {self.host}")
        if isinstance(catalog, Exception):
            raise catalog
        return {"models": catalog}


class RecordingAudit:
    """Collects audit events instead of persisting them."""

    def __init__(self):
        self.events = []

    def log(self, event):
        self.events.append(event)


class StubProber:
    """Availability decided by backend name."""

    def __init__(self, available=()):
        self.available = set(available)
        self.probed: List[str] = []

    def is_available(self, backend) -> bool:
        self.probed.append(backend.name)
        return backend.name in self.available
