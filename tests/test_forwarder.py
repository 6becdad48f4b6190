import json

import pytest
import requests

from ollama_proxy.exceptions import ForwardingError
from ollama_proxy.forwarder import (
    ProxyRequest,
    RequestForwarder,
    build_request_url,
    forward_headers,
    response_headers,
)

from tests.helpers import FakeHTTP, make_response

GENERATE_URL = "http://localhost:11435/api/generate"


def test_request_url_with_and_without_query(config):
    backend = config.get_backend("high_performance")
    assert build_request_url(backend, "/api/tags", "") == "http://localhost:11435/api/tags"
    assert build_request_url(backend, "/api/tags", None) == "http://localhost:11435/api/tags"
    assert build_request_url(backend, "/api/tags", "format=json") == "http://localhost:11435/api/tags?format=json"
    assert build_request_url(backend, "api/tags", "") == "http://localhost:11435/api/tags"


def test_external_url_keeps_protocol_and_port(config):
    backend = config.get_backend("openai")
    assert build_request_url(backend, "/v1/chat/completions") == "https://api.openai.com:443/v1/chat/completions"


def test_credentials_and_host_never_forwarded(config):
    inbound = {
        "Authorization": "Bearer proxy-user-token",
        "Host": "proxy.local:11434",
        "Version": "HTTP/1.1",
        "Connection": "keep-alive",
        "Content-Length": "42",
        "Content-Type": "application/json",
        "X-Request-Id": "abc",
    }
    forwarded = forward_headers(inbound, config.get_backend("legacy"))
    assert forwarded == {"Content-Type": "application/json", "X-Request-Id": "abc"}


def test_api_key_injected_for_external_host(config, monkeypatch):
    monkeypatch.setenv("TEST_OPENAI_KEY", "sk-test")
    forwarded = forward_headers({"Authorization": "Bearer proxy-user-token"}, config.get_backend("openai"))
    assert forwarded["Authorization"] == "Bearer sk-test"


def test_missing_api_key_sends_no_credential(config, monkeypatch):
    monkeypatch.delenv("TEST_OPENAI_KEY", raising=False)
    forwarded = forward_headers({"Authorization": "Bearer proxy-user-token"}, config.get_backend("openai"))
    assert "Authorization" not in forwarded


def test_response_headers_filtered():
    headers = response_headers({
        "Content-Type": "application/x-ndjson",
        "Transfer-Encoding": "chunked",
        "Connection": "close",
        "Content-Encoding": "gzip",
    })
    assert headers == {"Content-Type": "application/x-ndjson", "Content-Encoding": "gzip"}


def test_forward_streams_raw_body(config):
    body = json.dumps({"model": "llama2", "prompt": "hi"}).encode()
    upstream_body = b'{"response":"hello","done":true}\n'
    http = FakeHTTP({GENERATE_URL: make_response(
        200, upstream_body, {"Content-Type": "application/json", "Transfer-Encoding": "chunked"}
    )})
    forwarder = RequestForwarder(config, session=http)

    request = ProxyRequest("POST", "/api/generate", headers={"Content-Type": "application/json"}, body=body)
    upstream = forwarder.forward(request, config.get_backend("high_performance"))

    assert upstream.status_code == 200
    assert upstream.headers == {"Content-Type": "application/json"}
    assert upstream.read() == upstream_body

    call = http.calls_to(GENERATE_URL)[0]
    assert call["method"] == "POST"
    assert call["data"] == body
    assert call["stream"] is True
    assert call["allow_redirects"] is False
    assert call["timeout"] == 300

    raw = upstream._response.raw
    assert raw.decode_flags == [False]
    assert raw.closed


def test_error_status_is_relayed_not_raised(config):
    http = FakeHTTP({"http://localhost:11435/api/show": make_response(404, b'{"error":"model not found"}')})
    forwarder = RequestForwarder(config, session=http)
    upstream = forwarder.forward(ProxyRequest("POST", "/api/show", body=b"{}"), config.get_backend("high_performance"))
    assert upstream.status_code == 404
    assert upstream.read() == b'{"error":"model not found"}'


def test_delete_body_forwarded(config):
    url = "http://localhost:11435/api/delete"
    body = b'{"model": "llama2:13b"}'
    http = FakeHTTP({url: make_response(200)})
    forwarder = RequestForwarder(config, session=http)
    forwarder.forward(ProxyRequest("DELETE", "/api/delete", body=body), config.get_backend("high_performance"))
    call = http.calls_to(url)[0]
    assert call["method"] == "DELETE"
    assert call["data"] == body


def test_empty_body_sends_no_data(config):
    url = "http://localhost:11435/api/tags"
    http = FakeHTTP({url: make_response(200, b"{}")})
    forwarder = RequestForwarder(config, session=http)
    forwarder.forward(ProxyRequest("GET", "/api/tags"), config.get_backend("high_performance"))
    assert http.calls_to(url)[0]["data"] is None


def test_transport_failure_raises(config):
    http = FakeHTTP({GENERATE_URL: requests.exceptions.ReadTimeout("read timed out")})
    forwarder = RequestForwarder(config, session=http)
    with pytest.raises(ForwardingError) as exc_info:
        forwarder.forward(ProxyRequest("POST", "/api/generate", body=b"{}"), config.get_backend("high_performance"))
    assert exc_info.value.backend_name == "high_performance"
    assert exc_info.value.url == GENERATE_URL
    assert "read timed out" in str(exc_info.value)
