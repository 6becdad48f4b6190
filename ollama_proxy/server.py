#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SERVER - OLLAMA PROXY
=====================

Flask application exposing the proxy over HTTP.

Routes:
    GET  /health          backend health report (no auth)
    GET  /up              liveness of the proxy itself (no auth)
    *    /<anything>      proxied to the selected backend (standard methods)

Requests run one per thread (werkzeug threaded server); the upstream
body is streamed back as it arrives.
"""

from typing import Optional
import logging

from flask import Flask, Response, jsonify, request
from werkzeug.serving import run_simple

from .audit import AuditLogger, AuditStore
from .auth import TokenAuthenticator, parse_bearer
from .config import ProxyConfig
from .forwarder import ProxyRequest
from .health import build_health_report
from .prober import AvailabilityProber
from .router import Router

logger = logging.getLogger(__name__)

# Flask routes need an explicit method list; anything else gets a 405
PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS", "TRACE"]

# Handled by other collaborators, never proxied
EXCLUDED_PREFIXES = ("/health", "/up", "/users")

# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app(
    config: ProxyConfig,
    router: Optional[Router] = None,
    authenticator: Optional[TokenAuthenticator] = None,
    audit: Optional[AuditLogger] = None,
) -> Flask:
    """
    Build the Flask application.

    Args:
        config: Loaded proxy configuration
        router: Router to use (built from config if omitted)
        authenticator: Token checker; None disables authentication
        audit: Audit logger handed to the default router
    """
    app = Flask(__name__)
    app.config["PROXY_CONFIG"] = config

    if router is None:
        router = Router.from_config(config, audit)
    prober = AvailabilityProber(config)

    app.extensions["ollama_proxy.router"] = router

    @app.route("/health", methods=["GET"])
    def health() -> Response:
        return jsonify(build_health_report(config, prober))

    @app.route("/up", methods=["GET"])
    def up() -> Response:
        return jsonify({"status": "ok"})

    @app.route("/", defaults={"path": ""}, methods=PROXY_METHODS, provide_automatic_options=False)
    @app.route("/<path:path>", methods=PROXY_METHODS, provide_automatic_options=False)
    def proxy(path: str) -> Response:
        if request.path.startswith(EXCLUDED_PREFIXES):
            return jsonify({"error": "Not found"}), 404

        user_name = None
        if authenticator is not None:
            user = authenticator.authenticate(parse_bearer(request.headers.get("Authorization")))
            if user is None:
                response = jsonify({"error": "Unauthorized"})
                response.status_code = 401
                response.headers["WWW-Authenticate"] = 'Bearer realm="ollama-proxy"'
                return response
            user_name = user.name

        proxy_request = ProxyRequest(
            method=request.method,
            path=request.path,
            query_string=request.query_string.decode("latin-1"),
            headers=dict(request.headers),
            body=request.get_data(cache=False),
        )
        result = router.handle(proxy_request, user=user_name)

        return Response(
            result.body,
            status=result.status_code,
            headers=result.headers,
            direct_passthrough=True,
        )

    return app


# =============================================================================
# PROCESS ENTRY
# =============================================================================

def build_audit_logger(config: ProxyConfig) -> Optional[AuditLogger]:
    if not config.audit.enabled:
        return None
    store = AuditStore(config.audit.directory)
    return AuditLogger(store, queue_size=config.audit.queue_size)


def build_authenticator(config: ProxyConfig) -> Optional[TokenAuthenticator]:
    if not config.auth.enabled:
        return None
    return TokenAuthenticator.from_file(config.auth.users_file)


def serve(config: ProxyConfig, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Run the proxy until interrupted."""
    audit = build_audit_logger(config)
    app = create_app(config, authenticator=build_authenticator(config), audit=audit)

    host = host or config.server.host
    port = port or config.server.port

    if audit is not None:
        audit.start()
    logger.info(f"Ollama proxy listening on http://{host}:{port}")
    try:
        run_simple(host, port, app, threaded=config.server.threaded)
    finally:
        if audit is not None:
            audit.stop()
