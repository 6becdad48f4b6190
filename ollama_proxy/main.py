#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Ollama Proxy - CLI Entry Point
==============================

Command-line interface for the Ollama routing proxy.

Usage:
    ollama-proxy serve [--host HOST] [--port PORT]
    ollama-proxy config show
    ollama-proxy estimate <model>
    ollama-proxy select <model>
    ollama-proxy health
    ollama-proxy logs [-n N] [--model M] [--server S] [--errors]
    ollama-proxy stats
    ollama-proxy token create|revoke <name>
    ollama-proxy --version

Every command accepts --config PATH (default: $OLLAMA_PROXY_CONFIG or
the bundled config/proxy.yaml).
"""

import argparse
import json
import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

from . import __version__
from .config import LoggingSettings, ProxyConfig, load_config, set_config
from .exceptions import ProxyError

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(settings: LoggingSettings, verbose: bool = False) -> None:
    """Console logging, plus a daily rotated file when a directory is set."""
    level = logging.DEBUG if verbose else getattr(logging, settings.level, logging.INFO)
    handlers = [logging.StreamHandler()]

    if settings.directory:
        settings.directory.mkdir(parents=True, exist_ok=True)
        handlers.append(TimedRotatingFileHandler(
            settings.directory / "application.log",
            when="midnight",
            backupCount=settings.max_files,
            encoding="utf-8",
        ))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


def _load(args) -> ProxyConfig:
    try:
        config = load_config(Path(args.config) if args.config else None)
    except ProxyError as e:
        print(f"[ERR] {e}")
        sys.exit(1)
    set_config(config)
    setup_logging(config.logging, verbose=args.verbose)
    return config


# =============================================================================
# SERVE COMMAND
# =============================================================================

def cmd_serve(args):
    """Run the proxy server."""
    from .server import serve

    config = _load(args)
    if not config.enabled_backends():
        print("[ERR] No enabled servers configured")
        sys.exit(1)
    serve(config, host=args.host, port=args.port)


# =============================================================================
# CONFIG COMMAND
# =============================================================================

def cmd_config(args):
    """Show the loaded configuration."""
    config = _load(args)
    data = config.as_dict()

    if args.json:
        print(json.dumps(data, indent=2))
        return

    print(f"\n[CONFIG] {data['source']}\n")
    print(f"{'Name':<20} {'Kind':<10} {'URL':<35} {'On':<4} {'Prio':<5} {'Max GB':<8}")
    print("-" * 85)
    for b in data["backends"]:
        max_gb = b["max_memory_gb"] if b["max_memory_gb"] is not None else "-"
        prio = b["priority"] if b["priority"] is not None else "-"
        print(f"{b['name']:<20} {b['kind']:<10} {b['url']:<35} {'yes' if b['enabled'] else 'no':<4} {prio!s:<5} {max_gb!s:<8}")

    model = data["model_config"]
    print(f"\nDefault memory: {model['default_memory_gb']} GB")
    print(f"Cache: {'on' if model['cache_model_info'] else 'off'} (TTL {model['cache_ttl_seconds']}s)")
    if model["explicit_assignments"]:
        print("\nExplicit assignments:")
        for name, backend in model["explicit_assignments"].items():
            print(f"  {name} -> {backend}")
    if model["memory_patterns"]:
        print("\nMemory patterns:")
        for rule in model["memory_patterns"]:
            print(f"  {rule['pattern']:<20} {rule['memory_gb']} GB")


# =============================================================================
# ROUTING COMMANDS
# =============================================================================

def cmd_estimate(args):
    """Show the memory estimate for a model."""
    from .estimator import ModelMemoryEstimator

    config = _load(args)
    memory_gb = ModelMemoryEstimator(config).estimate(args.model)
    print(f"{args.model}: {memory_gb} GB")


def cmd_select(args):
    """Show which backend a model would be routed to right now."""
    from .estimator import ModelMemoryEstimator
    from .prober import AvailabilityProber
    from .selector import BackendSelector

    config = _load(args)
    selector = BackendSelector(config, ModelMemoryEstimator(config), AvailabilityProber(config))
    try:
        selected = selector.select(args.model)
    except ProxyError as e:
        print(f"[ERR] {e}")
        sys.exit(1)

    memory = f"{selected.memory_gb} GB" if selected.memory_gb is not None else "n/a"
    print(f"\n[>] Model:   {args.model}")
    print(f"    Backend: {selected.name} ({selected.backend.base_url})")
    print(f"    Memory:  {memory}")
    print(f"    Reason:  {selected.reason}")


def cmd_health(args):
    """Probe every enabled backend."""
    from .health import build_health_report
    from .prober import AvailabilityProber

    config = _load(args)
    report = build_health_report(config, AvailabilityProber(config))
    print(json.dumps(report, indent=2))


# =============================================================================
# AUDIT COMMANDS
# =============================================================================

def _audit_store(config: ProxyConfig):
    from .audit import AuditStore
    return AuditStore(config.audit.directory)


def cmd_logs(args):
    """Show recent audit events."""
    config = _load(args)
    events = _audit_store(config).get_recent(
        args.count, model=args.model, server=args.server, errors_only=args.errors
    )
    if not events:
        print("[INFO] No matching requests")
        return

    print(f"\n{'Time':<26} {'Method':<7} {'Path':<22} {'Model':<22} {'Server':<18} {'Status':<7} {'ms':>9}")
    print("-" * 115)
    for e in events:
        print(
            f"{e.timestamp[:25]:<26} {e.method or '-':<7} {(e.path or '-')[:21]:<22} "
            f"{(e.model_name or '-')[:21]:<22} {(e.backend_used or '-')[:17]:<18} "
            f"{e.http_status or '-'!s:<7} {e.duration_ms:>9.1f}"
        )
        if e.error_message:
            print(f"    [!] {e.error_message}")


def cmd_stats(args):
    """Aggregate audit statistics."""
    config = _load(args)
    print(json.dumps(_audit_store(config).get_stats(), indent=2))


# =============================================================================
# TOKEN COMMAND
# =============================================================================

def cmd_token(args):
    """Create or revoke a user token."""
    from .auth import TokenAuthenticator

    config = _load(args)
    auth = TokenAuthenticator.from_file(config.auth.users_file)

    if args.token_action == "create":
        try:
            token = auth.create_user(args.name)
        except ProxyError as e:
            print(f"[ERR] {e}")
            sys.exit(1)
        print(f"[OK] Token for {args.name} (shown once):\n{token}")
    elif args.token_action == "revoke":
        if auth.deactivate_user(args.name):
            print(f"[OK] {args.name} deactivated")
        else:
            print(f"[ERR] User '{args.name}' not found")
            sys.exit(1)


# =============================================================================
# MAIN
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ollama-proxy",
        description="Memory- and availability-aware reverse proxy for Ollama backends.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", "-c", help="Path to the proxy YAML config")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the proxy server")
    serve_parser.add_argument("--host", help="Bind address (default: from config)")
    serve_parser.add_argument("--port", "-p", type=int, help="Port (default: from config)")

    config_parser = subparsers.add_parser("config", help="Configuration inspection")
    config_parser.add_argument("config_action", choices=["show"], help="Action to perform")
    config_parser.add_argument("--json", action="store_true", help="Raw JSON output")

    estimate_parser = subparsers.add_parser("estimate", help="Estimate a model's memory needs")
    estimate_parser.add_argument("model", help="Model name (e.g. llama2:13b)")

    select_parser = subparsers.add_parser("select", help="Show the backend a model routes to")
    select_parser.add_argument("model", help="Model name")

    subparsers.add_parser("health", help="Probe enabled backends")

    logs_parser = subparsers.add_parser("logs", help="Show recent proxied requests")
    logs_parser.add_argument("--count", "-n", type=int, default=20, help="Number of entries (default: 20)")
    logs_parser.add_argument("--model", "-m", help="Only this model")
    logs_parser.add_argument("--server", "-s", help="Only this backend")
    logs_parser.add_argument("--errors", action="store_true", help="Only failed requests")

    subparsers.add_parser("stats", help="Audit statistics")

    token_parser = subparsers.add_parser("token", help="Manage user tokens")
    token_parser.add_argument("token_action", choices=["create", "revoke"], help="Action to perform")
    token_parser.add_argument("name", help="User name")

    return parser


def main(argv: Optional[list] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    commands = {
        "serve": cmd_serve,
        "config": cmd_config,
        "estimate": cmd_estimate,
        "select": cmd_select,
        "health": cmd_health,
        "logs": cmd_logs,
        "stats": cmd_stats,
        "token": cmd_token,
    }

    if args.command in commands:
        commands[args.command](args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
