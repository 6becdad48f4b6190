#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
CENTRALIZED CONFIGURATION - OLLAMA PROXY
========================================

Loads the proxy configuration from YAML and freezes it.

The configuration is read once at startup and never changes afterwards.
Components receive the ProxyConfig explicitly; get_config()/set_config()
only exist so the CLI has a single place to park the loaded instance.

YAML layout:
    servers:          local Ollama backends (automatic selection)
    external_hosts:   hosted APIs (only reachable by explicit assignment)
    model_config:     assignments, memory overrides, patterns, cache
    request_timeout / model_info_timeout / server_busy_threshold_ms
    server / logging / audit / auth
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List, Tuple, Pattern
import os
import re
import logging

import yaml

from .exceptions import ConfigError

# Logger configuration
logger = logging.getLogger(__name__)

# =============================================================================
# DEFAULT PATHS
# =============================================================================

# Project root (ollama_proxy/ folder)
PROJECT_ROOT = Path(__file__).parent

# Configuration folder
CONFIG_DIR = PROJECT_ROOT / "config"

# Data folder for audit logs and user tokens
DATA_DIR = Path(os.environ.get("OLLAMA_PROXY_HOME", Path.home() / ".ollama_proxy"))

# Configuration files
DEFAULT_CONFIG_FILE = CONFIG_DIR / "proxy.yaml"
CONFIG_ENV_VAR = "OLLAMA_PROXY_CONFIG"

# =============================================================================
# DEFAULT VALUES
# =============================================================================

DEFAULT_MEMORY_GB = 4.5
DEFAULT_CACHE_TTL_SECONDS = 3600
DEFAULT_REQUEST_TIMEOUT = 300
DEFAULT_MODEL_INFO_TIMEOUT = 10
DEFAULT_PROBE_TIMEOUT = 2
DEFAULT_BUSY_THRESHOLD_MS = 1000
DEFAULT_PRIORITY = 999

LOCAL = "local"
EXTERNAL = "external"

# =============================================================================
# YAML HELPERS
# =============================================================================

def load_yaml(filepath: Path) -> Dict[str, Any]:
    """
    Safely load a YAML file.

    Args:
        filepath: Path to YAML file

    Returns:
        Dictionary with file contents ({} if the file is missing)

    Raises:
        ConfigError: If the file is malformed or not a mapping
    """
    if not filepath.exists():
        logger.warning(f"Config file not found: {filepath}")
        return {}

    try:
        with open(filepath, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error(f"YAML parsing error {filepath}: {e}")
        raise ConfigError(f"Malformed YAML in {filepath}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Top level of {filepath} must be a mapping")
    logger.debug(f"Config loaded from {filepath}")
    return data


def save_yaml(filepath: Path, data: Dict[str, Any]) -> bool:
    """
    Save a dictionary to a YAML file.

    Args:
        filepath: Destination path
        data: Data to save

    Returns:
        True if success, False otherwise
    """
    try:
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, 'w', encoding='utf-8') as f:
            yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)
        logger.debug(f"Config saved to {filepath}")
        return True
    except OSError as e:
        logger.error(f"Error saving {filepath}: {e}")
        return False


# =============================================================================
# CONFIGURATION DATACLASSES
# =============================================================================

@dataclass(frozen=True)
class BackendConfig:
    """One inference backend, local server or external host."""
    name: str
    host: str
    port: int
    protocol: str = "http"
    enabled: bool = True
    priority: Optional[int] = None
    max_memory_gb: Optional[float] = None
    api_key_env: Optional[str] = None
    kind: str = LOCAL

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}"

    @property
    def rank(self) -> int:
        """Priority used for ordering (unranked backends go last)."""
        return self.priority if self.priority is not None else DEFAULT_PRIORITY

    @property
    def is_external(self) -> bool:
        return self.kind == EXTERNAL

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "kind": self.kind,
            "url": self.base_url,
            "enabled": self.enabled,
            "priority": self.priority,
            "max_memory_gb": self.max_memory_gb,
            "api_key_env": self.api_key_env,
        }


@dataclass(frozen=True)
class ModelMemoryRule:
    """Regex rule mapping model names to a memory estimate."""
    pattern: Pattern[str]
    memory_gb: float

    def matches(self, model_name: str) -> bool:
        return self.pattern.search(model_name) is not None


@dataclass(frozen=True)
class ModelConfig:
    """Model routing and memory estimation settings."""
    explicit_assignments: Dict[str, str] = field(default_factory=dict)
    memory_overrides: Dict[str, float] = field(default_factory=dict)
    memory_patterns: Tuple[ModelMemoryRule, ...] = ()
    default_memory_gb: float = DEFAULT_MEMORY_GB
    cache_enabled: bool = False
    cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS


@dataclass(frozen=True)
class ServerSettings:
    """Where the proxy itself listens."""
    host: str = "127.0.0.1"
    port: int = 11434
    threaded: bool = True


@dataclass(frozen=True)
class LoggingSettings:
    """Application log settings."""
    level: str = "INFO"
    directory: Optional[Path] = None
    max_files: int = 10


@dataclass(frozen=True)
class AuditSettings:
    """Request audit log settings."""
    enabled: bool = True
    directory: Path = DATA_DIR / "audit"
    queue_size: int = 1000


@dataclass(frozen=True)
class AuthSettings:
    """Bearer token authentication settings."""
    enabled: bool = False
    users_file: Path = DATA_DIR / "users.yaml"


@dataclass(frozen=True)
class ProxyConfig:
    """
    Complete, immutable proxy configuration.

    Usage:
        config = load_config()
        backend = config.get_backend("high_performance")
        for server in config.enabled_local_backends():
            ...
    """
    backends: Dict[str, BackendConfig] = field(default_factory=dict)
    model: ModelConfig = field(default_factory=ModelConfig)
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    model_info_timeout: float = DEFAULT_MODEL_INFO_TIMEOUT
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    server_busy_threshold_ms: float = DEFAULT_BUSY_THRESHOLD_MS
    server: ServerSettings = field(default_factory=ServerSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    audit: AuditSettings = field(default_factory=AuditSettings)
    auth: AuthSettings = field(default_factory=AuthSettings)
    source: Optional[Path] = None

    # -------------------------------------------------------------------------
    # Backend Access
    # -------------------------------------------------------------------------

    def get_backend(self, name: str) -> Optional[BackendConfig]:
        return self.backends.get(name)

    def local_backends(self) -> List[BackendConfig]:
        """Local servers in declaration order."""
        return [b for b in self.backends.values() if b.kind == LOCAL]

    def external_backends(self) -> List[BackendConfig]:
        """External hosts in declaration order."""
        return [b for b in self.backends.values() if b.kind == EXTERNAL]

    def enabled_local_backends(self) -> List[BackendConfig]:
        return [b for b in self.local_backends() if b.enabled]

    def enabled_backends(self) -> List[BackendConfig]:
        """All enabled backends, local ones first."""
        return [b for b in self.backends.values() if b.enabled]

    def as_dict(self) -> Dict[str, Any]:
        """Return the configuration as a printable dictionary."""
        return {
            "source": str(self.source) if self.source else None,
            "backends": [b.to_dict() for b in self.backends.values()],
            "model_config": {
                "explicit_assignments": dict(self.model.explicit_assignments),
                "memory_overrides": dict(self.model.memory_overrides),
                "memory_patterns": [
                    {"pattern": r.pattern.pattern, "memory_gb": r.memory_gb}
                    for r in self.model.memory_patterns
                ],
                "default_memory_gb": self.model.default_memory_gb,
                "cache_model_info": self.model.cache_enabled,
                "cache_ttl_seconds": self.model.cache_ttl_seconds,
            },
            "request_timeout": self.request_timeout,
            "model_info_timeout": self.model_info_timeout,
            "server_busy_threshold_ms": self.server_busy_threshold_ms,
            "server": {"host": self.server.host, "port": self.server.port},
        }

    def __repr__(self) -> str:
        local = len(self.local_backends())
        external = len(self.external_backends())
        return f"<ProxyConfig: {local} servers, {external} external hosts>"


# =============================================================================
# PARSING
# =============================================================================

def _number(value: Any, cast, what: str):
    """Convert a numeric setting, reporting bad values as ConfigError."""
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid {what}: {value!r}")


def _optional_number(value: Any, cast, what: str):
    return _number(value, cast, what) if value is not None else None


def _parse_backend(name: str, raw: Any, kind: str) -> BackendConfig:
    if not isinstance(raw, dict):
        raise ConfigError(f"Backend '{name}' must be a mapping")
    if not raw.get("host"):
        raise ConfigError(f"Backend '{name}' has no host")
    try:
        port = int(raw["port"])
    except (KeyError, TypeError, ValueError):
        raise ConfigError(f"Backend '{name}' has no valid port")

    priority = raw.get("priority")
    max_memory = raw.get("max_memory_gb")
    return BackendConfig(
        name=str(name),
        host=str(raw["host"]),
        port=port,
        protocol=raw.get("protocol") or "http",
        enabled=bool(raw.get("enabled", False)),
        priority=_optional_number(priority, int, f"priority for backend '{name}'"),
        max_memory_gb=_optional_number(max_memory, float, f"max_memory_gb for backend '{name}'"),
        api_key_env=raw.get("api_key_env") or None,
        kind=kind,
    )


def _parse_backends(data: Dict[str, Any]) -> Dict[str, BackendConfig]:
    """Build the unified name -> backend map (local servers first)."""
    backends: Dict[str, BackendConfig] = {}
    for section, kind in (("servers", LOCAL), ("external_hosts", EXTERNAL)):
        for name, raw in (data.get(section) or {}).items():
            name = str(name)
            if name in backends:
                raise ConfigError(f"Duplicate backend name: {name}")
            backends[name] = _parse_backend(name, raw, kind)
    return backends


def _parse_patterns(raw_patterns: Any) -> Tuple[ModelMemoryRule, ...]:
    rules = []
    for item in raw_patterns or []:
        try:
            rules.append(ModelMemoryRule(
                pattern=re.compile(item["pattern"]),
                memory_gb=float(item["memory_gb"]),
            ))
        except re.error as e:
            raise ConfigError(f"Invalid memory pattern {item.get('pattern')!r}: {e}") from e
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Invalid memory pattern entry {item!r}") from e
    return tuple(rules)


def _parse_model_config(raw: Dict[str, Any]) -> ModelConfig:
    default_memory = raw.get("default_memory_gb")
    return ModelConfig(
        explicit_assignments={
            str(k): str(v) for k, v in (raw.get("explicit_assignments") or {}).items()
        },
        memory_overrides={
            str(k): _number(v, float, f"memory override for {k}")
            for k, v in (raw.get("memory_overrides") or {}).items()
        },
        memory_patterns=_parse_patterns(raw.get("memory_patterns")),
        default_memory_gb=_number(default_memory, float, "default_memory_gb") if default_memory is not None else DEFAULT_MEMORY_GB,
        cache_enabled=bool(raw.get("cache_model_info", False)),
        cache_ttl_seconds=_number(raw.get("cache_ttl_seconds") or DEFAULT_CACHE_TTL_SECONDS, int, "cache_ttl_seconds"),
    )


def _resolve_path(value: Any, default: Path) -> Path:
    if not value:
        return default
    return Path(os.path.expanduser(str(value)))


def parse_config(data: Dict[str, Any], source: Optional[Path] = None) -> ProxyConfig:
    """
    Build a ProxyConfig from a raw dictionary.

    Args:
        data: Parsed YAML content
        source: File the data came from (informational)

    Returns:
        Frozen ProxyConfig

    Raises:
        ConfigError: On duplicate names, bad ports or invalid patterns
    """
    server_raw = data.get("server") or {}
    logging_raw = data.get("logging") or {}
    audit_raw = data.get("audit") or {}
    auth_raw = data.get("auth") or {}

    log_dir = logging_raw.get("directory") if logging_raw.get("enabled", True) else None

    return ProxyConfig(
        backends=_parse_backends(data),
        model=_parse_model_config(data.get("model_config") or {}),
        request_timeout=_number(data.get("request_timeout") or DEFAULT_REQUEST_TIMEOUT, float, "request_timeout"),
        model_info_timeout=_number(data.get("model_info_timeout") or DEFAULT_MODEL_INFO_TIMEOUT, float, "model_info_timeout"),
        probe_timeout=_number(data.get("probe_timeout") or DEFAULT_PROBE_TIMEOUT, float, "probe_timeout"),
        server_busy_threshold_ms=_number(
            data.get("server_busy_threshold_ms") or DEFAULT_BUSY_THRESHOLD_MS, float, "server_busy_threshold_ms"
        ),
        server=ServerSettings(
            host=server_raw.get("host", "127.0.0.1"),
            port=_number(server_raw.get("port") or data.get("proxy_port") or 11434, int, "server port"),
            threaded=bool(server_raw.get("threaded", True)),
        ),
        logging=LoggingSettings(
            level=str(logging_raw.get("level", "INFO")).upper(),
            directory=_resolve_path(log_dir, None) if log_dir else None,
            max_files=_number(logging_raw.get("max_files") or 10, int, "logging max_files"),
        ),
        audit=AuditSettings(
            enabled=bool(audit_raw.get("enabled", True)),
            directory=_resolve_path(audit_raw.get("directory"), DATA_DIR / "audit"),
            queue_size=_number(audit_raw.get("queue_size") or 1000, int, "audit queue_size"),
        ),
        auth=AuthSettings(
            enabled=bool(auth_raw.get("enabled", False)),
            users_file=_resolve_path(auth_raw.get("users_file"), DATA_DIR / "users.yaml"),
        ),
        source=source,
    )


def load_config(path: Optional[Path] = None) -> ProxyConfig:
    """
    Load the proxy configuration.

    Resolution: explicit path, then $OLLAMA_PROXY_CONFIG, then the
    bundled config/proxy.yaml.
    """
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        path = Path(env_path) if env_path else DEFAULT_CONFIG_FILE
    path = Path(path)

    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    config = parse_config(load_yaml(path), source=path)
    logger.info(f"Configuration loaded from {path}: {config!r}")
    return config


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_config: Optional[ProxyConfig] = None


def get_config() -> ProxyConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: ProxyConfig) -> None:
    """Set the process-wide configuration."""
    global _config
    _config = config
