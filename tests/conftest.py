import copy
import pathlib
import sys

import pytest

# Ensure project root is importable in tests
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ollama_proxy.config import parse_config  # noqa: E402

from tests.helpers import FakeOllamaClient  # noqa: E402


BASE_CONFIG = {
    "servers": {
        "high_performance": {
            "host": "localhost",
            "port": 11435,
            "enabled": True,
            "priority": 1,
            "max_memory_gb": None,
        },
        "legacy": {
            "host": "localhost",
            "port": 11436,
            "enabled": True,
            "priority": 2,
            "max_memory_gb": 8,
        },
    },
    "external_hosts": {
        "openai": {
            "host": "api.openai.com",
            "port": 443,
            "protocol": "https",
            "enabled": True,
            "api_key_env": "TEST_OPENAI_KEY",
        },
    },
    "model_config": {
        "explicit_assignments": {"gpt-4": "openai"},
        "memory_overrides": {"custom-model": 10.0},
        "memory_patterns": [
            {"pattern": ".*-7b.*", "memory_gb": 4.5},
            {"pattern": ".*-70b.*", "memory_gb": 40.0},
        ],
        "default_memory_gb": 4.5,
        "cache_model_info": False,
    },
    "request_timeout": 300,
    "model_info_timeout": 10,
    "server_busy_threshold_ms": 1000,
}


@pytest.fixture
def raw_config():
    """A deep copy of the base config dict, safe to modify."""
    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture
def make_config(raw_config, tmp_path):
    """Build a ProxyConfig from the base dict plus overrides."""
    def _make(**overrides):
        data = copy.deepcopy(raw_config)
        data.setdefault("audit", {"directory": str(tmp_path / "audit")})
        data.setdefault("auth", {"users_file": str(tmp_path / "users.yaml")})
        for key, value in overrides.items():
            data[key] = value
        return parse_config(data)
    return _make


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture
def fake_ollama(monkeypatch):
    """Route ollama.Client through FakeOllamaClient; no catalogs by default."""
    FakeOllamaClient.catalogs = {}
    FakeOllamaClient.list_calls = []
    FakeOllamaClient.created = []
    monkeypatch.setattr("ollama_proxy.estimator.ollama.Client", FakeOllamaClient)
    return FakeOllamaClient
