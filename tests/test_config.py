import pytest

from ollama_proxy.config import (
    DEFAULT_CONFIG_FILE,
    EXTERNAL,
    LOCAL,
    load_config,
    parse_config,
)
from ollama_proxy.exceptions import ConfigError


def test_backends_unified_with_kind(config):
    assert list(config.backends) == ["high_performance", "legacy", "openai"]
    assert config.get_backend("legacy").kind == LOCAL
    assert config.get_backend("openai").kind == EXTERNAL
    assert [b.name for b in config.enabled_local_backends()] == ["high_performance", "legacy"]


def test_backend_defaults(raw_config):
    raw_config["servers"]["bare"] = {"host": "10.0.0.5", "port": "11437"}
    config = parse_config(raw_config)
    bare = config.get_backend("bare")
    assert bare.protocol == "http"
    assert bare.enabled is False
    assert bare.priority is None
    assert bare.rank == 999
    assert bare.port == 11437
    assert bare.base_url == "http://10.0.0.5:11437"


def test_duplicate_names_rejected(raw_config):
    raw_config["external_hosts"]["legacy"] = {"host": "example.com", "port": 443}
    with pytest.raises(ConfigError, match="Duplicate backend name"):
        parse_config(raw_config)


def test_missing_port_rejected(raw_config):
    del raw_config["servers"]["legacy"]["port"]
    with pytest.raises(ConfigError, match="legacy"):
        parse_config(raw_config)


def test_patterns_compiled_in_order(config):
    rules = config.model.memory_patterns
    assert [r.pattern.pattern for r in rules] == [".*-7b.*", ".*-70b.*"]
    assert rules[1].matches("mystery-70b")
    assert not rules[1].matches("mystery-7b")


def test_invalid_pattern_rejected(raw_config):
    raw_config["model_config"]["memory_patterns"] = [{"pattern": "(unclosed", "memory_gb": 1}]
    with pytest.raises(ConfigError, match="Invalid memory pattern"):
        parse_config(raw_config)


def test_model_config_defaults():
    config = parse_config({})
    assert config.model.default_memory_gb == 4.5
    assert config.model.cache_enabled is False
    assert config.model.cache_ttl_seconds == 3600
    assert config.request_timeout == 300
    assert config.model_info_timeout == 10
    assert config.server_busy_threshold_ms == 1000
    assert config.backends == {}


def test_load_config_from_file(tmp_path):
    path = tmp_path / "proxy.yaml"
    path.write_text(
        "servers:\n"
        "  main:\n"
        "    host: gpu-box\n"
        "    port: 11434\n"
        "    enabled: true\n"
        "model_config:\n"
        "  cache_model_info: true\n"
        "  cache_ttl_seconds: 60\n",
        encoding="utf-8",
    )
    config = load_config(path)
    assert config.source == path
    assert config.get_backend("main").base_url == "http://gpu-box:11434"
    assert config.model.cache_enabled is True
    assert config.model.cache_ttl_seconds == 60


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.yaml")


def test_load_config_malformed_yaml(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("servers: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="Malformed YAML"):
        load_config(path)


def test_load_config_env_var(tmp_path, monkeypatch):
    path = tmp_path / "env.yaml"
    path.write_text("request_timeout: 42\n", encoding="utf-8")
    monkeypatch.setenv("OLLAMA_PROXY_CONFIG", str(path))
    assert load_config().request_timeout == 42


def test_bundled_config_loads():
    config = load_config(DEFAULT_CONFIG_FILE)
    assert config.enabled_local_backends()
    assert config.model.explicit_assignments["gpt-4"] == "openai"


def test_config_is_frozen(config):
    with pytest.raises(Exception):
        config.request_timeout = 1


@pytest.mark.parametrize("section, name, key, value", [
    ("servers", "legacy", "priority", "high"),
    ("servers", "legacy", "max_memory_gb", "lots"),
    ("external_hosts", "openai", "priority", [1]),
])
def test_non_numeric_backend_fields_rejected(raw_config, section, name, key, value):
    raw_config[section][name][key] = value
    with pytest.raises(ConfigError, match=key):
        parse_config(raw_config)


def test_non_numeric_override_rejected(raw_config):
    raw_config["model_config"]["memory_overrides"]["custom-model"] = "ten"
    with pytest.raises(ConfigError, match="custom-model"):
        parse_config(raw_config)


def test_non_numeric_timeout_rejected(raw_config):
    raw_config["request_timeout"] = "forever"
    with pytest.raises(ConfigError, match="request_timeout"):
        parse_config(raw_config)
