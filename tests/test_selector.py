import pytest

from ollama_proxy.estimator import ModelMemoryEstimator
from ollama_proxy.exceptions import ConfigError, NoEnabledBackendError
from ollama_proxy.selector import EXPLICIT, FALLBACK, RANKED, BackendSelector

from tests.helpers import StubProber


def make_selector(config, available):
    prober = StubProber(available)
    return BackendSelector(config, ModelMemoryEstimator(config), prober), prober


def test_priority_one_wins_when_all_healthy(config, fake_ollama):
    selector, _ = make_selector(config, {"high_performance", "legacy"})
    selected = selector.select("llama2")
    assert selected.name == "high_performance"
    assert selected.reason == RANKED
    assert selected.memory_gb == 4.5


def test_unavailable_priority_one_skipped(config, fake_ollama):
    selector, _ = make_selector(config, {"legacy"})
    assert selector.select("llama2").name == "legacy"


def test_memory_ceiling_excludes_backend(make_config, raw_config, fake_ollama):
    raw_config["servers"]["high_performance"]["priority"] = 3
    config = make_config(servers=raw_config["servers"])
    selector, _ = make_selector(config, {"high_performance", "legacy"})

    # legacy caps at 8 GB: a 70b model only fits on high_performance
    assert selector.select("mystery-70b").name == "high_performance"
    assert selector.select("llama2-7b-chat").name == "legacy"


def test_all_unavailable_falls_back_to_first_enabled(config, fake_ollama):
    selector, _ = make_selector(config, set())
    selected = selector.select("llama2")
    assert selected.name == "high_performance"
    assert selected.reason == FALLBACK


def test_fallback_ignores_memory_ceiling(make_config, raw_config, fake_ollama):
    raw_config["servers"]["high_performance"]["enabled"] = False
    config = make_config(servers=raw_config["servers"])
    selector, _ = make_selector(config, set())
    selected = selector.select("mystery-70b")
    assert selected.name == "legacy"
    assert selected.memory_gb == 40.0


def test_explicit_assignment_is_absolute(config, fake_ollama):
    selector, prober = make_selector(config, set())
    selected = selector.select("gpt-4")
    assert selected.name == "openai"
    assert selected.reason == EXPLICIT
    assert selected.memory_gb is None
    assert prober.probed == []
    assert fake_ollama.list_calls == []


def test_explicit_assignment_to_local_server(make_config, raw_config, fake_ollama):
    raw_config["model_config"]["explicit_assignments"]["big-model"] = "legacy"
    config = make_config(model_config=raw_config["model_config"])
    selector, _ = make_selector(config, {"high_performance"})
    assert selector.select("big-model").name == "legacy"


def test_disabled_assignment_uses_automatic_selection(make_config, raw_config, fake_ollama):
    raw_config["external_hosts"]["openai"]["enabled"] = False
    config = make_config(external_hosts=raw_config["external_hosts"])
    selector, _ = make_selector(config, {"legacy"})
    assert selector.select("gpt-4").name == "legacy"


def test_external_hosts_never_selected_automatically(config, fake_ollama):
    selector, prober = make_selector(config, {"openai", "legacy"})
    assert selector.select("llama2").name == "legacy"
    assert "openai" not in prober.probed


def test_unranked_backend_goes_last(make_config, raw_config, fake_ollama):
    raw_config["servers"]["high_performance"]["priority"] = None
    config = make_config(servers=raw_config["servers"])
    selector, _ = make_selector(config, {"high_performance", "legacy"})
    assert selector.select("llama2").name == "legacy"


def test_equal_priority_keeps_declaration_order(make_config, raw_config, fake_ollama):
    raw_config["servers"]["legacy"]["priority"] = 1
    config = make_config(servers=raw_config["servers"])
    selector, _ = make_selector(config, {"high_performance", "legacy"})
    assert selector.select("llama2").name == "high_performance"


def test_no_enabled_backend_is_fatal(make_config, raw_config, fake_ollama):
    for server in raw_config["servers"].values():
        server["enabled"] = False
    raw_config["external_hosts"]["openai"]["enabled"] = False
    config = make_config(servers=raw_config["servers"], external_hosts=raw_config["external_hosts"])
    selector, _ = make_selector(config, set())
    with pytest.raises(NoEnabledBackendError):
        selector.select("llama2")
    assert issubclass(NoEnabledBackendError, ConfigError)


def test_external_host_never_used_as_fallback(make_config, raw_config, fake_ollama):
    for server in raw_config["servers"].values():
        server["enabled"] = False
    config = make_config(servers=raw_config["servers"])
    selector, prober = make_selector(config, {"openai"})
    with pytest.raises(NoEnabledBackendError):
        selector.select("llama2")
    assert prober.probed == []


def test_explicit_assignment_still_works_without_local_servers(make_config, raw_config, fake_ollama):
    for server in raw_config["servers"].values():
        server["enabled"] = False
    config = make_config(servers=raw_config["servers"])
    selector, _ = make_selector(config, set())
    assert selector.select("gpt-4").name == "openai"
