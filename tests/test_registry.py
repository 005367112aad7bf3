import json

import pytest

from portboard import (
    DEFAULT_REGISTRY,
    ConfigReadError,
    RegistryEntry,
    ensure_registry,
    load_config,
    load_registry,
)


@pytest.fixture
def config(tmp_path):
    return load_config(env={"PORTBOARD_HOME": str(tmp_path / "home")})


def test_load_config_uses_override_and_defaults(tmp_path) -> None:
    cfg = load_config(env={"PORTBOARD_HOME": str(tmp_path)}, platform="linux")
    assert cfg.data_dir == tmp_path
    assert cfg.registry_path == tmp_path / "ports-list.json"
    assert cfg.public_ip_url == "https://api.ipify.org?format=json"
    assert cfg.editor == "nano"
    assert cfg.timeout is None


def test_load_config_editor_resolution() -> None:
    assert load_config(env={}, platform="win32").editor == "notepad"
    assert load_config(env={"EDITOR": "vim"}, platform="win32").editor == "vim"


def test_load_config_defaults_to_home_dir(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr("portboard.Path.home", lambda: tmp_path)
    cfg = load_config(env={}, timeout=3)
    assert cfg.registry_path == tmp_path / ".portboard" / "ports-list.json"
    assert cfg.timeout == 3


def test_bootstrap_writes_three_default_apps(config) -> None:
    assert ensure_registry(config) is True
    data = json.loads(config.registry_path.read_text(encoding="utf-8"))
    assert data == DEFAULT_REGISTRY
    assert [(e["name"], e["port"]) for e in data] == [("App1", "3000"), ("App2", "8080"), ("App3", "5000")]
    assert load_registry(config.registry_path) == [
        RegistryEntry("App1", "3000", "http://localhost:3000"),
        RegistryEntry("App2", "8080", "http://localhost:8080"),
        RegistryEntry("App3", "5000", "http://localhost:5000"),
    ]


def test_bootstrap_leaves_existing_file_alone(config) -> None:
    config.data_dir.mkdir(parents=True)
    config.registry_path.write_text("{ not json", encoding="utf-8")
    assert ensure_registry(config) is False
    assert config.registry_path.read_text(encoding="utf-8") == "{ not json"


def test_bootstrap_twice_is_idempotent(config) -> None:
    ensure_registry(config)
    config.registry_path.write_text('[{"name": "Mine", "port": "1", "url": ""}]', encoding="utf-8")
    assert ensure_registry(config) is False
    assert load_registry(config.registry_path) == [RegistryEntry("Mine", "1", "")]


def test_missing_registry_is_an_error(config) -> None:
    with pytest.raises(ConfigReadError, match="does not exist"):
        load_registry(config.registry_path)


@pytest.mark.parametrize("payload", ["{ not json", '{"name": "x"}', '["App1"]'])
def test_malformed_registry_is_an_error(config, payload) -> None:
    config.data_dir.mkdir(parents=True)
    config.registry_path.write_text(payload, encoding="utf-8")
    with pytest.raises(ConfigReadError):
        load_registry(config.registry_path)


def test_registry_fields_are_coerced_to_text(config) -> None:
    config.data_dir.mkdir(parents=True)
    config.registry_path.write_text('[{"name": "Api", "port": 8000}]', encoding="utf-8")
    assert load_registry(config.registry_path) == [RegistryEntry("Api", "8000", "")]
