"""Tests for configuration loading."""

import pytest

import launchgrid.persistence as persistence
from launchgrid.config import load_config
from launchgrid.errors import ConfigurationError, ValidationError
from launchgrid.persistence import InMemoryStore, get_store
from launchgrid.providers import AgentContentProvider, get_provider


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "LAUNCHGRID_CONFIG",
        "LAUNCHGRID_DATABASE_URL",
        "DATABASE_URL",
        "LAUNCHGRID_EXTENSION_API_KEY",
        "LAUNCHGRID_ENCRYPTION_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(persistence, "_store_instance", None)


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
ai:
  default_provider: openai
  timeout_seconds: 12
engagement:
  duration_days: 3
extension:
  api_key: from-file
  lease_minutes: 2
"""
    )
    monkeypatch.setenv("LAUNCHGRID_CONFIG", str(config_path))

    config = load_config()
    assert config.ai.default_provider == "openai"
    assert config.ai.timeout_seconds == 12
    assert config.engagement.duration_days == 3
    assert config.engagement.check_interval_minutes == 60
    assert config.extension.api_key == "from-file"
    assert config.extension.lease_minutes == 2


def test_environment_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("extension:\n  api_key: from-file\n")
    monkeypatch.setenv("LAUNCHGRID_EXTENSION_API_KEY", "from-env")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///tmp/launchgrid.db")

    config = load_config(str(config_path))
    assert config.extension.api_key == "from-env"
    assert config.database_url == "sqlite:///tmp/launchgrid.db"


def test_missing_file_gives_defaults(tmp_path):
    config = load_config(str(tmp_path / "absent.yaml"))
    assert config.database_url is None
    assert config.audit.enabled
    assert config.extension.platform == "twitter"


def test_get_store_defaults_to_memory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    store = get_store()
    assert isinstance(store, InMemoryStore)
    assert get_store() is store


def test_get_store_rejects_unknown_backend(tmp_path):
    with pytest.raises(ValueError):
        get_store("mongodb://localhost/launchgrid")


def test_get_provider_uses_configured_model(tmp_path):
    config = load_config(str(tmp_path / "absent.yaml"))
    config.ai.models["openai"] = "gpt-4o"

    provider = get_provider("openai", config)
    assert isinstance(provider, AgentContentProvider)
    assert provider._resolve_model(None) == "openai:gpt-4o"

    default = get_provider(config=config)
    assert default._resolve_model(None) == "google-gla:gemini-2.0-flash"


def test_get_provider_rejects_unknown_or_unconfigured(tmp_path):
    config = load_config(str(tmp_path / "absent.yaml"))
    with pytest.raises(ValidationError):
        get_provider("mistral", config)

    config.ai.models.pop("anthropic")
    with pytest.raises(ConfigurationError):
        get_provider("anthropic", config)
