"""Tests for configuration management."""

from pathlib import Path

import pytest

from cvehunt import config
from cvehunt.config.settings import DiscoverySettings

_KEYS = (
    "CVEHUNT_CACHE_TTL",
    "CVEHUNT_MAX_ATTEMPTS",
    "CVEHUNT_SOURCES",
    "CVEHUNT_NVD_API_KEY",
    "CVEHUNT_VULNERS_API_KEY",
    "CVEHUNT_RELIABILITY_WEIGHTS",
    "CVEHUNT_VERBOSE",
    "CVEHUNT_BREAKER_THRESHOLD",
)


@pytest.fixture
def isolated(monkeypatch: pytest.MonkeyPatch, temp_dir: Path) -> Path:
    """Point home at an empty temp dir and clear cvehunt env vars."""
    home = temp_dir / "home"
    home.mkdir()
    monkeypatch.setattr(Path, "home", lambda: home)
    for key in _KEYS:
        monkeypatch.delenv(key, raising=False)
    project = temp_dir / "project"
    (project / ".cvehunt").mkdir(parents=True)
    return project


class TestLoadEnvFile:
    """Tests for load_env_file."""

    def test_load_env_file_missing_returns_empty(self, temp_dir: Path) -> None:
        assert config.load_env_file(temp_dir / ".env") == {}

    def test_load_env_file_ignores_comments_and_strips_quotes(self, temp_dir: Path) -> None:
        env_path = temp_dir / ".env"
        env_path.write_text("# comment\n\nFOO=\"bar\"\n  \nBAZ='qux'\n")
        assert config.load_env_file(env_path) == {"FOO": "bar", "BAZ": "qux"}


class TestGetConfig:
    """Priority: env, project .env, global config.yml, default."""

    def test_default(self, isolated: Path) -> None:
        assert config.get_config("CVEHUNT_CACHE_TTL", isolated, "x") == "x"

    def test_global_config(self, isolated: Path) -> None:
        global_dir = Path.home() / ".cvehunt"
        global_dir.mkdir()
        (global_dir / "config.yml").write_text("CVEHUNT_CACHE_TTL: 60\n")
        assert config.get_config("CVEHUNT_CACHE_TTL", isolated) == 60

    def test_project_beats_global(self, isolated: Path) -> None:
        global_dir = Path.home() / ".cvehunt"
        global_dir.mkdir()
        (global_dir / "config.yml").write_text("CVEHUNT_CACHE_TTL: 60\n")
        config.get_project_env_path(isolated).write_text("CVEHUNT_CACHE_TTL=90\n")
        assert config.get_config("CVEHUNT_CACHE_TTL", isolated) == "90"

    def test_env_beats_project(self, isolated: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config.get_project_env_path(isolated).write_text("CVEHUNT_CACHE_TTL=90\n")
        monkeypatch.setenv("CVEHUNT_CACHE_TTL", "120")
        assert config.get_config("CVEHUNT_CACHE_TTL", isolated) == "120"

    def test_typed_getters(self, isolated: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CVEHUNT_MAX_ATTEMPTS", "oops")
        monkeypatch.setenv("CVEHUNT_SOURCES", "nist, circl,")
        monkeypatch.setenv("CVEHUNT_VERBOSE", "yes")
        assert config.get_int("CVEHUNT_MAX_ATTEMPTS", 3, isolated) == 3
        assert config.get_list("CVEHUNT_SOURCES", isolated) == ["nist", "circl"]
        assert config.is_verbose(isolated)

    def test_api_key(self, isolated: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CVEHUNT_NVD_API_KEY", "secret")
        assert config.get_api_key("nvd", isolated) == "secret"
        assert config.get_api_key("vulners", isolated) is None


class TestDiscoverySettings:
    def test_defaults(self, isolated: Path) -> None:
        settings = DiscoverySettings.from_config(isolated)
        assert settings.cache_ttl == 1800
        assert settings.max_attempts == 3
        assert settings.breaker_threshold == 5
        assert settings.sources == []
        assert settings.reliability_weights == {}

    def test_overrides(self, isolated: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CVEHUNT_BREAKER_THRESHOLD", "2")
        monkeypatch.setenv("CVEHUNT_SOURCES", "NIST,Circl")
        monkeypatch.setenv("CVEHUNT_RELIABILITY_WEIGHTS", "accuracy=0.5,bogus=x")
        settings = DiscoverySettings.from_config(isolated)
        assert settings.breaker_threshold == 2
        assert settings.sources == ["nist", "circl"]
        assert settings.reliability_weights == {"accuracy": 0.5}

    def test_weights_mapping_from_yaml(self, isolated: Path) -> None:
        global_dir = Path.home() / ".cvehunt"
        global_dir.mkdir()
        (global_dir / "config.yml").write_text(
            "CVEHUNT_RELIABILITY_WEIGHTS:\n  accuracy: 0.4\n  freshness: 0.1\n"
        )
        assert config.load_reliability_weights(isolated) == {"accuracy": 0.4, "freshness": 0.1}
