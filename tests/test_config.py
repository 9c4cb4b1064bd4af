"""Tests for urlstore.config -- XDG paths, atomic writes, settings precedence."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from urlstore.config import (
    _atomic_write,
    get_config_dir,
    get_data_dir,
    load_settings,
    resolve_settings,
    save_settings,
    settings_path,
)
from urlstore.exceptions import ConfigError
from urlstore.models import Settings


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


# ---------------------------------------------------------------------------
# XDG path resolution
# ---------------------------------------------------------------------------


class TestPaths:
    def test_config_dir_xdg_custom(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        custom = tmp_path / "custom_config"
        monkeypatch.setattr("urlstore.config._is_xdg_platform", lambda: True)
        monkeypatch.setenv("XDG_CONFIG_HOME", str(custom))

        result = get_config_dir()
        assert result == custom / "urlstore"
        assert result.is_dir()

    def test_data_dir_xdg_default(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("urlstore.config._is_xdg_platform", lambda: True)
        monkeypatch.delenv("XDG_DATA_HOME", raising=False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))

        result = get_data_dir()
        assert result == tmp_path / ".local" / "share" / "urlstore"
        assert result.is_dir()

    def test_fallback_on_other_platforms(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("urlstore.config._is_xdg_platform", lambda: False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))

        assert get_config_dir() == tmp_path / ".urlstore"
        assert get_data_dir() == tmp_path / ".urlstore" / "data"


class TestAtomicWrite:
    def test_writes_and_replaces(self, tmp_path: Path) -> None:
        target = tmp_path / "nested" / "file.json"
        _atomic_write(target, "one")
        _atomic_write(target, "two")
        assert target.read_text(encoding="utf-8") == "two"
        assert [p.name for p in target.parent.iterdir()] == ["file.json"]


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettings:
    def test_defaults_without_file(self) -> None:
        settings = load_settings()
        assert settings == Settings()
        assert settings.auth_service == "https://auth.madata.dev"
        assert settings.login_timeout == 300
        assert settings.request.max_retries == 2

    def test_save_and_load(self) -> None:
        settings = Settings(
            auth_service="https://auth.example.com",
            services={"github": {"client_id": "abc"}},
            storage="memory",
        )
        save_settings(settings)

        assert settings_path().is_file()
        loaded = load_settings()
        assert loaded.auth_service == "https://auth.example.com"
        assert loaded.services["github"].client_id == "abc"
        assert loaded.storage == "memory"

    def test_invalid_json_raises(self) -> None:
        settings_path().write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigError, match="Invalid settings"):
            load_settings()

    def test_invalid_values_raise(self) -> None:
        _write_json(settings_path(), {"storage": "cloud"})
        with pytest.raises(ConfigError):
            load_settings()


class TestResolveSettings:
    def test_env_overrides_file(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _write_json(settings_path(), {"auth_service": "https://file.example.com", "login_timeout": 10})
        monkeypatch.setenv("URLSTORE_AUTH_SERVICE", "https://env.example.com")
        monkeypatch.setenv("URLSTORE_STORAGE", "memory")

        settings = resolve_settings()
        assert settings.auth_service == "https://env.example.com"
        assert settings.login_timeout == 10
        assert settings.storage == "memory"

    def test_overrides_win(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("URLSTORE_LOGIN_TIMEOUT", "60")
        settings = resolve_settings(login_timeout=5, auth_service=None)
        assert settings.login_timeout == 5
        assert settings.auth_service == "https://auth.madata.dev"

    def test_env_timeout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("URLSTORE_LOGIN_TIMEOUT", "42.5")
        assert resolve_settings().login_timeout == 42.5

    def test_invalid_env_timeout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("URLSTORE_LOGIN_TIMEOUT", "soon")
        with pytest.raises(ConfigError, match="URLSTORE_LOGIN_TIMEOUT"):
            resolve_settings()

    def test_invalid_env_storage(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("URLSTORE_STORAGE", "cloud")
        with pytest.raises(ConfigError, match="Invalid configuration"):
            resolve_settings()
