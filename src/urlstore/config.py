"""Where urlstore keeps its files and how settings are resolved.

Directories follow the XDG Base Directory layout on Linux and the BSDs
(``$XDG_CONFIG_HOME/urlstore``, ``$XDG_DATA_HOME/urlstore``) and live under
``~/.urlstore/`` elsewhere. The data directory holds the on-disk key/value
store (stored tokens and ``local:`` data) and crash logs.

Settings come from ``config.json`` in the config directory; see
:func:`resolve_settings` for how environment variables and explicit values
override it. The file is replaced atomically on save.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Callable

from urlstore.exceptions import ConfigError
from urlstore.models import Settings

APP_DIR_NAME = "urlstore"
SETTINGS_FILE = "config.json"

ENV_AUTH_SERVICE = "URLSTORE_AUTH_SERVICE"
ENV_LOGIN_TIMEOUT = "URLSTORE_LOGIN_TIMEOUT"
ENV_STORAGE = "URLSTORE_STORAGE"

# environment variable -> (settings field, converter, description of valid values)
_ENV_SETTINGS: dict[str, tuple[str, Callable[[str], Any], str]] = {
    ENV_AUTH_SERVICE: ("auth_service", str, "a URL"),
    ENV_LOGIN_TIMEOUT: ("login_timeout", float, "a number of seconds"),
    ENV_STORAGE: ("storage", str, "'disk' or 'memory'"),
}


def _is_xdg_platform() -> bool:
    system = platform.system()
    return system == "Linux" or system.endswith("BSD")


def _app_dir(xdg_var: str, xdg_default: str, fallback: str) -> Path:
    if _is_xdg_platform():
        root = os.environ.get(xdg_var) or str(Path.home() / xdg_default)
        path = Path(root) / APP_DIR_NAME
    else:
        path = Path.home() / f".{APP_DIR_NAME}" / fallback
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_config_dir() -> Path:
    """Configuration directory, created on first use."""
    return _app_dir("XDG_CONFIG_HOME", ".config", "")


def get_data_dir() -> Path:
    """Data directory for stored tokens, ``local:`` data and crash logs."""
    return _app_dir("XDG_DATA_HOME", ".local/share", "data")


def _atomic_write(path: Path, text: str) -> None:
    """Replace *path* with *text* without ever exposing a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    handle, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(handle, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def settings_path() -> Path:
    return get_config_dir() / SETTINGS_FILE


def load_settings() -> Settings:
    """Read ``config.json``; defaults when it does not exist.

    Raises:
        ConfigError: If the file is not valid JSON or holds invalid values.
    """
    path = settings_path()
    if not path.is_file():
        return Settings()
    try:
        return Settings.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except ValueError as exc:
        raise ConfigError(f"Invalid settings at {path}: {exc}") from exc


def save_settings(settings: Settings) -> None:
    _atomic_write(settings_path(), json.dumps(settings.model_dump(mode="json"), indent=2) + "\n")


def resolve_settings(**overrides: Any) -> Settings:
    """Effective settings.

    Keyword *overrides* that are not ``None`` win over the ``URLSTORE_*``
    environment variables, which win over ``config.json``, which wins over
    the defaults.

    Raises:
        ConfigError: If the file, an environment variable or an override is invalid.
    """
    data = load_settings().model_dump()

    for var, (field, convert, expected) in _ENV_SETTINGS.items():
        raw = os.environ.get(var)
        if not raw:
            continue
        try:
            data[field] = convert(raw)
        except ValueError:
            raise ConfigError(f"{var} must be {expected}, got '{raw}'") from None

    data.update({key: value for key, value in overrides.items() if value is not None})

    try:
        return Settings.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
