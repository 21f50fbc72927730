"""Configuration loading with XDG paths and precedence resolution.

This module turns the places a user can configure steadyhttp into one
:class:`~steadyhttp.models.ClientConfig`:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.steadyhttp/`` on macOS and Windows. See :func:`get_config_dir`.
* **Config file** -- a JSON document holding the data fields of
  :class:`~steadyhttp.models.ClientConfig` (callbacks and interceptors
  can only be set from code).
* **Precedence resolution** -- :func:`resolve_client_config` merges CLI
  flags, environment variables, the config file and the defaults.
"""

from __future__ import annotations

import json
import os
import platform
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from steadyhttp.exceptions import ConfigError
from steadyhttp.models import ClientConfig

_APP_NAME = "steadyhttp"
_CONFIG_FILENAME = "config.json"

ENV_BASE_URL = "STEADYHTTP_BASE_URL"
ENV_TIMEOUT = "STEADYHTTP_TIMEOUT"
ENV_DEBUG = "STEADYHTTP_DEBUG"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform follows the XDG Base Directory layout (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/steadyhttp/`` (default ``~/.config/steadyhttp/``).
    On macOS/Windows: ``~/.steadyhttp/``.
    """
    if _is_xdg_platform():
        env_value = os.environ.get("XDG_CONFIG_HOME", "")
        base = Path(env_value) if env_value else Path.home() / ".config"
        path = base / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}"
    path.mkdir(parents=True, exist_ok=True)
    return path


def default_config_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


# --- Config file ---


def load_config_file(path: Path) -> ClientConfig:
    """Load a :class:`ClientConfig` from a JSON file.

    Args:
        path: The file to read.

    Raises:
        ConfigError: If the file is missing, is not valid JSON, or fails
            Pydantic validation.
    """
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return ClientConfig.model_validate(data)
    except (json.JSONDecodeError, ValidationError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


# --- Environment ---


def _env_bool(name: str) -> Optional[bool]:
    raw = os.environ.get(name)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _env_float(name: str) -> Optional[float]:
    raw = os.environ.get(name)
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


# --- Precedence resolution ---


def resolve_client_config(
    config_file: Optional[Path] = None,
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
    debug: Optional[bool] = None,
) -> ClientConfig:
    """Resolve the effective client config.

    Precedence (high to low):
        1. Explicit arguments (CLI flags)
        2. Environment variables (``STEADYHTTP_BASE_URL``,
           ``STEADYHTTP_TIMEOUT``, ``STEADYHTTP_DEBUG``)
        3. Config file (*config_file*, else ``<config_dir>/config.json`` if present)
        4. Defaults

    Raises:
        ConfigError: On an unreadable config file or malformed env values.
    """
    # 4 + 3. Defaults, then the config file
    if config_file is not None:
        config = load_config_file(config_file)
    else:
        path = default_config_path()
        config = load_config_file(path) if path.is_file() else ClientConfig()

    # 2. Environment variables
    config = config.with_overrides(
        base_url=os.environ.get(ENV_BASE_URL) or None,
        timeout=_env_float(ENV_TIMEOUT),
        debug=_env_bool(ENV_DEBUG),
    )

    # 1. CLI flags (highest precedence)
    return config.with_overrides(base_url=base_url, timeout=timeout, debug=debug)
