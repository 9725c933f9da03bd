"""
Settings loader — hostprep.yml + environment into a Settings model.

Precedence, highest first:
    CLI option  >  environment variable  >  hostprep.yml  >  defaults

CLI options are applied by the command modules on top of what this
returns. The environment variables are the ones the provisioning
tasks have always honoured (``SSH_PORT``, ``CONFIG_FILE``,
``REMOTE_HOST``, ``MYSQL_ROOT_PASSWORD``).
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from hostprep.core.models.settings import Settings

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "hostprep.yml"

# env var → (section, field)
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "SSH_PORT": ("ssh", "port"),
    "CONFIG_FILE": ("ssh", "config_file"),
    "REMOTE_HOST": ("keys", "remote_host"),
    "MYSQL_ROOT_PASSWORD": ("mysql", "root_password"),
}

# Older name for REMOTE_HOST, used only when REMOTE_HOST is unset
_LEGACY_ENV: dict[str, str] = {"SCRIPT_HOST": "REMOTE_HOST"}


class ConfigError(Exception):
    """Raised when settings are invalid or unreadable."""


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for hostprep.yml starting from ``start_dir`` (default cwd), walking up."""
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):
        candidate = current / CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def load_settings(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
    search: bool = True,
) -> Settings:
    """Load and validate settings.

    Args:
        path: Explicit config file. Must exist when given.
        env: Environment mapping (default: ``os.environ``).
        search: Look for hostprep.yml upward from cwd when ``path`` is None.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid.
    """
    env = os.environ if env is None else env
    data: dict[str, Any] = {}

    if path is None and search:
        path = find_config_file()

    if path is not None:
        data = _read_yaml(path)

    for name, (section, key) in _env_overrides(env).items():
        data.setdefault(section, {})
        if not isinstance(data[section], dict):
            raise ConfigError(f"Section '{section}' must be a mapping")
        data[section][key] = env[name]
        logger.debug("Setting %s.%s from $%s", section, key, name)

    try:
        return Settings.model_validate(data)
    except ValueError as e:
        source = path or "environment"
        raise ConfigError(f"Invalid settings ({source}): {e}") from e


def _env_overrides(env: Mapping[str, str]) -> dict[str, tuple[str, str]]:
    present = {name: target for name, target in _ENV_OVERRIDES.items() if env.get(name)}
    for legacy, modern in _LEGACY_ENV.items():
        if env.get(legacy) and modern not in present:
            present[legacy] = _ENV_OVERRIDES[modern]
    return present


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading settings from %s", path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")
    return data


def default_state_dir(settings: Settings, euid: int | None = None) -> Path:
    """Where the run history lives.

    ``HOSTPREP_STATE_DIR`` wins, then ``state_dir`` from the settings,
    then ``/var/lib/hostprep`` for root and ``~/.local/share/hostprep``
    for everyone else.
    """
    env_dir = os.environ.get("HOSTPREP_STATE_DIR")
    if env_dir:
        return Path(env_dir)
    if settings.state_dir is not None:
        return settings.state_dir
    euid = os.geteuid() if euid is None else euid
    if euid == 0:
        return Path("/var/lib/hostprep")
    return Path.home() / ".local" / "share" / "hostprep"
