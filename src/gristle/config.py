"""Helpers for loading the Grist connection settings from the environment or ``~/.gristle``."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import dotenv_values, set_key

ENV_URL = "GRIST_URL"
ENV_TOKEN = "GRIST_TOKEN"
ENV_CONFIG_FILE = "GRISTLE_CONFIG"

DEFAULT_CONFIG_FILENAME = ".gristle"


@dataclass(slots=True)
class GristConfig:
    """Configuration required to communicate with a Grist server."""

    url: str
    token: str

    def __post_init__(self) -> None:
        self.url = self.url.rstrip("/")

    @property
    def api_url(self) -> str:
        return f"{self.url}/api"


def default_config_file(env: Optional[Mapping[str, str]] = None) -> Path:
    """Return the path of the dotenv file holding the saved settings."""

    env_mapping: Mapping[str, str] = os.environ if env is None else env
    override = env_mapping.get(ENV_CONFIG_FILE)
    if override:
        return Path(override)
    home = env_mapping.get("HOME") or str(Path.home())
    return Path(home) / DEFAULT_CONFIG_FILENAME


def _load_config_file(path: Path) -> Mapping[str, str]:
    if not path.exists() or not path.is_file():
        return {}
    return {key: value for key, value in dotenv_values(path).items() if value is not None}


def load_config(
    *,
    config_file: Optional[Path | str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> GristConfig:
    """Load the Grist configuration.

    The loader tries, in order:

    1. Environment variables (``GRIST_URL`` and ``GRIST_TOKEN``).
    2. The dotenv file given by ``config_file``, ``GRISTLE_CONFIG`` or ``~/.gristle``.
    """

    env_mapping: Mapping[str, str] = os.environ if env is None else env
    path = Path(config_file) if config_file else default_config_file(env_mapping)
    file_values = _load_config_file(path)

    def _resolve_value(key: str) -> str:
        value = env_mapping.get(key) or file_values.get(key)
        if not value:
            raise RuntimeError(
                f"Missing Grist configuration value '{key}'. "
                f"Set the {key} environment variable or run 'gristle config' "
                f"to write it to {path}."
            )
        return value

    return GristConfig(url=_resolve_value(ENV_URL), token=_resolve_value(ENV_TOKEN))


def save_config(config: GristConfig, config_file: Optional[Path | str] = None) -> Path:
    """Persist the configuration as a dotenv file and return its path."""

    path = Path(config_file) if config_file else default_config_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch(mode=0o600, exist_ok=True)
    set_key(str(path), ENV_URL, config.url, quote_mode="never")
    set_key(str(path), ENV_TOKEN, config.token, quote_mode="never")
    return path


__all__ = ["GristConfig", "default_config_file", "load_config", "save_config"]
