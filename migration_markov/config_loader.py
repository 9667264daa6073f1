"""YAML configuration for the forecaster.

Files live in ``config/`` at the repository root unless the
``MIGRATION_MARKOV_CONFIG_DIR`` environment variable points elsewhere.
Parsed files are cached per path; pass ``reload=True`` to re-read.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "MIGRATION_MARKOV_CONFIG_DIR"
_DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"

_cache: dict[Path, dict[str, Any]] = {}


def config_dir() -> Path:
    """Directory searched for ``<name>.yml`` files."""
    override = os.environ.get(CONFIG_DIR_ENV)
    return Path(override) if override else _DEFAULT_CONFIG_DIR


def load_config(name: str, *, reload: bool = False) -> dict[str, Any]:
    """Return the parsed ``<name>.yml`` as a dict.

    Raises
    ------
    FileNotFoundError
        The file does not exist.
    ValueError
        The file does not hold a mapping at its top level.
    """
    path = config_dir() / f"{name}.yml"
    if not reload and path in _cache:
        return _cache[path]

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Config {path} must be a mapping, got {type(data).__name__}")

    logger.debug("Loaded %s (%d keys)", path, len(data))
    _cache[path] = data
    return data


def get_model_config() -> dict[str, Any]:
    """Model defaults from ``model_config.yml``."""
    return load_config("model_config")


def get_geography_config() -> dict[str, Any]:
    """Coordinates and neighbour lists from ``geography.yml``."""
    return load_config("geography")
