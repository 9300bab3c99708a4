from __future__ import annotations

import json
import logging
import os
import subprocess
from pathlib import Path
from typing import Optional

from brewcatalog.domain.models import EngineConfig

logger = logging.getLogger(__name__)

DATA_ROOT_ENV_VAR = "BREWCATALOG_DATA_DIR"
CONFIG_FILENAME = "catalog.json"
DEFAULT_BREW_PREFIX = "/opt/homebrew"

_DEFAULT_DATA_DIR = Path.home() / ".config" / "brewcatalog"
_DEFAULT_CACHE_DIR = Path.home() / ".cache" / "brewcatalog"


def get_data_dir() -> Path:
    """
    Determine the data directory path.

    Priority:
    1. Environment variable BREWCATALOG_DATA_DIR
    2. ~/.config/brewcatalog
    """
    env_path = os.environ.get(DATA_ROOT_ENV_VAR)
    if env_path:
        d = Path(env_path).expanduser()
    else:
        d = _DEFAULT_DATA_DIR
    d.mkdir(parents=True, exist_ok=True)
    return d


def _config_path(data_dir: Path) -> Path:
    return data_dir / CONFIG_FILENAME


def load_config(data_dir: Optional[Path] = None) -> EngineConfig:
    """
    Load catalog.json, merging with defaults for any missing fields,
    and write it back so any new fields are persisted.
    """
    path = _config_path(data_dir or get_data_dir())
    if path.exists():
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            config = EngineConfig(**raw)
        except Exception as e:
            # If parsing fails, fall back to defaults and overwrite file.
            logger.warning(f"Invalid config at {path}, using defaults: {e}")
            config = EngineConfig()
    else:
        config = EngineConfig()

    try:
        path.write_text(config.model_dump_json(indent=2), encoding="utf-8")
    except OSError as e:
        logger.warning(f"Failed to persist config to {path}: {e}")
    return config


def resolve_cache_dir(config: EngineConfig) -> Path:
    if config.cache_dir:
        return Path(config.cache_dir).expanduser()
    return _DEFAULT_CACHE_DIR


def resolve_brew_prefix(config: EngineConfig) -> Path:
    """
    Installation prefix: the configured one, else `brew --prefix`, else the
    default Apple Silicon location.
    """
    if config.brew_prefix:
        return Path(config.brew_prefix).expanduser()
    try:
        result = subprocess.run(
            [config.brew_executable, "--prefix"],
            capture_output=True,
            text=True,
            check=True,
            timeout=30,
        )
        prefix = result.stdout.strip()
        if prefix:
            return Path(prefix)
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning(f"Failed to locate brew prefix, using {DEFAULT_BREW_PREFIX}: {e}")
    return Path(DEFAULT_BREW_PREFIX)
