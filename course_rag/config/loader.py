"""YAML configuration loader with environment variable overrides.

Configuration is loaded in layers (later layers override earlier):

  1. config/config.yaml  -- static defaults checked into the repo
  2. .env file           -- local developer overrides (not committed)
  3. Environment vars    -- ``COURSE_RAG_*`` set at deploy time

The YAML file groups settings into sections whose leaf keys are
:class:`Settings` field names::

    chunking:
      max_chunk_size: 1000
    retrieval:
      rrf_k: 60

:func:`load_config` returns the merged section dict; :func:`load_settings`
returns a validated :class:`Settings` built from the same layers.
"""

from pathlib import Path
from typing import Any

import structlog
import yaml

from course_rag.config.settings import Settings
from course_rag.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)


def load_config(path: str = "config/config.yaml") -> dict:
    """Load YAML config and merge explicitly-set environment values on top.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Fully resolved configuration dictionary, grouped by section.
    """
    yaml_config = _read_yaml(path)

    # Only fields actually supplied by the environment or .env override YAML;
    # class defaults must not clobber values the YAML file sets.
    env_settings = Settings()
    env_values = {
        name: getattr(env_settings, name) for name in env_settings.model_fields_set
    }

    sections = _section_index(yaml_config)
    overrides: dict[str, dict[str, Any]] = {}
    for name, value in env_values.items():
        section = sections.get(name, "overrides")
        overrides.setdefault(section, {})[name] = value

    _deep_merge(yaml_config, overrides)
    return yaml_config


def load_settings(path: str = "config/config.yaml") -> Settings:
    """Build validated :class:`Settings` from YAML defaults plus environment."""
    config = load_config(path)
    flat: dict[str, Any] = {}
    for section, values in config.items():
        if isinstance(values, dict):
            flat.update({k: v for k, v in values.items() if k in Settings.model_fields})
        elif section in Settings.model_fields:
            flat[section] = values
    try:
        return Settings(**flat)
    except ValueError as exc:
        raise ConfigurationError(message=f"Invalid configuration in {path}: {exc}") from exc


def _read_yaml(path: str) -> dict:
    config_path = Path(path)
    if not config_path.exists():
        logger.debug("config_file_missing", path=path)
        return {}
    try:
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(message=f"Could not parse {path}: {exc}") from exc
    if not isinstance(loaded, dict):
        raise ConfigurationError(message=f"{path} must contain a mapping at the top level")
    return loaded


def _section_index(config: dict) -> dict[str, str]:
    """Map each leaf key to the YAML section that declares it."""
    index: dict[str, str] = {}
    for section, values in config.items():
        if isinstance(values, dict):
            for key in values:
                index[key] = section
    return index


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
