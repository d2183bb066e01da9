"""Configuration module -- exports Settings and the YAML/env loaders."""

from course_rag.config.loader import load_config, load_settings
from course_rag.config.settings import Settings

__all__ = ["Settings", "load_config", "load_settings"]
