#!/usr/bin/env python3
"""
ReadAloud Utilities - Common path helpers
"""
from pathlib import Path


def get_project_root() -> Path:
    """Get the project root directory as a Path object"""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Get the default config file path"""
    return get_project_root() / "config" / "config.yaml"


__all__ = ["get_project_root", "get_config_path"]
