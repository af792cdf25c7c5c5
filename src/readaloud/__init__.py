"""
ReadAloud - speech playback and voice control for assistive reading

Reads text aloud with live word highlighting, optionally mixing in
pre-rendered audio, and keeps an always-listening voice command loop
running beside it.
"""

__version__ = "1.0.0"
__author__ = "ReadAloud Team"
__email__ = "info@readaloud.local"

from .cli import main

__all__ = ["main"]
