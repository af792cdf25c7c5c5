"""
Centralized configuration loader and accessors for ReadAloud.

Loads YAML from `config/config.yaml` (or the file named by READALOUD_CONFIG) and
provides typed getters aligned with the documented schema (playback.*,
recognition.*, dialogue.*, responder.*, logging.*).
"""
from __future__ import annotations

import os
import re
from typing import Any, Dict, List, Optional, Union

import yaml

from .error_handler import ConfigurationError
from .utils import get_config_path

_CONFIG_PATH = os.environ.get("READALOUD_CONFIG") or str(get_config_path())
_CFG: Dict[str, Any] = {}
_LOADED = False

_BOOL_TRUE_VALUES = frozenset({"true", "1", "yes", "y", "on"})
_BOOL_FALSE_VALUES = frozenset({"false", "0", "no", "n", "off"})

_READING_RATE_NAMES = {"slow": 0.75, "normal": 1.0, "fast": 1.5}
_LANGUAGE_TAG = re.compile(r"^[A-Za-z]{2,3}([-_][A-Za-z0-9]{2,8})*$")


def _load() -> None:
    global _CFG, _LOADED
    if _LOADED:
        return
    if os.path.exists(_CONFIG_PATH):
        with open(_CONFIG_PATH, "r", encoding="utf-8") as f:
            _CFG = yaml.safe_load(f) or {}
    else:
        _CFG = {}

    _validate_config(_CFG)
    _LOADED = True


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate_config(config: Dict[str, Any]) -> None:
    """Validate configuration values and provide helpful error messages"""
    errors = []
    warnings = []

    playback = config.get("playback") or {}
    if isinstance(playback, dict):
        if "sample_rate" in playback:
            sr = playback["sample_rate"]
            if not _is_number(sr) or sr <= 0:
                errors.append("playback.sample_rate must be a positive number")
            elif sr not in [8000, 16000, 22050, 24000, 44100, 48000]:
                warnings.append("playback.sample_rate should be a standard rate (8000, 16000, 22050, 24000, 44100, 48000)")

        if "timing_rate" in playback:
            tr = playback["timing_rate"]
            if not _is_number(tr) or tr <= 0 or tr > 1:
                errors.append("playback.timing_rate must be in (0, 1]")

        if "reading_rate" in playback:
            rr = playback["reading_rate"]
            if isinstance(rr, str):
                if rr.strip().lower() not in _READING_RATE_NAMES:
                    errors.append("playback.reading_rate must be slow, normal, fast or a number")
            elif not _is_number(rr) or rr <= 0 or rr > 10:
                errors.append("playback.reading_rate must be in (0, 10]")

        if "words_per_minute" in playback:
            wpm = playback["words_per_minute"]
            if not _is_number(wpm) or wpm <= 0:
                errors.append("playback.words_per_minute must be a positive number")
    else:
        errors.append("playback must be a mapping")

    recognition = config.get("recognition") or {}
    if isinstance(recognition, dict):
        if "language" in recognition:
            lang = recognition["language"]
            if not isinstance(lang, str) or not _LANGUAGE_TAG.match(lang):
                errors.append("recognition.language must be a language tag such as en-US")

        for key in ("restart_delay", "max_restart_delay"):
            if key in recognition:
                delay = recognition[key]
                if not _is_number(delay) or delay <= 0 or delay > 60:
                    errors.append(f"recognition.{key} must be in (0, 60]")

        delay = recognition.get("restart_delay")
        if _is_number(delay) and not 0.1 <= delay <= 0.25:
            warnings.append("recognition.restart_delay outside 0.1-0.25s may cause restart storms or sluggish recovery")

        max_delay = recognition.get("max_restart_delay")
        if _is_number(delay) and _is_number(max_delay) and max_delay < delay:
            errors.append("recognition.max_restart_delay must not be smaller than recognition.restart_delay")

        for key in ("listen_timeout", "phrase_time_limit", "energy_threshold"):
            if key in recognition and recognition[key] is not None:
                value = recognition[key]
                if not _is_number(value) or value <= 0:
                    errors.append(f"recognition.{key} must be a positive number")
    else:
        errors.append("recognition must be a mapping")

    dialogue = config.get("dialogue") or {}
    if isinstance(dialogue, dict) and "restart_delay" in dialogue:
        delay = dialogue["restart_delay"]
        if not _is_number(delay) or delay <= 0 or delay > 60:
            errors.append("dialogue.restart_delay must be in (0, 60]")

    responder = config.get("responder") or {}
    if isinstance(responder, dict):
        if "server_url" in responder:
            url = responder["server_url"]
            if not isinstance(url, str) or not url.startswith(("http://", "https://")):
                errors.append("responder.server_url must be an http(s) URL")
        if "timeout" in responder:
            timeout = responder["timeout"]
            if not _is_number(timeout) or timeout <= 0:
                errors.append("responder.timeout must be a positive number")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors)
        raise ConfigurationError(error_msg, component="config", operation="validate")

    for warning in warnings:
        print(f"Config warning: {warning}")


def get(path: str, default: Any = None) -> Any:
    """Dot-path getter from loaded config.

    Example: get("recognition.restart_delay", 0.25)
    """
    _load()
    cur: Any = _CFG
    for part in path.split("."):
        if isinstance(cur, dict) and part in cur:
            cur = cur[part]
        else:
            return default
    return cur


def get_typed(path: str, default: Any, cast_type: type) -> Any:
    """Get a configuration value with type casting and default fallback."""
    val = get(path, default)

    if cast_type is bool:
        if isinstance(val, bool):
            return val
        if isinstance(val, str):
            normalized = val.strip().lower()
            if normalized in _BOOL_TRUE_VALUES:
                return True
            if normalized in _BOOL_FALSE_VALUES:
                return False
            return default
        try:
            return bool(val)
        except (TypeError, ValueError):
            return default

    if isinstance(val, cast_type):
        return val

    try:
        return cast_type(val)
    except (TypeError, ValueError):
        return default


# ---- Playback ----
def get_playback_sample_rate() -> int:
    """Sample rate of rendered audio clips and of the output stream"""
    return get_typed("playback.sample_rate", 24000, int)

def get_timing_rate() -> float:
    """Rate of the muted utterance that drives highlighting under rendered audio"""
    return get_typed("playback.timing_rate", 0.7, float)

def get_reading_rate() -> float:
    val = get("playback.reading_rate", "normal")
    if isinstance(val, str):
        return _READING_RATE_NAMES.get(val.strip().lower(), 1.0)
    return get_typed("playback.reading_rate", 1.0, float)

def get_words_per_minute() -> int:
    """Synthesizer words-per-minute at reading rate 1.0"""
    return get_typed("playback.words_per_minute", 180, int)

def get_audio_output_device() -> Optional[Union[int, str]]:
    """Return configured output device (int index or str name) or None."""
    return get("playback.output_device", None)

def audio_disabled() -> bool:
    """READALOUD_NO_AUDIO=1 keeps the output context from opening a stream."""
    return os.environ.get("READALOUD_NO_AUDIO", "0") == "1"


# ---- Recognition ----
def get_recognition_language() -> str:
    return str(get("recognition.language", "en-US"))

def recognition_enabled() -> bool:
    return get_typed("recognition.enabled", True, bool)

def feedback_enabled() -> bool:
    """Speak a confirmation phrase after each recognized command"""
    return get_typed("recognition.feedback_enabled", True, bool)

def get_restart_delay() -> float:
    return get_typed("recognition.restart_delay", 0.25, float)

def get_max_restart_delay() -> float:
    return get_typed("recognition.max_restart_delay", 5.0, float)

def get_listen_timeout() -> Optional[float]:
    val = get("recognition.listen_timeout", 8.0)
    return None if val is None else get_typed("recognition.listen_timeout", 8.0, float)

def get_phrase_time_limit() -> Optional[float]:
    val = get("recognition.phrase_time_limit", 5.0)
    return None if val is None else get_typed("recognition.phrase_time_limit", 5.0, float)

def get_energy_threshold() -> int:
    return get_typed("recognition.energy_threshold", 300, int)


# ---- Dialogue ----
def get_dialogue_restart_delay() -> float:
    return get_typed("dialogue.restart_delay", get_restart_delay(), float)

def dialogue_thinking_mode() -> bool:
    return get_typed("dialogue.thinking_mode", False, bool)


# ---- Responder ----
def get_responder_url() -> str:
    return str(get("responder.server_url", "http://localhost:8080/v1/chat/completions"))

def get_responder_model() -> str:
    return str(get("responder.model", "gemini-2.5-flash-lite"))

def get_responder_thinking_model() -> str:
    return str(get("responder.thinking_model", "gemini-2.5-pro"))

def get_responder_timeout() -> float:
    return get_typed("responder.timeout", 60.0, float)

def get_responder_system_prompt() -> str:
    return str(get(
        "responder.system_prompt",
        "You are a helpful and friendly assistant for users with low vision. "
        "Keep your answers concise, clear, and easy to understand.",
    ))

def get_responder_api_key() -> Optional[str]:
    """API key comes from the environment only so it never lands in config files"""
    return os.getenv("READALOUD_API_KEY") or None


# ---- Logging ----
def structured_logging() -> bool:
    return get_typed("logging.structured", False, bool)


def validate_config_silent() -> tuple[bool, List[str]]:
    """Validate configuration without raising exceptions

    Returns:
        tuple: (is_valid, list_of_errors)
    """
    try:
        if not _LOADED:
            _load()
        _validate_config(_CFG)
        return True, []
    except ValueError as e:
        return False, [str(e)]
    except (OSError, yaml.YAMLError) as e:
        return False, [f"Validation error: {e}"]


def get_all() -> Dict[str, Any]:
    """Get the entire configuration dictionary"""
    _load()
    return _CFG.copy()


def reload_config(path: Optional[str] = None) -> None:
    """Reload configuration from file, optionally switching to a new path"""
    global _CFG, _LOADED, _CONFIG_PATH
    if path:
        _CONFIG_PATH = os.path.abspath(path)
    _LOADED = False
    _CFG = {}
    _load()
