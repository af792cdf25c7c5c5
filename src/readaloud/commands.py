#!/usr/bin/env python3
"""
Voice command tables and dispatch.

`match_command` is the pure keyword matcher. `CommandRegistry` stores the
language-scoped tables keyed `<context>_<name>`; `VoiceCommandController`
binds a command-mode `RecognitionSupervisor` to whatever table the caller
pushed most recently and speaks the feedback phrase after a command runs.
"""
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from . import config as CFG
from .error_handler import ErrorSeverity, handle_error
from .logging_utils import setup_logger
from .speech_types import language_tag
from .supervisor import LatestRef, RecognitionSupervisor, SupervisorState

logger = setup_logger("readaloud.commands", "logs/commands.log")

CONTEXTS = ("common", "main", "viewer", "settings")

# seconds after feedback was queued or finished during which a transcript repeating it is echo
ECHO_WINDOW = 5.0


@dataclass(frozen=True)
class Command:
    keywords: Tuple[str, ...]
    action: Callable[[], None]
    feedback: str = ""
    name: str = ""


def match_command(transcript: str, commands: Sequence[Command]) -> Optional[Command]:
    """First command in table order with a keyword contained in the transcript"""
    normalized = (transcript or "").strip().lower()
    if not normalized:
        return None
    for command in commands:
        for keyword in command.keywords:
            keyword = keyword.strip().lower()
            if keyword and keyword in normalized:
                return command
    return None


class CommandRegistry:
    """Per-language command tables keyed `<context>_<name>`"""

    def __init__(self):
        self._tables: Dict[str, "OrderedDict[str, Command]"] = {}

    def register(self, language, key: str, keywords: Iterable[str], action: Callable[[], None], feedback: str = "") -> Command:
        context = key.split("_", 1)[0]
        if context not in CONTEXTS or "_" not in key:
            raise ValueError(f"Command key must start with one of {', '.join(c + '_' for c in CONTEXTS)}: {key}")
        command = Command(keywords=tuple(keywords), action=action, feedback=feedback, name=key)
        self._tables.setdefault(language_tag(language), OrderedDict())[key] = command
        return command

    def languages(self) -> List[str]:
        return list(self._tables)

    def get(self, language, key: str) -> Optional[Command]:
        return self._tables.get(language_tag(language), {}).get(key)

    def _filter(self, language, context: str) -> List[Command]:
        prefix = f"{context}_"
        table = self._tables.get(language_tag(language), {})
        return [command for key, command in table.items() if key.startswith(prefix)]

    def commands_for(self, language, context: str, settings_open: bool = False) -> List[Command]:
        """Common commands, then the settings overlay or the view's commands"""
        common = self._filter(language, "common")
        if settings_open:
            return common + self._filter(language, "settings")
        if context in ("main", "viewer"):
            return common + self._filter(language, context)
        return common


class VoiceCommandController:
    """Runs matched voice commands against the latest command table"""

    def __init__(
        self,
        playback,
        language=None,
        feedback_enabled: Optional[bool] = None,
        channel_factory=None,
        scheduler=None,
        on_state_change: Optional[Callable[[SupervisorState], None]] = None,
        on_permission_denied: Optional[Callable[[], None]] = None,
    ):
        self.playback = playback
        self._commands: LatestRef[List[Command]] = LatestRef([])
        self._feedback_enabled = LatestRef(CFG.feedback_enabled() if feedback_enabled is None else feedback_enabled)
        self._language = LatestRef(language_tag(language or CFG.get_recognition_language()))
        self._dispatch_lock = threading.Lock()
        self._last_feedback: LatestRef[Tuple[str, float]] = LatestRef(("", 0.0))
        self.last_command: Optional[Command] = None
        self.supervisor = RecognitionSupervisor(
            handler=self.handle_transcript,
            channel_factory=channel_factory,
            language=self._language.get(),
            continuous=True,
            normalize_case=True,
            scheduler=scheduler,
            on_state_change=on_state_change,
            on_permission_denied=on_permission_denied,
            name="commands",
        )

    @property
    def language(self) -> str:
        return self._language.get()

    @property
    def feedback_enabled(self) -> bool:
        return self._feedback_enabled.get()

    @property
    def is_listening(self) -> bool:
        return self.supervisor.is_listening

    def set_commands(self, commands: Sequence[Command]) -> None:
        self._commands.set(list(commands))

    def set_feedback_enabled(self, enabled: bool) -> None:
        self._feedback_enabled.set(bool(enabled))

    def set_language(self, language) -> None:
        tag = language_tag(language)
        self._language.set(tag)
        self.supervisor.set_language(tag)

    def set_enabled(self, enabled: bool) -> None:
        self.supervisor.set_enabled(enabled)

    def enable(self) -> None:
        """Turn voice commands on, retrying the microphone after a denial"""
        self.supervisor.reset_permission()
        self.supervisor.enable()

    def disable(self) -> None:
        self.supervisor.disable()

    def _is_echo(self, transcript: str) -> bool:
        phrase, spoken_at = self._last_feedback.get()
        if not phrase or time.monotonic() - spoken_at > ECHO_WINDOW:
            return False
        return phrase in (transcript or "").strip().lower()

    def handle_transcript(self, transcript: str) -> Optional[Command]:
        if self._is_echo(transcript):
            logger.debug(f"Ignoring echo of feedback phrase: '{transcript}'")
            return None
        command = match_command(transcript, self._commands.get())
        if command is None:
            logger.debug(f"No command matched '{transcript}'")
            return None

        logger.info(f"Voice command '{command.name or command.keywords[0]}' matched '{transcript}'")
        with self._dispatch_lock:
            self.last_command = command
        try:
            command.action()
        except Exception as e:
            handle_error(e, "commands", "run_action", ErrorSeverity.MEDIUM, metadata={'command': command.name})
            return command

        if self._feedback_enabled.get() and command.feedback:
            phrase = command.feedback.strip().lower()
            self._last_feedback.set((phrase, time.monotonic()))
            self.playback.announce(
                command.feedback,
                self._language.get(),
                on_end=lambda: self._last_feedback.set((phrase, time.monotonic())),
            )
        return command
