#!/usr/bin/env python3
"""
Always-listening recognition loop.

`RecognitionSupervisor` owns one `RecognitionChannel` at a time and keeps it
alive: benign ends and transient errors retire the channel and schedule a
fresh one after a short delay; a permission error is terminal until the loop
is disabled and enabled again, or until `reset_permission()`. Callbacks from a
retired channel and restart timers that were superseded are ignored by identity.

State transitions happen under one RLock. Handlers and observers are always
called after the lock is released.
"""
import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from . import config as CFG
from .error_handler import ErrorSeverity, handle_error
from .logging_utils import log_with_context, setup_logger
from .recognition import PERMISSION_ERRORS, RecognitionChannel, SpeechRecognitionChannel
from .speech_types import language_tag

logger = setup_logger("readaloud.supervisor", "logs/recognition.log")

T = TypeVar("T")


class SupervisorState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    LISTENING = "listening"
    SUSPENDED_BY_PERMISSION = "suspended_by_permission"


class LatestRef(Generic[T]):
    """Mutable cell read on every event so callbacks never see stale values"""

    def __init__(self, value: T):
        self._value = value
        self._lock = threading.Lock()

    def get(self) -> T:
        with self._lock:
            return self._value

    def set(self, value: T) -> None:
        with self._lock:
            self._value = value


class ThreadingScheduler:
    """Runs callbacks after a delay on daemon timer threads"""

    def schedule(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


ChannelFactory = Callable[[str, bool], RecognitionChannel]


def default_channel_factory(language: str, continuous: bool) -> RecognitionChannel:
    return SpeechRecognitionChannel(language=language, continuous=continuous)


class RecognitionSupervisor:
    def __init__(
        self,
        handler: Callable[[str], None],
        channel_factory: Optional[ChannelFactory] = None,
        language=None,
        continuous: bool = True,
        normalize_case: bool = True,
        restart_delay: Optional[float] = None,
        max_restart_delay: Optional[float] = None,
        scheduler=None,
        on_state_change: Optional[Callable[[SupervisorState], None]] = None,
        on_permission_denied: Optional[Callable[[], None]] = None,
        name: str = "commands",
    ):
        self.name = name
        self._handler = handler
        self._channel_factory = channel_factory or default_channel_factory
        self._language = language_tag(language or CFG.get_recognition_language())
        self.continuous = continuous
        self.normalize_case = normalize_case
        self.restart_delay = restart_delay if restart_delay is not None else CFG.get_restart_delay()
        self.max_restart_delay = max_restart_delay if max_restart_delay is not None else CFG.get_max_restart_delay()
        self._scheduler = scheduler or ThreadingScheduler()
        self._on_state_change = on_state_change
        self._on_permission_denied = on_permission_denied

        self._lock = threading.RLock()
        self._state = SupervisorState.STOPPED
        self._enabled = False
        self._held = False
        self._permission_denied = False
        self._stop_in_progress = False
        self._channel: Optional[RecognitionChannel] = None
        self._channel_listening = False
        self._pending_restart: Optional[object] = None
        self._pending_handle: Any = None
        self._failures = 0
        self._start_attempts = 0
        self._notifications: List[Callable[[], None]] = []

    # ---- properties ----

    @property
    def state(self) -> SupervisorState:
        with self._lock:
            return self._state

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def permission_denied(self) -> bool:
        return self._permission_denied

    @property
    def is_listening(self) -> bool:
        return self.state == SupervisorState.LISTENING

    @property
    def language(self) -> str:
        return self._language

    @property
    def start_attempts(self) -> int:
        return self._start_attempts

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'name': self.name,
                'state': self._state.value,
                'enabled': self._enabled,
                'held': self._held,
                'language': self._language,
                'permission_denied': self._permission_denied,
                'restart_pending': self._pending_restart is not None,
                'consecutive_failures': self._failures,
                'start_attempts': self._start_attempts,
            }

    # ---- external control ----

    def set_enabled(self, enabled: bool) -> None:
        with self._lock:
            if enabled:
                if not self._enabled and self._permission_denied:
                    # disable then enable retries the microphone
                    logger.info(f"[{self.name}] Re-enabled after permission denial; retrying")
                    self._permission_denied = False
                    self._failures = 0
                self._enabled = True
                if self._permission_denied:
                    logger.info(f"[{self.name}] Enable ignored: microphone permission denied")
                elif not self._held and self._channel is None and self._pending_restart is None:
                    self._start_channel_locked()
            else:
                self._enabled = False
                self._stop_locked()
        self._flush()

    def enable(self) -> None:
        self.set_enabled(True)

    def disable(self) -> None:
        self.set_enabled(False)

    def set_language(self, language) -> None:
        tag = language_tag(language)
        with self._lock:
            if tag == self._language:
                return
            self._language = tag
            logger.info(f"[{self.name}] Recognition language -> {tag}")
            if self._channel is not None or self._pending_restart is not None:
                self._stop_locked()
                if self._can_listen_locked():
                    self._start_channel_locked()
        self._flush()

    def hold(self) -> None:
        """Stop the current channel without disabling the loop"""
        with self._lock:
            self._held = True
            self._stop_locked()
        self._flush()

    def relisten(self) -> bool:
        """Start a fresh channel after hold(); False when the loop cannot listen"""
        with self._lock:
            self._held = False
            if not self._can_listen_locked():
                return False
            if self._channel is None:
                self._cancel_restart_locked()
                self._start_channel_locked()
        self._flush()
        return True

    def reset_permission(self) -> None:
        """Clear a permission denial; listening resumes on the next enable()"""
        with self._lock:
            if not self._permission_denied:
                return
            self._permission_denied = False
            self._failures = 0
            self._set_state_locked(SupervisorState.STOPPED)
        self._flush()

    # ---- channel lifecycle ----

    def _can_listen_locked(self) -> bool:
        return self._enabled and not self._held and not self._permission_denied

    def _start_channel_locked(self) -> None:
        self._start_attempts += 1
        try:
            channel = self._channel_factory(self._language, self.continuous)
        except Exception as e:
            self._failures += 1
            handle_error(e, "supervisor", "create_channel", ErrorSeverity.LOW)
            self._schedule_restart_locked()
            return
        channel.on_start = lambda: self._handle_start(channel)
        channel.on_result = lambda transcript, is_final=True: self._handle_result(channel, transcript, is_final)
        channel.on_error = lambda code, message="": self._handle_error(channel, code, message)
        channel.on_end = lambda: self._handle_end(channel)
        self._channel = channel
        self._channel_listening = False
        self._set_state_locked(SupervisorState.STARTING)
        try:
            channel.start()
        except Exception as e:
            channel.detach()
            if self._channel is channel:
                self._channel = None
            self._failures += 1
            handle_error(e, "supervisor", "start_channel", ErrorSeverity.LOW)
            self._schedule_restart_locked()

    def _stop_locked(self) -> None:
        self._stop_in_progress = True
        try:
            self._cancel_restart_locked()
            channel = self._channel
            self._channel = None
            self._channel_listening = False
            if channel is not None:
                channel.detach()
                try:
                    channel.stop()
                except Exception as e:
                    logger.debug(f"[{self.name}] Channel stop error: {e}")
            if not self._permission_denied:
                self._set_state_locked(SupervisorState.STOPPED)
        finally:
            self._stop_in_progress = False

    def _retire_channel_locked(self, channel: RecognitionChannel) -> None:
        channel.detach()
        if self._channel is channel:
            self._channel = None
        self._channel_listening = False
        try:
            channel.abort()
        except Exception as e:
            logger.debug(f"[{self.name}] Channel abort error: {e}")

    def _next_delay_locked(self) -> float:
        if self._failures <= 0:
            return self.restart_delay
        return min(self.restart_delay * (2 ** self._failures), self.max_restart_delay)

    def _schedule_restart_locked(self) -> None:
        if not self._can_listen_locked():
            self._set_state_locked(SupervisorState.STOPPED)
            return
        self._cancel_restart_locked()
        delay = self._next_delay_locked()
        token = object()
        self._pending_restart = token
        self._set_state_locked(SupervisorState.STARTING)
        logger.debug(f"[{self.name}] Restart in {delay:.2f}s (failures={self._failures})")
        self._pending_handle = self._scheduler.schedule(delay, lambda: self._handle_restart_timer(token))

    def _cancel_restart_locked(self) -> None:
        handle = self._pending_handle
        self._pending_restart = None
        self._pending_handle = None
        if handle is not None:
            try:
                handle.cancel()
            except Exception as e:
                logger.debug(f"[{self.name}] Timer cancel error: {e}")

    # ---- channel callbacks ----

    def _handle_restart_timer(self, token: object) -> None:
        with self._lock:
            if token is not self._pending_restart:
                return
            self._pending_restart = None
            self._pending_handle = None
            if self._can_listen_locked() and self._channel is None:
                self._start_channel_locked()
        self._flush()

    def _handle_start(self, channel: RecognitionChannel) -> None:
        with self._lock:
            if channel is not self._channel:
                return
            self._channel_listening = True
            self._failures = 0
            self._set_state_locked(SupervisorState.LISTENING)
        self._flush()

    def _handle_result(self, channel: RecognitionChannel, transcript: str, is_final: bool) -> None:
        with self._lock:
            if channel is not self._channel or self._stop_in_progress or not is_final:
                return
            text = (transcript or "").strip()
            if self.normalize_case:
                text = text.lower()
        if not text:
            return

        log_with_context(logger, logging.INFO, f"[{self.name}] Transcript: {text}", transcript=text, language=self._language)
        try:
            self._handler(text)
        except Exception as e:
            handle_error(e, "supervisor", "dispatch", ErrorSeverity.MEDIUM, metadata={'transcript': text})

    def _handle_error(self, channel: RecognitionChannel, code: str, message: str) -> None:
        with self._lock:
            if channel is not self._channel:
                return
            if code in PERMISSION_ERRORS:
                logger.warning(f"[{self.name}] Microphone permission denied ({code}); recognition suspended")
                self._permission_denied = True
                self._cancel_restart_locked()
                self._retire_channel_locked(channel)
                self._set_state_locked(SupervisorState.SUSPENDED_BY_PERMISSION)
                if self._on_permission_denied is not None:
                    self._notifications.append(self._on_permission_denied)
            else:
                logger.debug(f"[{self.name}] Transient recognition error '{code}': {message}")
                if not self._channel_listening:
                    self._failures += 1
                self._retire_channel_locked(channel)
                self._schedule_restart_locked()
        self._flush()

    def _handle_end(self, channel: RecognitionChannel) -> None:
        with self._lock:
            if channel is not self._channel:
                return
            self._channel = None
            if not self._channel_listening:
                self._failures += 1
            self._channel_listening = False
            channel.detach()
            if self._stop_in_progress:
                return
            logger.debug(f"[{self.name}] Recognition ended; restarting")
            self._schedule_restart_locked()
        self._flush()

    # ---- notifications ----

    def _set_state_locked(self, state: SupervisorState) -> None:
        if state == self._state:
            return
        logger.debug(f"[{self.name}] {self._state.value} -> {state.value}")
        self._state = state
        if self._on_state_change is not None:
            callback = self._on_state_change
            self._notifications.append(lambda: callback(state))

    def _flush(self) -> None:
        with self._lock:
            pending, self._notifications = self._notifications, []
        for notify in pending:
            try:
                notify()
            except Exception as e:
                logger.error(f"[{self.name}] Observer error: {e}")
