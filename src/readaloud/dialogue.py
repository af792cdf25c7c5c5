#!/usr/bin/env python3
"""
Single-turn voice dialogue.

Each final transcript goes to the responder and the reply is read back
through the playback engine. Listening resumes after the reply finishes,
unless the reply links to playable media: then the loop waits for an explicit
`reengage()` so the microphone does not pick up the media and loop on it.
"""
import re
import threading
from enum import Enum
from typing import Callable, Optional

from . import config as CFG
from .error_handler import ErrorSeverity, handle_error
from .logging_utils import setup_logger
from .responder import FAILURE_REPLY
from .speech_types import language_tag
from .supervisor import RecognitionSupervisor

logger = setup_logger("readaloud.dialogue", "logs/dialogue.log")

PERMISSION_MESSAGE = "Microphone access was denied. Please allow microphone access and try again."

MEDIA_PATTERN = re.compile(
    r"https?://(?:www\.|m\.)?(?:youtube\.com/\S+|youtu\.be/\S+|vimeo\.com/\S+|soundcloud\.com/\S+)"
    r"|https?://\S+?\.(?:mp3|mp4|wav|ogg|m4a|webm)(?:[?#]\S*)?(?=[\s)\]>\"',.;:!?]|$)",
    re.IGNORECASE,
)


def find_media_reference(text: str) -> Optional[str]:
    """First playable-media URL in `text`, if any"""
    if not text:
        return None
    match = MEDIA_PATTERN.search(text)
    if not match:
        return None
    return match.group(0).rstrip(".,;:!?")


class DialogueStatus(Enum):
    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"
    ERROR = "error"


def _thread_dispatcher(fn: Callable[[], None]) -> None:
    threading.Thread(target=fn, name="dialogue-responder", daemon=True).start()


class DialogueLoop:
    def __init__(
        self,
        playback,
        responder,
        language=None,
        thinking_mode: Optional[bool] = None,
        channel_factory=None,
        scheduler=None,
        dispatcher: Optional[Callable[[Callable[[], None]], None]] = None,
        on_status: Optional[Callable[[DialogueStatus], None]] = None,
    ):
        self.playback = playback
        self.responder = responder
        self.language = language_tag(language or CFG.get_recognition_language())
        self.thinking_mode = CFG.dialogue_thinking_mode() if thinking_mode is None else thinking_mode
        self._dispatch = dispatcher or _thread_dispatcher
        self._on_status = on_status

        self._lock = threading.Lock()
        self._status = DialogueStatus.IDLE
        self._open = False
        self._turn = 0
        self._awaiting_reengage = False
        self.media_reference: Optional[str] = None
        self.last_transcript = ""
        self.last_reply = ""
        self.error_message = ""

        self.supervisor = RecognitionSupervisor(
            handler=self._on_transcript,
            channel_factory=channel_factory,
            language=self.language,
            continuous=False,
            normalize_case=False,
            restart_delay=CFG.get_dialogue_restart_delay(),
            scheduler=scheduler,
            on_permission_denied=self._on_permission_denied,
            name="dialogue",
        )

    @property
    def status(self) -> DialogueStatus:
        with self._lock:
            return self._status

    @property
    def awaiting_reengage(self) -> bool:
        with self._lock:
            return self._awaiting_reengage

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        with self._lock:
            if self._open:
                return
            self._open = True
            self._turn += 1
            self._awaiting_reengage = False
            self.media_reference = None
            self.error_message = ""
        logger.info("Dialogue opened")
        self._set_status(DialogueStatus.LISTENING)
        self.supervisor.enable()
        self.supervisor.relisten()

    def close(self) -> None:
        with self._lock:
            if not self._open:
                return
            self._open = False
            self._turn += 1
            self._awaiting_reengage = False
        self.supervisor.disable()
        self.playback.stop()
        self._set_status(DialogueStatus.IDLE)
        logger.info("Dialogue closed")

    def reengage(self) -> bool:
        """Resume listening after a reply that carried media"""
        with self._lock:
            if not self._open or not self._awaiting_reengage:
                return False
            self._awaiting_reengage = False
            self._turn += 1
        self._set_status(DialogueStatus.LISTENING)
        return self.supervisor.relisten()

    def _on_transcript(self, transcript: str) -> None:
        with self._lock:
            if not self._open:
                return
            self._turn += 1
            turn = self._turn
            self.last_transcript = transcript
        self.supervisor.hold()
        self._set_status(DialogueStatus.THINKING)
        logger.info(f"Dialogue question: {transcript}")
        self._dispatch(lambda: self._respond(turn, transcript))

    def _respond(self, turn: int, transcript: str) -> None:
        try:
            reply = self.responder.respond(transcript, thinking_mode=self.thinking_mode)
        except Exception as e:
            handle_error(e, "dialogue", "respond", ErrorSeverity.MEDIUM)
            reply = FAILURE_REPLY

        with self._lock:
            if turn != self._turn or not self._open:
                logger.debug("Dropping reply from a superseded turn")
                return
            self.last_reply = reply
            self.media_reference = find_media_reference(reply)

        self._set_status(DialogueStatus.SPEAKING)
        self.playback.speak(reply, self.language, on_complete=lambda: self._on_reply_done(turn))
        if not reply.strip():
            self._on_reply_done(turn)

    def _on_reply_done(self, turn: int) -> None:
        with self._lock:
            if turn != self._turn or not self._open:
                return
            media = self.media_reference
            self._awaiting_reengage = media is not None
        if media is not None:
            logger.info(f"Reply links media ({media}); waiting for re-engage")
            self._set_status(DialogueStatus.IDLE)
            return
        self._set_status(DialogueStatus.LISTENING)
        self.supervisor.relisten()

    def _on_permission_denied(self) -> None:
        with self._lock:
            self.error_message = PERMISSION_MESSAGE
        self._set_status(DialogueStatus.ERROR)

    def _set_status(self, status: DialogueStatus) -> None:
        with self._lock:
            if status == self._status:
                return
            self._status = status
        logger.debug(f"Dialogue status -> {status.value}")
        if self._on_status is not None:
            try:
                self._on_status(status)
            except Exception as e:
                logger.error(f"Dialogue status observer error: {e}")
