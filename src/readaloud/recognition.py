#!/usr/bin/env python3
"""
ReadAloud speech-recognition capability.

A `RecognitionChannel` is one recognition session: it is started once, emits
`on_start`, any number of final results, at most one error, and exactly one
`on_end`. Callers never restart a channel; they build a new one.

Error codes follow the browser recognition vocabulary so every channel reports
the same strings: no-speech, no-match, network, aborted, audio-capture,
not-allowed, service-not-allowed, unknown.
"""
import errno
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

try:
    import speech_recognition as sr
except Exception:  # SpeechRecognition not installed; channels refuse to start
    sr = None  # type: ignore

from . import config as CFG
from .error_handler import RecognitionError
from .logging_utils import setup_logger

logger = setup_logger("readaloud.recognition", "logs/recognition.log")

NO_SPEECH = "no-speech"
NO_MATCH = "no-match"
NETWORK = "network"
ABORTED = "aborted"
AUDIO_CAPTURE = "audio-capture"
NOT_ALLOWED = "not-allowed"
SERVICE_NOT_ALLOWED = "service-not-allowed"
UNKNOWN = "unknown"

PERMISSION_ERRORS = frozenset({NOT_ALLOWED, SERVICE_NOT_ALLOWED})

_PERMISSION_HINTS = ("permission", "not authorized", "not permitted", "access denied")


def is_permission_failure(error: BaseException) -> bool:
    if isinstance(error, PermissionError):
        return True
    if isinstance(error, OSError) and error.errno in (errno.EACCES, errno.EPERM):
        return True
    message = str(error).lower()
    return any(hint in message for hint in _PERMISSION_HINTS)


def classify_error(error: BaseException) -> str:
    """Map a recognizer or microphone exception to an error code"""
    if sr is not None:
        if isinstance(error, sr.WaitTimeoutError):
            return NO_SPEECH
        if isinstance(error, sr.UnknownValueError):
            return NO_MATCH
        if isinstance(error, sr.RequestError):
            if is_permission_failure(error):
                return SERVICE_NOT_ALLOWED
            return NETWORK
    if isinstance(error, OSError):
        return NOT_ALLOWED if is_permission_failure(error) else AUDIO_CAPTURE
    if isinstance(error, AttributeError):
        # sr.Microphone raises AttributeError when PyAudio is missing
        return AUDIO_CAPTURE
    return UNKNOWN


class RecognitionChannel(ABC):
    """One recognition session with browser-style callbacks"""

    def __init__(self, language: str = "en-US", continuous: bool = True):
        self.language = language
        self.continuous = continuous
        self.on_start: Optional[Callable[[], None]] = None
        self.on_result: Optional[Callable[[str, bool], None]] = None
        self.on_error: Optional[Callable[[str, str], None]] = None
        self.on_end: Optional[Callable[[], None]] = None

    @abstractmethod
    def start(self) -> None:
        """Begin listening; raises RecognitionError when it cannot start"""

    @abstractmethod
    def stop(self) -> None:
        """Stop listening; a result already being recognized is still delivered"""

    @abstractmethod
    def abort(self) -> None:
        """Stop listening and discard pending results"""

    def detach(self) -> None:
        self.on_start = None
        self.on_result = None
        self.on_error = None
        self.on_end = None

    def _emit(self, name: str, *args) -> None:
        callback = getattr(self, name)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Recognition {name} callback error: {e}")


class SpeechRecognitionChannel(RecognitionChannel):
    """Microphone + Google Web Speech via the SpeechRecognition package"""

    def __init__(
        self,
        language: str = "en-US",
        continuous: bool = True,
        device_index: Optional[int] = None,
        listen_timeout: Optional[float] = None,
        phrase_time_limit: Optional[float] = None,
        energy_threshold: Optional[int] = None,
    ):
        super().__init__(language, continuous)
        self.device_index = device_index
        self.listen_timeout = listen_timeout if listen_timeout is not None else CFG.get_listen_timeout()
        self.phrase_time_limit = phrase_time_limit if phrase_time_limit is not None else CFG.get_phrase_time_limit()
        self.energy_threshold = energy_threshold or CFG.get_energy_threshold()
        self._stop_event = threading.Event()
        self._aborted = False
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if sr is None:
            raise RecognitionError("SpeechRecognition not installed", component="recognition", operation="start")
        if self._thread is not None:
            raise RecognitionError("Recognition channel already started", component="recognition", operation="start")
        self._thread = threading.Thread(target=self._run, name="recognition-channel", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def abort(self) -> None:
        self._aborted = True
        self._stop_event.set()

    def _run(self) -> None:
        recognizer = sr.Recognizer()
        recognizer.energy_threshold = self.energy_threshold
        recognizer.dynamic_energy_threshold = True
        try:
            with sr.Microphone(device_index=self.device_index) as source:
                recognizer.adjust_for_ambient_noise(source, duration=0.3)
                self._emit("on_start")
                while not self._stop_event.is_set():
                    audio = recognizer.listen(
                        source,
                        timeout=self.listen_timeout,
                        phrase_time_limit=self.phrase_time_limit,
                    )
                    if self._stop_event.is_set() and self._aborted:
                        break
                    text = recognizer.recognize_google(audio, language=self.language)
                    if self._aborted:
                        break
                    logger.debug(f"Recognized: {text}")
                    self._emit("on_result", text, True)
                    if not self.continuous:
                        break
        except Exception as e:
            code = classify_error(e)
            if not self._stop_event.is_set():
                level = logger.warning if code in PERMISSION_ERRORS else logger.debug
                level(f"Recognition ended with {code}: {e}")
                self._emit("on_error", code, str(e))
        finally:
            self._emit("on_end")
