#!/usr/bin/env python3
"""
ReadAloud text-to-speech capability.

`SpeechSynthesizer` is the narrow interface the playback engine drives. The
default implementation wraps pyttsx3 on a dedicated worker thread: the pyttsx3
engine is created, iterated and stopped only on that thread, and public methods
post commands to it through a queue.

Utterances are queued like a browser speech queue. Word boundaries are reported
as character offsets into the utterance text; completion is reported once per
utterance that reaches its natural end. Cancelled utterances report nothing.
"""
import queue
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Deque, List, Optional, Sequence
from collections import deque

try:
    import pyttsx3
except Exception:  # no platform speech driver; playback then runs without a native voice
    pyttsx3 = None  # type: ignore

from . import config as CFG
from .error_handler import SynthesisError
from .logging_utils import setup_logger

logger = setup_logger("readaloud.synthesis", "logs/synthesis.log")

ENGINE_INIT_TIMEOUT = 5.0  # seconds to wait for the driver on first use
LOOP_POLL_SEC = 0.02


@dataclass
class Voice:
    """A platform voice; `lang` is a BCP-47-ish tag such as en-US or ta_IN"""
    id: str
    name: str
    lang: str
    default: bool = False


@dataclass
class Utterance:
    text: str
    lang: str = "en-US"
    rate: float = 1.0
    volume: float = 1.0
    voice: Optional[Voice] = None
    on_boundary: Optional[Callable[[int], None]] = None
    on_end: Optional[Callable[[], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None


def _normalize_tag(tag: str) -> str:
    return (tag or "").strip().replace("_", "-").lower()


def select_voice(voices: Sequence[Voice], language: str) -> Optional[Voice]:
    """Exact locale match, then language-family match, else None (platform default)"""
    wanted = _normalize_tag(language)
    if not wanted:
        return None

    for voice in voices:
        if _normalize_tag(voice.lang) == wanted:
            return voice

    family = wanted.split("-", 1)[0]
    for voice in voices:
        if _normalize_tag(voice.lang).split("-", 1)[0] == family:
            return voice

    return None


class SpeechSynthesizer(ABC):
    """Queue-based speech output with word boundary events"""

    @abstractmethod
    def speak(self, utterance: Utterance, priority: bool = False) -> None:
        """Queue `utterance`; a priority utterance is spoken before any queued
        or interrupted text and plays even while the queue is paused"""

    @abstractmethod
    def cancel(self) -> None:
        """Drop the current utterance and everything queued behind it"""

    @abstractmethod
    def pause(self) -> None:
        ...

    @abstractmethod
    def resume(self) -> None:
        ...

    @abstractmethod
    def get_voices(self) -> List[Voice]:
        """Voices known so far; may be empty until the driver has loaded"""

    @property
    @abstractmethod
    def speaking(self) -> bool:
        ...

    @property
    @abstractmethod
    def paused(self) -> bool:
        ...

    def close(self) -> None:
        pass


@dataclass
class _SpeechJob:
    """One pass of an utterance through the driver.

    Resuming after a pause re-speaks the remaining text, so `base_offset` maps
    driver offsets back into the original utterance text.
    """
    utterance: Utterance
    name: str
    base_offset: int = 0
    last_offset: int = 0

    @property
    def remaining_text(self) -> str:
        return self.utterance.text[self.base_offset:]


@dataclass
class _State:
    current: Optional[_SpeechJob] = None
    pending: Deque[_SpeechJob] = field(default_factory=deque)
    paused: bool = False
    # priority utterances, spoken ahead of `current` and `pending`
    interjection: Optional[_SpeechJob] = None
    interjections: Deque[_SpeechJob] = field(default_factory=deque)


def _voice_from_driver(raw, default_id: Optional[str]) -> Voice:
    langs = getattr(raw, "languages", None) or []
    lang = langs[0] if langs else ""
    if isinstance(lang, bytes):
        # espeak reports b'\x05en-us': a priority byte followed by the tag
        lang = lang.decode("utf-8", errors="ignore").lstrip("\x00\x01\x02\x03\x04\x05\x06\x07\x08\t\n")
    return Voice(
        id=str(raw.id),
        name=str(getattr(raw, "name", raw.id)),
        lang=str(lang),
        default=str(raw.id) == default_id,
    )


class Pyttsx3Synthesizer(SpeechSynthesizer):
    """pyttsx3 driven from a single worker thread"""

    def __init__(self, words_per_minute: Optional[int] = None, driver_name: Optional[str] = None):
        self.words_per_minute = words_per_minute or CFG.get_words_per_minute()
        self.driver_name = driver_name
        self._commands: "queue.Queue[tuple]" = queue.Queue()
        self._lock = threading.Lock()
        self._state = _State()
        self._voices: List[Voice] = []
        self._ready = threading.Event()
        self._shutdown = threading.Event()
        self._init_error: Optional[Exception] = None
        self._worker: Optional[threading.Thread] = None
        self._job_counter = 0
        self._default_voice_id: Optional[str] = None

    # ---- public interface ----

    def speak(self, utterance: Utterance, priority: bool = False) -> None:
        self._ensure_worker()
        with self._lock:
            self._job_counter += 1
            job = _SpeechJob(utterance=utterance, name=f"utt-{self._job_counter}")
        self._commands.put(("interject" if priority else "speak", job))

    def cancel(self) -> None:
        if self._worker is None:
            return
        self._commands.put(("cancel", None))

    def pause(self) -> None:
        if self._worker is None:
            return
        self._commands.put(("pause", None))

    def resume(self) -> None:
        if self._worker is None:
            return
        self._commands.put(("resume", None))

    def get_voices(self) -> List[Voice]:
        with self._lock:
            return list(self._voices)

    @property
    def speaking(self) -> bool:
        with self._lock:
            state = self._state
            return any((state.current, state.pending, state.interjection, state.interjections))

    @property
    def paused(self) -> bool:
        with self._lock:
            return self._state.paused

    def close(self) -> None:
        self._shutdown.set()
        worker = self._worker
        if worker is not None and worker.is_alive() and worker is not threading.current_thread():
            worker.join(timeout=2.0)
        self._worker = None

    # ---- worker ----

    def _ensure_worker(self) -> None:
        if self._init_error is not None:
            raise SynthesisError(f"Speech engine unavailable: {self._init_error}", component="synthesis", operation="speak")
        if self._worker is None or not self._worker.is_alive():
            if pyttsx3 is None:
                self._init_error = RuntimeError("pyttsx3 not installed")
                raise SynthesisError("pyttsx3 not installed", component="synthesis", operation="speak")
            self._ready.clear()
            self._shutdown.clear()
            self._worker = threading.Thread(target=self._run, name="pyttsx3-worker", daemon=True)
            self._worker.start()
            if not self._ready.wait(ENGINE_INIT_TIMEOUT):
                raise SynthesisError("Speech engine did not start in time", component="synthesis", operation="speak")
        if self._init_error is not None:
            raise SynthesisError(f"Speech engine unavailable: {self._init_error}", component="synthesis", operation="speak")

    def _run(self) -> None:
        try:
            engine = pyttsx3.init(self.driver_name) if self.driver_name else pyttsx3.init()
            engine.connect("started-word", self._on_started_word)
            engine.connect("finished-utterance", self._on_finished_utterance)
            default_id = engine.getProperty("voice")
            self._default_voice_id = default_id
            voices = [_voice_from_driver(v, default_id) for v in (engine.getProperty("voices") or [])]
            with self._lock:
                self._voices = voices
            engine.startLoop(False)
        except Exception as e:
            logger.error(f"pyttsx3 init failed: {e}")
            self._init_error = e
            self._ready.set()
            return

        logger.info(f"pyttsx3 ready with {len(voices)} voices")
        self._ready.set()
        try:
            while not self._shutdown.is_set():
                try:
                    command, payload = self._commands.get(timeout=LOOP_POLL_SEC)
                except queue.Empty:
                    command, payload = None, None
                if command is not None:
                    self._apply(engine, command, payload)
                engine.iterate()
        except Exception as e:
            logger.error(f"pyttsx3 loop error: {e}")
            self._fail_current(e)
        finally:
            try:
                engine.endLoop()
            except Exception as e:
                logger.debug(f"pyttsx3 endLoop: {e}")

    def _apply(self, engine, command: str, payload) -> None:
        if command == "speak":
            with self._lock:
                self._state.pending.append(payload)
            self._start_next(engine)
        elif command == "interject":
            with self._lock:
                state = self._state
                preempted = None
                if state.current is not None and not state.paused and state.interjection is None:
                    # The interrupted text continues from the last word reached
                    preempted = state.current
                    state.current = None
                    state.pending.appendleft(self._remainder(preempted))
                state.interjections.append(payload)
            if preempted is not None:
                engine.stop()
            self._start_next(engine)
        elif command == "cancel":
            with self._lock:
                active = self._state.current
                self._state.current = None
                self._state.pending.clear()
                self._state.paused = False
                interjecting = self._state.interjection is not None
            # a paused utterance may be silent while an interjection plays
            if active is not None and not interjecting:
                engine.stop()
            self._start_next(engine)
        elif command == "pause":
            with self._lock:
                state = self._state
                if state.paused or (state.current is None and not state.pending):
                    return
                state.paused = True
                audible = state.current is not None and state.interjection is None
            if audible:
                engine.stop()
        elif command == "resume":
            with self._lock:
                if not self._state.paused:
                    return
                self._state.paused = False
                job = self._state.current
                self._state.current = None
                if job is not None:
                    # Re-speak from the last word reached
                    self._state.pending.appendleft(self._remainder(job))
            self._start_next(engine)
        elif command == "next":
            self._start_next(engine)

    def _remainder(self, job: _SpeechJob) -> _SpeechJob:
        self._job_counter += 1
        return _SpeechJob(
            utterance=job.utterance,
            name=f"utt-{self._job_counter}",
            base_offset=job.last_offset,
            last_offset=job.last_offset,
        )

    def _start_next(self, engine) -> None:
        with self._lock:
            state = self._state
            if state.interjection is not None:
                return
            if state.interjections:
                job = state.interjections.popleft()
                state.interjection = job
            elif state.current is not None or state.paused or not state.pending:
                return
            else:
                job = state.pending.popleft()
                state.current = job

        utterance = job.utterance
        try:
            engine.setProperty("rate", int(self.words_per_minute * utterance.rate))
            engine.setProperty("volume", max(0.0, min(1.0, utterance.volume)))
            # the driver keeps the last voice set, so an unmatched language goes back to the default
            voice_id = utterance.voice.id if utterance.voice is not None else self._default_voice_id
            if voice_id is not None:
                engine.setProperty("voice", voice_id)
            engine.say(job.remaining_text, job.name)
        except Exception as e:
            logger.error(f"pyttsx3 failed to queue utterance: {e}")
            with self._lock:
                if self._state.current is job:
                    self._state.current = None
                elif self._state.interjection is job:
                    self._state.interjection = None
            self._notify_error(utterance, e)
            self._start_next(engine)

    def _job_for_event(self, name) -> Optional[_SpeechJob]:
        state = self._state
        if state.interjection is not None and state.interjection.name == name:
            return state.interjection
        if state.current is not None and state.current.name == name:
            return state.current
        return None

    def _on_started_word(self, name, location, length) -> None:
        with self._lock:
            job = self._job_for_event(name)
            if job is None or (job is self._state.current and self._state.paused):
                return
            offset = job.base_offset + int(location)
            job.last_offset = offset
        callback = job.utterance.on_boundary
        if callback is not None:
            try:
                callback(offset)
            except Exception as e:
                logger.error(f"Boundary callback error: {e}")

    def _on_finished_utterance(self, name, completed) -> None:
        with self._lock:
            job = self._job_for_event(name)
            if job is None:
                return
            if job is self._state.interjection:
                self._state.interjection = None
            elif self._state.paused:
                # Stopped by pause; resume re-queues the remainder
                return
            else:
                self._state.current = None

        if completed:
            callback = job.utterance.on_end
            if callback is not None:
                try:
                    callback()
                except Exception as e:
                    logger.error(f"End callback error: {e}")
        self._kick()

    def _kick(self) -> None:
        # finished-utterance fires inside engine.iterate(); the next job starts
        # on the following loop pass
        self._commands.put(("next", None))

    def _fail_current(self, error: Exception) -> None:
        with self._lock:
            jobs = [j for j in (self._state.interjection, self._state.current) if j is not None]
            self._state = _State()
        for job in jobs:
            self._notify_error(job.utterance, error)

    @staticmethod
    def _notify_error(utterance: Utterance, error: Exception) -> None:
        if utterance.on_error is None:
            return
        try:
            utterance.on_error(error)
        except Exception as e:
            logger.error(f"Error callback error: {e}")
