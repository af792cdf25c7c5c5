#!/usr/bin/env python3
"""
ReadAloud playback engine.

Owns the synthesizer, the audio output context and at most one
`AudioMixSession`. `speak()` always tears the previous session down before the
next one starts, so two sessions never hold connected audio nodes at once.
"""
import logging
import threading
from typing import Any, Callable, Dict, Optional

from . import config as CFG
from .audio_output import AudioOutputContext
from .audio_session import AudioMixSession, PlaybackState, RenderedAudio
from .error_handler import SynthesisError
from .highlight import NO_HIGHLIGHT, HighlightSpan
from .logging_utils import log_with_context, setup_logger
from .speech_types import ReadingRate, language_tag
from .synthesis import Pyttsx3Synthesizer, SpeechSynthesizer, Utterance, select_voice

logger = setup_logger("readaloud.playback", "logs/playback.log")


class PlaybackEngine:
    """Single-session speech playback with word highlighting"""

    def __init__(
        self,
        synthesizer: Optional[SpeechSynthesizer] = None,
        context_factory: Optional[Callable[[], AudioOutputContext]] = None,
        reading_rate: Optional[float] = None,
        timing_rate: Optional[float] = None,
        sample_rate: Optional[int] = None,
        on_highlight: Optional[Callable[[HighlightSpan], None]] = None,
        on_state_change: Optional[Callable[[PlaybackState], None]] = None,
    ):
        self._lock = threading.RLock()
        self._synth = synthesizer or Pyttsx3Synthesizer()
        self.sample_rate = sample_rate or CFG.get_playback_sample_rate()
        self.timing_rate = timing_rate or CFG.get_timing_rate()
        self._reading_rate = float(reading_rate or CFG.get_reading_rate())
        self._context_factory = context_factory or self._default_context
        self._audio_context: Optional[AudioOutputContext] = None
        self._session: Optional[AudioMixSession] = None
        self._on_highlight = on_highlight
        self._on_state_change = on_state_change
        self._closed = False

    def __enter__(self) -> "PlaybackEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ---- properties ----

    @property
    def state(self) -> PlaybackState:
        with self._lock:
            return self._session.state if self._session is not None else PlaybackState.IDLE

    @property
    def is_playing(self) -> bool:
        return self.state == PlaybackState.PLAYING

    @property
    def is_paused(self) -> bool:
        return self.state == PlaybackState.PAUSED

    @property
    def highlight(self) -> HighlightSpan:
        with self._lock:
            return self._session.highlight if self._session is not None else NO_HIGHLIGHT

    @property
    def reading_rate(self) -> float:
        return self._reading_rate

    @property
    def closed(self) -> bool:
        return self._closed

    # ---- operations ----

    def speak(
        self,
        text: str,
        language="en-US",
        rendered_audio: Optional[RenderedAudio] = None,
        on_complete: Optional[Callable[[], None]] = None,
    ) -> None:
        """Stop any current session and read `text` aloud"""
        with self._lock:
            if self._closed:
                logger.warning("speak() called on a closed engine; ignoring")
                return
            if not text or not text.strip():
                return

            self._stop_locked()

            holder: Dict[str, AudioMixSession] = {}

            def complete() -> None:
                # Superseded sessions never report completion
                if self._session is holder.get("session") and on_complete is not None:
                    on_complete()

            session = AudioMixSession(
                self._synth,
                self._get_audio_context,
                self._lock,
                reading_rate=self._reading_rate,
                timing_rate=self.timing_rate,
                sample_rate=self.sample_rate,
                on_highlight=self._on_highlight,
                on_state_change=self._on_state_change,
                on_complete=complete,
            )
            holder["session"] = session
            self._session = session
            log_with_context(
                logger,
                logging.INFO,
                "Starting playback session",
                language=language_tag(language),
                chars=len(text),
                rendered=rendered_audio is not None,
            )
            session.start(text, language, rendered_audio)

    def pause(self) -> bool:
        with self._lock:
            if self._session is None:
                return False
            return self._session.pause()

    def resume(self) -> bool:
        with self._lock:
            if self._session is None:
                return False
            return self._session.resume()

    def stop(self) -> None:
        with self._lock:
            self._stop_locked()

    def announce(self, text: str, language="en-US", on_end: Optional[Callable[[], None]] = None) -> None:
        """Speak short feedback ahead of the session's remaining text.

        The session is not stopped: a playing utterance resumes after the
        feedback, a paused one stays paused.
        """
        if self._closed or not text or not text.strip():
            return
        tag = language_tag(language)
        utterance = Utterance(
            text=text,
            lang=tag,
            rate=self._reading_rate,
            volume=1.0,
            voice=select_voice(self._synth.get_voices(), tag),
            on_end=on_end,
        )
        try:
            self._synth.speak(utterance, priority=True)
        except SynthesisError as e:
            logger.warning(f"Could not announce '{text}': {e}")

    def set_rate(self, rate) -> float:
        """Set the native-voice reading rate used by the next session"""
        value = rate.value if isinstance(rate, ReadingRate) else float(rate)
        if value <= 0:
            raise ValueError(f"Reading rate must be positive, got {value}")
        with self._lock:
            self._reading_rate = value
        logger.info(f"Reading rate set to {value}")
        return value

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self.stop()
            context = self._audio_context
            self._audio_context = None
        if context is not None:
            context.close()
        self._synth.close()
        logger.info("Playback engine closed")

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            session = self._session
            context = self._audio_context
            highlight = self.highlight
            return {
                'state': self.state.value,
                'authority': session.authority.value if session is not None and session.authority else None,
                'highlight': None if highlight.is_empty else (highlight.start, highlight.end),
                'reading_rate': self._reading_rate,
                'audio_context': context.get_status() if context is not None else None,
                'closed': self._closed,
            }

    # ---- internals ----

    def _stop_locked(self) -> None:
        session = self._session
        self._session = None
        if session is not None:
            session.stop()

    def _get_audio_context(self) -> AudioOutputContext:
        with self._lock:
            if self._audio_context is None or self._audio_context.closed:
                self._audio_context = self._context_factory()
                logger.debug("Created audio output context")
            return self._audio_context

    def _default_context(self) -> AudioOutputContext:
        return AudioOutputContext(sample_rate=self.sample_rate, output_device=CFG.get_audio_output_device())
