"""
One bounded read-aloud session.

A session plays its text either through the native voice alone, or through an
externally rendered clip with a muted, slowed native utterance running beside
it purely to produce word-boundary events. Exactly one of the two sources is
allowed to complete the session (see `CompletionAuthority`). Every platform
callback is bound to the handle it was registered on and is ignored once that
handle is no longer owned by the session.

The session does not own a lock of its own: the playback engine passes in the
RLock that also guards the engine, so engine and session transitions are
serialized together.
"""
import threading
from enum import Enum
from typing import Callable, Optional, Union

from .audio_output import AudioOutputContext, BufferSourceNode, STATE_SUSPENDED, decode_audio_data
from .error_handler import AudioOutputError, ErrorSeverity, PlaybackError, handle_error
from .highlight import NO_HIGHLIGHT, HighlightSpan, span_at
from .logging_utils import setup_logger
from .speech_types import language_tag
from .synthesis import SpeechSynthesizer, Utterance, select_voice

logger = setup_logger("readaloud.audio_session", "logs/playback.log")

TIMING_RATE = 0.7

RenderedAudio = Union[bytes, bytearray, str]


class PlaybackState(Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"
    COMPLETED = "completed"


class CompletionAuthority(Enum):
    """Which source may move the session to COMPLETED"""
    TIMING_UTTERANCE = "timing_utterance"
    RENDERED_AUDIO = "rendered_audio"


class AudioMixSession:
    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        context_provider: Callable[[], AudioOutputContext],
        lock: threading.RLock,
        reading_rate: float = 1.0,
        timing_rate: float = TIMING_RATE,
        sample_rate: int = 24000,
        on_highlight: Optional[Callable[[HighlightSpan], None]] = None,
        on_state_change: Optional[Callable[[PlaybackState], None]] = None,
        on_complete: Optional[Callable[[], None]] = None,
    ):
        self._synth = synthesizer
        self._context_provider = context_provider
        self._lock = lock
        self.reading_rate = reading_rate
        self.timing_rate = timing_rate
        self.sample_rate = sample_rate
        self._on_highlight = on_highlight
        self._on_state_change = on_state_change
        self._on_complete = on_complete

        self.text = ""
        self.language = ""
        self.authority: Optional[CompletionAuthority] = None
        self._state = PlaybackState.IDLE
        self._highlight = NO_HIGHLIGHT
        self._started = False
        self._utterance: Optional[Utterance] = None
        self._source: Optional[BufferSourceNode] = None
        self._context: Optional[AudioOutputContext] = None

    @property
    def state(self) -> PlaybackState:
        with self._lock:
            return self._state

    @property
    def highlight(self) -> HighlightSpan:
        with self._lock:
            return self._highlight

    @property
    def has_rendered_source(self) -> bool:
        with self._lock:
            return self._source is not None

    def start(self, text: str, language, rendered_audio: Optional[RenderedAudio] = None) -> None:
        """Begin playback; a session can be started once"""
        with self._lock:
            if self._started:
                raise PlaybackError("Session already started", component="audio_session", operation="start")
            self._started = True
            self.text = text
            self.language = language_tag(language)
            self._set_state(PlaybackState.PLAYING)

            if rendered_audio is not None:
                try:
                    self._start_rendered(rendered_audio)
                    return
                except Exception as e:
                    logger.warning(f"Rendered audio unavailable, falling back to native voice: {e}")
                    handle_error(e, "audio_session", "start_rendered", ErrorSeverity.LOW)
                    self._release_source()
                    self._cancel_utterance()

            self._start_audible()

    def pause(self) -> bool:
        with self._lock:
            if self._state != PlaybackState.PLAYING:
                return False
            if self._context is not None and self._source is not None:
                self._context.suspend()
            self._synth.pause()
            self._set_state(PlaybackState.PAUSED)
            return True

    def resume(self) -> bool:
        with self._lock:
            if self._state != PlaybackState.PAUSED:
                return False
            if self._context is not None and self._source is not None:
                try:
                    self._context.resume()
                except AudioOutputError as e:
                    handle_error(e, "audio_session", "resume", ErrorSeverity.MEDIUM)
            self._synth.resume()
            self._set_state(PlaybackState.PLAYING)
            return True

    def stop(self) -> None:
        """Tear down both sources; safe in any state"""
        with self._lock:
            self._release_source()
            self._cancel_utterance()
            if self._state == PlaybackState.IDLE:
                return
            self._set_highlight(NO_HIGHLIGHT)
            self._set_state(PlaybackState.IDLE)

    # ---- start paths ----

    def _start_rendered(self, rendered_audio: RenderedAudio) -> None:
        buffer = decode_audio_data(rendered_audio, sample_rate=self.sample_rate)
        context = self._context_provider()
        if context.state == STATE_SUSPENDED:
            context.resume()

        source = context.create_buffer_source(buffer)
        source.on_ended = lambda: self._on_source_ended(source)
        self._context = context
        self._source = source
        self.authority = CompletionAuthority.RENDERED_AUDIO
        source.connect()
        source.start()
        logger.info(f"Playing rendered audio ({buffer.duration:.1f}s) for {len(self.text)} chars")

        # Muted utterance only drives highlighting
        utterance = Utterance(
            text=self.text,
            lang=self.language,
            rate=self.timing_rate,
            volume=0.0,
            voice=select_voice(self._synth.get_voices(), self.language),
        )
        self._bind(utterance)
        self._utterance = utterance
        try:
            self._synth.speak(utterance)
        except Exception as e:
            self._utterance = None
            logger.warning(f"Timing utterance failed; rendered audio plays without highlight: {e}")

    def _start_audible(self) -> None:
        self.authority = CompletionAuthority.TIMING_UTTERANCE
        utterance = Utterance(
            text=self.text,
            lang=self.language,
            rate=self.reading_rate,
            volume=1.0,
            voice=select_voice(self._synth.get_voices(), self.language),
        )
        self._bind(utterance)
        self._utterance = utterance
        try:
            self._synth.speak(utterance)
        except Exception as e:
            self._utterance = None
            self._fail(e)

    def _bind(self, utterance: Utterance) -> None:
        utterance.on_boundary = lambda offset: self._on_boundary(utterance, offset)
        utterance.on_end = lambda: self._on_utterance_end(utterance)
        utterance.on_error = lambda error: self._on_utterance_error(utterance, error)

    # ---- platform callbacks ----

    def _on_boundary(self, utterance: Utterance, offset: int) -> None:
        with self._lock:
            if utterance is not self._utterance or self._state not in (PlaybackState.PLAYING, PlaybackState.PAUSED):
                return
            span = span_at(self.text, offset)
            if span is None:
                return
            if not self._highlight.is_empty and span.start < self._highlight.start:
                logger.debug(f"Dropping backwards boundary at {offset}")
                return
            self._set_highlight(span)

    def _on_utterance_end(self, utterance: Utterance) -> None:
        with self._lock:
            if utterance is not self._utterance:
                return
            self._utterance = None
            if self.authority == CompletionAuthority.RENDERED_AUDIO:
                logger.debug("Timing utterance ended before rendered audio")
                return
            self._complete()

    def _on_utterance_error(self, utterance: Utterance, error: Exception) -> None:
        with self._lock:
            if utterance is not self._utterance:
                return
            self._utterance = None
            if self.authority == CompletionAuthority.RENDERED_AUDIO:
                logger.warning(f"Timing utterance error: {error}")
                return
            self._fail(error)

    def _on_source_ended(self, source: BufferSourceNode) -> None:
        with self._lock:
            if source is not self._source:
                return
            self._release_source()
            self._complete()

    # ---- transitions ----

    def _complete(self) -> None:
        if self._state not in (PlaybackState.PLAYING, PlaybackState.PAUSED):
            return
        self._cancel_utterance()
        self._set_highlight(NO_HIGHLIGHT)
        self._set_state(PlaybackState.COMPLETED)
        logger.info("Playback completed")
        if self._on_complete is not None:
            try:
                self._on_complete()
            except Exception as e:
                logger.error(f"Completion callback error: {e}")

    def _fail(self, error: Exception) -> None:
        handle_error(error, "audio_session", "speak", ErrorSeverity.HIGH)
        self._complete()

    def _release_source(self) -> None:
        source = self._source
        context = self._context
        self._source = None
        self._context = None
        if source is None:
            return
        source.on_ended = None
        try:
            if context is not None and context.state == STATE_SUSPENDED:
                context.resume()
        except AudioOutputError as e:
            logger.debug(f"Could not resume context before stop: {e}")
        try:
            if source.started:
                source.stop()
        except AudioOutputError as e:
            logger.debug(f"Source stop: {e}")
        source.disconnect()

    def _cancel_utterance(self) -> None:
        if self._utterance is None:
            return
        self._utterance = None
        self._synth.cancel()

    def _set_highlight(self, span: HighlightSpan) -> None:
        if span == self._highlight:
            return
        self._highlight = span
        if self._on_highlight is not None:
            try:
                self._on_highlight(span)
            except Exception as e:
                logger.error(f"Highlight observer error: {e}")

    def _set_state(self, state: PlaybackState) -> None:
        if state == self._state:
            return
        logger.debug(f"Session {self._state.value} -> {state.value}")
        self._state = state
        if self._on_state_change is not None:
            try:
                self._on_state_change(state)
            except Exception as e:
                logger.error(f"State observer error: {e}")
