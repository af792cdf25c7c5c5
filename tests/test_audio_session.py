import os
import sys
import threading

import numpy as np

sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from conftest import FakeAudioContext, FakeSynthesizer
from readaloud.audio_session import AudioMixSession, CompletionAuthority, PlaybackState
from readaloud.error_handler import get_error_handler
from readaloud.highlight import NO_HIGHLIGHT, HighlightSpan
from readaloud.synthesis import Voice

TEXT = "Hello brave new world"
CLIP = np.zeros(480, dtype="<i2").tobytes()


def _session(synth, context=None, **kwargs):
    context = context or FakeAudioContext()
    return AudioMixSession(synth, lambda: context, threading.RLock(), **kwargs), context


def test_native_voice_session_completes_on_utterance_end(synth):
    completed = []
    session, _ = _session(synth, reading_rate=1.5, on_complete=lambda: completed.append(True))
    session.start(TEXT, "en-US")

    assert session.state == PlaybackState.PLAYING
    assert session.authority == CompletionAuthority.TIMING_UTTERANCE
    utterance = synth.last
    assert utterance.volume == 1.0
    assert utterance.rate == 1.5

    synth.boundary(0)
    assert session.highlight == HighlightSpan(0, 5)
    synth.finish()

    assert session.state == PlaybackState.COMPLETED
    assert session.highlight == NO_HIGHLIGHT
    assert completed == [True]


def test_rendered_audio_plays_with_muted_timing_utterance(synth):
    session, context = _session(synth)
    session.start(TEXT, "en-US", rendered_audio=CLIP)

    assert session.authority == CompletionAuthority.RENDERED_AUDIO
    assert context.state == "running"
    node = context.sources[0]
    assert node.connected and node.started
    utterance = synth.last
    assert utterance.volume == 0.0
    assert utterance.rate == 0.7


def test_timing_utterance_uses_voice_for_session_language():
    synth = FakeSynthesizer(voices=[Voice("en", "English", "en-US"), Voice("ta", "Tamil", "ta-IN")])
    session, _ = _session(synth)
    session.start("வணக்கம் உலகம்", "ta-IN", rendered_audio=CLIP)

    utterance = synth.last
    assert utterance.volume == 0.0
    assert utterance.voice.id == "ta"


def test_timing_utterance_end_does_not_complete_rendered_session(synth):
    completed = []
    session, context = _session(synth, on_complete=lambda: completed.append(True))
    session.start(TEXT, "en-US", rendered_audio=CLIP)

    synth.boundary(6)
    synth.finish()
    assert session.state == PlaybackState.PLAYING
    assert session.highlight == HighlightSpan(6, 11)
    assert completed == []

    context.sources[0].finish()
    assert session.state == PlaybackState.COMPLETED
    assert session.highlight == NO_HIGHLIGHT
    assert not context.sources[0].connected
    assert completed == [True]


def test_rendered_end_cancels_slower_timing_utterance(synth):
    session, context = _session(synth)
    session.start(TEXT, "en-US", rendered_audio=CLIP)
    utterance = synth.last

    context.sources[0].finish()
    assert synth.cancel_count == 1
    # late boundary from the muted utterance is ignored
    synth.boundary(12, utterance)
    assert session.highlight == NO_HIGHLIGHT


def test_highlight_start_never_decreases(synth):
    spans = []
    session, _ = _session(synth, on_highlight=spans.append)
    session.start(TEXT, "en-US")

    synth.boundary(6)
    synth.boundary(0)
    synth.boundary(12)

    assert session.highlight == HighlightSpan(12, 15)
    starts = [s.start for s in spans]
    assert starts == sorted(starts)
    assert HighlightSpan(0, 5) not in spans


def test_zero_width_boundary_is_ignored(synth):
    session, _ = _session(synth)
    session.start("Hi, there", "en-US")
    synth.boundary(2)
    assert session.highlight == NO_HIGHLIGHT


def test_decode_failure_falls_back_to_audible_voice(synth):
    session, context = _session(synth, reading_rate=0.75)
    session.start(TEXT, "en-US", rendered_audio=b"\x01")

    assert session.authority == CompletionAuthority.TIMING_UTTERANCE
    assert context.sources == []
    assert synth.last.volume == 1.0
    assert synth.last.rate == 0.75


def test_output_failure_falls_back_and_releases_source(synth):
    context = FakeAudioContext(fail_resume=True)
    session, _ = _session(synth, context)
    session.start(TEXT, "en-US", rendered_audio=CLIP)

    assert session.authority == CompletionAuthority.TIMING_UTTERANCE
    assert len(synth.spoken) == 1
    synth.finish()
    assert session.state == PlaybackState.COMPLETED


def test_fallback_failure_ends_silently_and_is_recorded():
    synth = FakeSynthesizer(fail=True)
    handler = get_error_handler()
    before = handler.error_count
    completed = []

    session, _ = _session(synth, on_complete=lambda: completed.append(True))
    session.start(TEXT, "en-US", rendered_audio=b"")

    assert session.state == PlaybackState.COMPLETED
    assert session.highlight == NO_HIGHLIGHT
    assert completed == [True]
    assert handler.error_count > before
    assert handler.error_history[-1]['severity'] == "high"


def test_pause_and_resume_keep_highlight(synth):
    session, context = _session(synth)
    session.start(TEXT, "en-US", rendered_audio=CLIP)
    synth.boundary(6)

    assert session.resume() is False
    assert session.pause() is True
    assert session.pause() is False
    assert context.state == "suspended"
    assert synth.pause_count == 1
    assert session.highlight == HighlightSpan(6, 11)

    assert session.resume() is True
    assert context.state == "running"
    assert synth.resume_count == 1
    assert session.state == PlaybackState.PLAYING
    assert session.highlight == HighlightSpan(6, 11)


def test_pause_without_rendered_source_only_pauses_voice(synth):
    session, context = _session(synth)
    session.start(TEXT, "en-US")
    assert session.pause() is True
    assert context.suspend_count == 0
    assert synth.pause_count == 1


def test_stop_is_idempotent_and_detaches_everything(synth):
    completed = []
    session, context = _session(synth, on_complete=lambda: completed.append(True))
    session.stop()
    assert session.state == PlaybackState.IDLE

    session.start(TEXT, "en-US", rendered_audio=CLIP)
    node = context.sources[0]
    session.pause()
    session.stop()
    session.stop()

    assert session.state == PlaybackState.IDLE
    assert node.stopped and not node.connected
    assert node.on_ended is None
    assert context.resume_count == 2  # resumed before stopping the suspended source
    assert synth.cancel_count == 1
    assert completed == []

    synth.finish()
    assert session.state == PlaybackState.IDLE


def test_voice_selected_for_audible_path_only():
    voices = [Voice("v1", "Default", "en_US"), Voice("v2", "Valluvar", "ta-IN")]
    synth = FakeSynthesizer(voices=voices)
    session, _ = _session(synth)
    session.start("வணக்கம்", "ta-IN")
    assert synth.last.voice.id == "v2"

    session.stop()
    rendered, _ = _session(synth)
    rendered.start("வணக்கம்", "ta-IN", rendered_audio=CLIP)
    assert synth.last.voice is None


def test_state_observer_sees_transitions(synth):
    states = []
    session, _ = _session(synth, on_state_change=states.append)
    session.start(TEXT, "en-US")
    session.pause()
    session.resume()
    synth.finish()
    session.stop()
    assert states == [
        PlaybackState.PLAYING,
        PlaybackState.PAUSED,
        PlaybackState.PLAYING,
        PlaybackState.COMPLETED,
        PlaybackState.IDLE,
    ]
