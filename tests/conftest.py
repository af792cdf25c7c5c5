import os
import sys
from typing import List, Optional

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from readaloud.audio_output import STATE_CLOSED, STATE_RUNNING, STATE_SUSPENDED
from readaloud.error_handler import AudioOutputError, RecognitionError, SynthesisError
from readaloud.recognition import RecognitionChannel
from readaloud.synthesis import SpeechSynthesizer, Utterance, Voice


class FakeSynthesizer(SpeechSynthesizer):
    """Records utterances; tests drive boundary and end events by hand"""

    def __init__(self, voices: Optional[List[Voice]] = None, fail: bool = False):
        self.voices = voices or []
        self.fail = fail
        self.spoken: List[Utterance] = []
        self.priority: List[Utterance] = []
        self.cancel_count = 0
        self.pause_count = 0
        self.resume_count = 0
        self.closed = False
        self._paused = False

    def speak(self, utterance: Utterance, priority: bool = False) -> None:
        if self.fail:
            raise SynthesisError("no speech engine", component="synthesis", operation="speak")
        self.spoken.append(utterance)
        if priority:
            self.priority.append(utterance)

    def cancel(self) -> None:
        self.cancel_count += 1
        self._paused = False

    def pause(self) -> None:
        self.pause_count += 1
        self._paused = True

    def resume(self) -> None:
        self.resume_count += 1
        self._paused = False

    def get_voices(self) -> List[Voice]:
        return list(self.voices)

    @property
    def speaking(self) -> bool:
        return bool(self.spoken)

    @property
    def paused(self) -> bool:
        return self._paused

    def close(self) -> None:
        self.closed = True

    @property
    def last(self) -> Utterance:
        return self.spoken[-1]

    def boundary(self, offset: int, utterance: Optional[Utterance] = None) -> None:
        (utterance or self.last).on_boundary(offset)

    def finish(self, utterance: Optional[Utterance] = None) -> None:
        (utterance or self.last).on_end()

    def error(self, exc: Exception, utterance: Optional[Utterance] = None) -> None:
        (utterance or self.last).on_error(exc)


class FakeSourceNode:
    def __init__(self, context, buffer):
        self.context = context
        self.buffer = buffer
        self.on_ended = None
        self.connected = False
        self.started = False
        self.stopped = False

    def connect(self):
        self.connected = True
        self.context.connected.append(self)

    def disconnect(self):
        self.connected = False
        if self in self.context.connected:
            self.context.connected.remove(self)

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True
        if self.on_ended is not None:
            self.on_ended()

    def finish(self):
        """Simulate the clip playing to its end"""
        if self.on_ended is not None:
            self.on_ended()


class FakeAudioContext:
    def __init__(self, fail_resume: bool = False, fail_create: bool = False):
        self.state = STATE_SUSPENDED
        self.fail_resume = fail_resume
        self.fail_create = fail_create
        self.sources: List[FakeSourceNode] = []
        self.connected: List[FakeSourceNode] = []
        self.resume_count = 0
        self.suspend_count = 0

    @property
    def closed(self) -> bool:
        return self.state == STATE_CLOSED

    def create_buffer_source(self, buffer):
        if self.fail_create:
            raise AudioOutputError("no device", component="audio_output", operation="create_source")
        node = FakeSourceNode(self, buffer)
        self.sources.append(node)
        return node

    def resume(self):
        if self.fail_resume:
            raise AudioOutputError("no device", component="audio_output", operation="resume")
        self.resume_count += 1
        self.state = STATE_RUNNING

    def suspend(self):
        self.suspend_count += 1
        self.state = STATE_SUSPENDED

    def close(self):
        self.state = STATE_CLOSED

    def get_status(self):
        return {'state': self.state, 'connected_sources': len(self.connected)}


class FakeChannel(RecognitionChannel):
    def __init__(self, language="en-US", continuous=True, fail_start=False):
        super().__init__(language, continuous)
        self.fail_start = fail_start
        self.started = False
        self.stopped = False
        self.aborted = False

    def start(self):
        if self.fail_start:
            raise RecognitionError("microphone busy", component="recognition", operation="start")
        self.started = True

    def stop(self):
        self.stopped = True

    def abort(self):
        self.aborted = True

    def emit_start(self):
        if self.on_start:
            self.on_start()

    def emit_result(self, text, is_final=True):
        if self.on_result:
            self.on_result(text, is_final)

    def emit_error(self, code, message=""):
        if self.on_error:
            self.on_error(code, message)

    def emit_end(self):
        if self.on_end:
            self.on_end()


class FakeChannelFactory:
    """Builds FakeChannels; the first `fail_starts` channels refuse to start"""

    def __init__(self, fail_starts: int = 0):
        self.fail_starts = fail_starts
        self.channels: List[FakeChannel] = []

    def __call__(self, language, continuous):
        fail = len(self.channels) < self.fail_starts
        channel = FakeChannel(language, continuous, fail_start=fail)
        self.channels.append(channel)
        return channel

    @property
    def current(self) -> FakeChannel:
        return self.channels[-1]


class ManualTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    def __init__(self):
        self.timers: List[ManualTimer] = []

    def schedule(self, delay, callback):
        timer = ManualTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[ManualTimer]:
        return [t for t in self.timers if not t.cancelled]

    def run_pending(self) -> int:
        due = self.pending
        self.timers = []
        for timer in due:
            timer.callback()
        return len(due)


@pytest.fixture
def synth():
    return FakeSynthesizer()


@pytest.fixture
def audio_context():
    return FakeAudioContext()


@pytest.fixture
def channels():
    return FakeChannelFactory()


@pytest.fixture
def scheduler():
    return ManualScheduler()


def pcm16(samples) -> bytes:
    import numpy as np
    return np.asarray(samples, dtype="<i2").tobytes()
