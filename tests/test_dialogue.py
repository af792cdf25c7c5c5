import os
import sys

sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from readaloud.dialogue import PERMISSION_MESSAGE, DialogueLoop, DialogueStatus, find_media_reference
from readaloud.responder import FAILURE_REPLY


class _Playback:
    def __init__(self):
        self.spoken = []
        self.stop_count = 0

    def speak(self, text, language="en-US", rendered_audio=None, on_complete=None):
        self.spoken.append((text, language, on_complete))

    def stop(self):
        self.stop_count += 1

    def finish(self):
        self.spoken[-1][2]()


class _Responder:
    def __init__(self, reply="", error=None):
        self.reply = reply
        self.error = error
        self.prompts = []

    def respond(self, transcript, thinking_mode=False):
        self.prompts.append((transcript, thinking_mode))
        if self.error is not None:
            raise self.error
        return self.reply


def _loop(channels, scheduler, responder, dispatcher=None, **kwargs):
    statuses = []
    loop = DialogueLoop(
        _Playback(),
        responder,
        language="en-US",
        channel_factory=channels,
        scheduler=scheduler,
        dispatcher=dispatcher or (lambda fn: fn()),
        on_status=statuses.append,
        **kwargs,
    )
    return loop, statuses


def test_reply_without_media_restarts_listening(channels, scheduler):
    responder = _Responder("Python is a programming language.")
    loop, statuses = _loop(channels, scheduler, responder)
    loop.open()
    assert channels.current.continuous is False
    channels.current.emit_start()
    channels.current.emit_result("What is Python?")

    assert responder.prompts == [("What is Python?", False)]
    assert channels.channels[0].stopped
    assert loop.playback.spoken[-1][0] == "Python is a programming language."
    assert loop.status == DialogueStatus.SPEAKING

    loop.playback.finish()
    assert loop.status == DialogueStatus.LISTENING
    assert not loop.awaiting_reengage
    assert len(channels.channels) == 2
    assert statuses == [
        DialogueStatus.LISTENING,
        DialogueStatus.THINKING,
        DialogueStatus.SPEAKING,
        DialogueStatus.LISTENING,
    ]


def test_reply_with_media_waits_for_reengage(channels, scheduler):
    responder = _Responder("Here is a song: https://www.youtube.com/watch?v=abc123.")
    loop, _ = _loop(channels, scheduler, responder)
    loop.open()
    channels.current.emit_start()
    channels.current.emit_result("play me a song")
    loop.playback.finish()

    assert loop.media_reference == "https://www.youtube.com/watch?v=abc123"
    assert loop.awaiting_reengage
    assert loop.status == DialogueStatus.IDLE
    assert len(channels.channels) == 1
    assert scheduler.pending == []

    assert loop.reengage()
    assert len(channels.channels) == 2
    assert loop.status == DialogueStatus.LISTENING
    assert loop.reengage() is False


def test_closing_while_thinking_drops_the_reply(channels, scheduler):
    queued = []
    loop, _ = _loop(channels, scheduler, _Responder("Too late"), dispatcher=queued.append)
    loop.open()
    channels.current.emit_result("hello")
    assert loop.status == DialogueStatus.THINKING

    loop.close()
    queued[0]()
    assert loop.playback.spoken == []
    assert loop.status == DialogueStatus.IDLE
    assert loop.playback.stop_count == 1


def test_completion_of_an_old_reply_is_ignored(channels, scheduler):
    loop, _ = _loop(channels, scheduler, _Responder("First answer"))
    loop.open()
    channels.current.emit_result("first")
    old_done = loop.playback.spoken[-1][2]

    loop.close()
    loop.open()
    started = len(channels.channels)
    old_done()
    assert len(channels.channels) == started


def test_responder_failure_is_spoken(channels, scheduler):
    loop, _ = _loop(channels, scheduler, _Responder(error=RuntimeError("boom")))
    loop.open()
    channels.current.emit_result("hello")
    assert loop.playback.spoken[-1][0] == FAILURE_REPLY
    assert loop.last_reply == FAILURE_REPLY


def test_empty_reply_relistens_without_waiting(channels, scheduler):
    loop, _ = _loop(channels, scheduler, _Responder("   "))
    loop.open()
    channels.current.emit_result("hello")
    assert loop.status == DialogueStatus.LISTENING
    assert len(channels.channels) == 2


def test_thinking_mode_is_passed_to_responder(channels, scheduler):
    responder = _Responder("ok")
    loop, _ = _loop(channels, scheduler, responder, thinking_mode=True)
    loop.open()
    channels.current.emit_result("explain relativity")
    assert responder.prompts == [("explain relativity", True)]


def test_permission_denied_sets_error(channels, scheduler):
    loop, statuses = _loop(channels, scheduler, _Responder("ok"))
    loop.open()
    channels.current.emit_error("not-allowed")
    assert loop.status == DialogueStatus.ERROR
    assert loop.error_message == PERMISSION_MESSAGE
    assert scheduler.pending == []


def test_transcripts_after_close_are_ignored(channels, scheduler):
    responder = _Responder("ok")
    loop, _ = _loop(channels, scheduler, responder)
    loop.open()
    loop._on_transcript("late words")
    loop.close()
    loop._on_transcript("after close")
    assert [p for p, _ in responder.prompts] == ["late words"]


def test_find_media_reference():
    assert find_media_reference("Listen: https://youtu.be/xyz!") == "https://youtu.be/xyz"
    assert find_media_reference("Audio at http://example.com/clip.mp3, enjoy") == "http://example.com/clip.mp3"
    assert find_media_reference("See https://vimeo.com/12345") == "https://vimeo.com/12345"
    assert find_media_reference("Docs at https://example.com/page.html") is None
    assert find_media_reference("") is None
