import os
import sys

sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from conftest import FakeChannelFactory, ManualScheduler
from readaloud.supervisor import LatestRef, RecognitionSupervisor, SupervisorState


def _supervisor(channels, scheduler, handler=None, **kwargs):
    kwargs.setdefault('restart_delay', 0.25)
    kwargs.setdefault('max_restart_delay', 5.0)
    kwargs.setdefault('language', 'en-US')
    return RecognitionSupervisor(
        handler or (lambda text: None),
        channel_factory=channels,
        scheduler=scheduler,
        **kwargs,
    )


def test_benign_endings_restart_until_listening(channels, scheduler):
    sup = _supervisor(channels, scheduler)
    sup.enable()
    channels.current.emit_start()
    assert sup.state == SupervisorState.LISTENING

    for code in ("no-speech", "network", "aborted"):
        failed = channels.current
        failed.emit_error(code)
        failed.emit_end()
        assert failed.aborted
        assert [t.delay for t in scheduler.pending] == [0.25]
        assert sup.state == SupervisorState.STARTING
        scheduler.run_pending()
        channels.current.emit_start()
        assert sup.state == SupervisorState.LISTENING

    assert len(channels.channels) == 4
    assert sup.start_attempts == 4


def test_plain_end_restarts_after_fixed_delay(channels, scheduler):
    sup = _supervisor(channels, scheduler)
    sup.enable()
    channels.current.emit_start()
    channels.current.emit_end()
    assert [t.delay for t in scheduler.pending] == [0.25]
    scheduler.run_pending()
    assert len(channels.channels) == 2


def test_permission_denied_suspends_without_restarts(channels, scheduler):
    denied = []
    sup = _supervisor(channels, scheduler, on_permission_denied=lambda: denied.append(True))
    sup.enable()
    channels.current.emit_start()
    channels.current.emit_error("not-allowed")
    channels.current.emit_end()

    assert sup.state == SupervisorState.SUSPENDED_BY_PERMISSION
    assert sup.permission_denied
    assert denied == [True]
    assert scheduler.pending == []

    sup.enable()
    assert sup.relisten() is False
    assert len(channels.channels) == 1


def test_service_not_allowed_is_terminal_too(channels, scheduler):
    sup = _supervisor(channels, scheduler)
    sup.enable()
    channels.current.emit_error("service-not-allowed")
    assert sup.state == SupervisorState.SUSPENDED_BY_PERMISSION
    assert scheduler.pending == []


def test_reset_permission_allows_enable_again(channels, scheduler):
    sup = _supervisor(channels, scheduler)
    sup.enable()
    channels.current.emit_error("not-allowed")

    sup.reset_permission()
    assert sup.state == SupervisorState.STOPPED
    assert len(channels.channels) == 1

    sup.enable()
    assert len(channels.channels) == 2
    assert sup.state == SupervisorState.STARTING


def test_start_failures_back_off_exponentially():
    channels = FakeChannelFactory(fail_starts=3)
    scheduler = ManualScheduler()
    sup = _supervisor(channels, scheduler)
    sup.enable()

    delays = []
    for _ in range(3):
        delays.append(scheduler.pending[0].delay)
        scheduler.run_pending()
    assert delays == [0.5, 1.0, 2.0]

    channels.current.emit_start()
    assert sup.get_status()['consecutive_failures'] == 0
    channels.current.emit_end()
    assert scheduler.pending[0].delay == 0.25


def test_backoff_is_capped():
    channels = FakeChannelFactory(fail_starts=20)
    scheduler = ManualScheduler()
    sup = _supervisor(channels, scheduler, max_restart_delay=1.0)
    sup.enable()
    for _ in range(6):
        scheduler.run_pending()
    assert scheduler.pending[0].delay == 1.0


def test_ending_before_start_counts_as_failure(channels, scheduler):
    sup = _supervisor(channels, scheduler)
    sup.enable()
    channels.current.emit_error("audio-capture")
    assert scheduler.pending[0].delay == 0.5


def test_stale_channel_callbacks_are_ignored(channels, scheduler):
    heard = []
    sup = _supervisor(channels, scheduler, handler=heard.append)
    sup.enable()
    old = channels.current
    old.emit_start()
    stale_result, stale_error = old.on_result, old.on_error

    sup.set_language("ta-IN")
    assert old.stopped
    assert channels.current is not old
    assert channels.current.language == "ta-IN"

    stale_result("stop", True)
    stale_error("network", "")
    assert heard == []
    assert scheduler.pending == []


def test_superseded_restart_timer_does_nothing(channels, scheduler):
    sup = _supervisor(channels, scheduler)
    sup.enable()
    channels.current.emit_start()
    channels.current.emit_error("network")
    stale_timer = scheduler.pending[0]

    assert sup.relisten()
    assert stale_timer.cancelled
    assert len(channels.channels) == 2

    stale_timer.callback()
    assert len(channels.channels) == 2


def test_hold_and_relisten(channels, scheduler):
    sup = _supervisor(channels, scheduler)
    sup.enable()
    first = channels.current
    first.emit_start()

    sup.hold()
    assert first.stopped
    assert sup.state == SupervisorState.STOPPED
    assert sup.enabled

    assert sup.relisten()
    assert len(channels.channels) == 2

    sup.disable()
    assert sup.relisten() is False
    assert sup.state == SupervisorState.STOPPED


def test_disable_cancels_pending_restart(channels, scheduler):
    sup = _supervisor(channels, scheduler)
    sup.enable()
    channels.current.emit_start()
    channels.current.emit_end()
    timer = scheduler.pending[0]

    sup.disable()
    assert timer.cancelled
    assert sup.state == SupervisorState.STOPPED
    assert sup.get_status()['restart_pending'] is False


def test_handler_errors_do_not_stop_listening(channels, scheduler):
    calls = []

    def handler(text):
        calls.append(text)
        raise RuntimeError("action failed")

    sup = _supervisor(channels, scheduler, handler=handler)
    sup.enable()
    channels.current.emit_start()
    channels.current.emit_result("stop")
    channels.current.emit_result("pause")
    assert calls == ["stop", "pause"]
    assert sup.state == SupervisorState.LISTENING


def test_transcripts_are_trimmed_and_lowercased(channels, scheduler):
    heard = []
    sup = _supervisor(channels, scheduler, handler=heard.append)
    sup.enable()
    channels.current.emit_start()
    channels.current.emit_result("  Stop Reading ")
    channels.current.emit_result("   ")
    channels.current.emit_result("partial", is_final=False)
    assert heard == ["stop reading"]


def test_case_is_kept_when_normalization_is_off(channels, scheduler):
    heard = []
    sup = _supervisor(channels, scheduler, handler=heard.append, normalize_case=False)
    sup.enable()
    channels.current.emit_result(" What is Python? ")
    assert heard == ["What is Python?"]


def test_state_observer_sees_each_transition(channels, scheduler):
    seen = []
    sup = None

    def observer(state):
        seen.append((state, sup.get_status()['state']))

    sup = _supervisor(channels, scheduler, on_state_change=observer)
    sup.enable()
    channels.current.emit_start()
    assert seen == [
        (SupervisorState.STARTING, "starting"),
        (SupervisorState.LISTENING, "listening"),
    ]


def test_latest_ref_returns_newest_value():
    ref = LatestRef([1])
    ref.set([2])
    assert ref.get() == [2]


def test_disable_then_enable_retries_after_permission_denial(channels, scheduler):
    sup = _supervisor(channels, scheduler)
    sup.enable()
    channels.current.emit_start()
    channels.current.emit_error("not-allowed")
    assert sup.state == SupervisorState.SUSPENDED_BY_PERMISSION

    sup.disable()
    sup.enable()
    assert not sup.permission_denied
    assert sup.state == SupervisorState.STARTING
    assert len(channels.channels) == 2

    channels.current.emit_start()
    assert sup.state == SupervisorState.LISTENING
