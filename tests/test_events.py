"""Tests for progress events and the status throttle."""

from capability_eval.events import EventEmitter, ProgressKind, StatusThrottle


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestStatusThrottle:
    def test_first_call_passes(self):
        assert StatusThrottle(1.0, FakeClock()).ready()

    def test_at_most_one_per_interval(self):
        clock = FakeClock()
        throttle = StatusThrottle(1.0, clock)
        assert throttle.ready()
        clock.now = 0.5
        assert not throttle.ready()
        clock.now = 1.0
        assert not throttle.ready()
        clock.now = 1.01
        assert throttle.ready()
        clock.now = 1.5
        assert not throttle.ready()


class TestEventEmitter:
    def test_no_listener_is_noop(self):
        EventEmitter().text(ProgressKind.DISCOVERY, "hello")

    def test_delivers_events(self):
        seen = []
        emitter = EventEmitter(seen.append)
        emitter.run_started("r1", "s1", "with_tools")
        emitter.run_status("r1", "running", "transcript")
        assert [e.kind for e in seen] == [ProgressKind.RUN_STARTED, ProgressKind.RUN_STATUS]
        assert seen[0].scenario_id == "s1"
        assert seen[1].text == "transcript"

    def test_failing_listener_is_contained(self):
        def listener(event):
            raise RuntimeError("ui gone")

        EventEmitter(listener).text(ProgressKind.GENERATION, "chunk")
