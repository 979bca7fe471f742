"""Tests for the control loop."""

import threading
from dataclasses import replace

from autoscaler.controller import AutoscaleController
from autoscaler.models import Direction, Phase
from autoscaler.observer import Observer
from autoscaler.reconciler import Reconciler
from autoscaler.runtime import RuntimeOperationError
from autoscaler.state_machine import Event


class RecordingObserver(Observer):
    """Keeps everything pushed to it."""

    def __init__(self):
        self.snapshots = []
        self.reports = []
        self.alerts = []
        self.countdowns = []
        self.finished = []

    def on_snapshot(self, snapshot):
        self.snapshots.append(snapshot)

    def on_reconcile(self, report):
        self.reports.append(report)

    def on_alert(self, alert):
        self.alerts.append(alert)

    def on_countdown(self, remaining):
        self.countdowns.append(remaining)

    def on_finished(self, snapshot):
        self.finished.append(snapshot)


class BrokenObserver(Observer):
    def on_snapshot(self, snapshot):
        raise RuntimeError("render failed")


def make_controller(config, runtime, clock=None, observers=None):
    kwargs = {'clock': clock} if clock is not None else {}
    return AutoscaleController(config, Reconciler(runtime, config), observers or [], **kwargs)


class TestTick:
    """Tests for single ticks with a manual clock."""

    def test_first_tick_scales_to_one(self, config, runtime, clock):
        observer = RecordingObserver()
        controller = make_controller(config, runtime, clock, [observer])

        event = controller.tick()

        assert event is None
        assert controller.state.demand == 100
        assert len(runtime.running) == 1
        snapshot = observer.snapshots[-1]
        assert snapshot.demand == 100
        assert snapshot.desired_count == 1
        assert snapshot.actual_count == 1
        assert snapshot.direction is Direction.INCREASING
        assert snapshot.phase is Phase.RAMPING_UP

    def test_actual_follows_desired_each_tick(self, config, runtime, clock):
        controller = make_controller(config, runtime, clock)

        for _ in range(20):
            controller.tick()
            snapshot = controller.snapshot()
            assert snapshot.actual_count == snapshot.desired_count

        assert controller.state.demand == 2000
        assert len(runtime.running) == 4

    def test_pause_suspends_demand_and_reconciliation(self, config, runtime, clock):
        config = replace(config, alert_pause_duration=30)
        observer = RecordingObserver()
        controller = make_controller(config, runtime, clock, [observer])

        events = [controller.tick() for _ in range(20)]
        assert events[-1] is Event.ALERT_RAISED
        assert len(observer.alerts) == 1
        assert controller.state.paused

        list_calls = runtime.list_calls
        for _ in range(5):
            clock.advance(1)
            assert controller.tick() is None

        assert runtime.list_calls == list_calls
        assert controller.state.demand == 2000
        assert observer.countdowns == [29, 28, 27, 26, 25]
        assert len(observer.alerts) == 1

        clock.advance(25)
        assert controller.tick() is Event.RESUMED
        assert controller.state.direction is Direction.DECREASING
        assert controller.state.phase is Phase.RAMPING_DOWN

        controller.tick()
        assert controller.state.demand == 1900
        assert controller.state.alert_fired is True

    def test_listing_failure_skip_policy(self, config, runtime, clock):
        config = replace(config, skip_on_list_failure=True)
        observer = RecordingObserver()
        controller = make_controller(config, runtime, clock, [observer])
        runtime.list_error = RuntimeOperationError("daemon busy")

        controller.tick()

        assert observer.reports[-1].skipped
        assert runtime.running == []
        assert controller.state.demand == 100

    def test_observer_failure_is_contained(self, config, runtime, clock):
        recorder = RecordingObserver()
        controller = make_controller(config, runtime, clock, [BrokenObserver(), recorder])

        controller.tick()

        assert len(recorder.snapshots) == 1


class TestRun:
    """Tests for the periodic loop."""

    def test_full_session(self, config, runtime):
        observer = RecordingObserver()
        controller = make_controller(config, runtime, observers=[observer])

        assert controller.run() is True

        assert controller.state.phase is Phase.TERMINATED
        assert controller.state.demand == 400
        assert controller.state.alert_fired is True
        assert len(observer.alerts) == 1
        assert max(s.actual_count for s in observer.snapshots) == 4
        assert min(s.demand for s in observer.snapshots if s.direction is Direction.DECREASING) == 400
        assert len(runtime.running) == 1

        report = controller.finish()

        assert report.ok
        assert runtime.instances == {}
        assert len(observer.finished) == 1
        assert observer.finished[0].demand == 400

    def test_stop_before_start(self, config, runtime):
        stop_event = threading.Event()
        stop_event.set()
        controller = AutoscaleController(config, Reconciler(runtime, config), stop_event=stop_event)

        assert controller.run() is False
        assert controller.iteration == 0

    def test_stop_from_another_thread(self, config, runtime):
        config = replace(config, alert_pause_duration=60)
        controller = make_controller(config, runtime)

        timer = threading.Timer(1.5, controller.stop)
        timer.start()
        try:
            finished = controller.run()
        finally:
            timer.cancel()

        assert finished is False
        assert controller.state.paused
        assert len(runtime.running) == 4

    def test_tick_errors_do_not_stop_loop(self, config, runtime):
        calls = {'count': 0}
        original = runtime.list_instances

        def flaky_list(include_stopped=False):
            calls['count'] += 1
            if calls['count'] <= 2:
                raise RuntimeError("unexpected")
            return original(include_stopped)

        runtime.list_instances = flaky_list
        controller = make_controller(config, runtime)

        assert controller.run() is True
        assert controller.state.phase is Phase.TERMINATED
