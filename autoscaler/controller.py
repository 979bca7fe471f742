"""
Control loop.

One tick: advance demand -> plan desired replicas -> reconcile against the
runtime -> evaluate the state machine -> notify observers. Ticks never
overlap, and the controller is the only writer of SimulationState.
"""

import logging
import threading
import time
from typing import Callable, List, Optional, Sequence

from . import demand as demand_ramp
from .config import ScalingConfig
from .models import Instance, ReconcileReport, SimulationState, Snapshot
from .observer import Observer
from .planner import desired_replicas
from .reconciler import Reconciler
from .state_machine import Event, evaluate, pause_remaining

logger = logging.getLogger(__name__)


class AutoscaleController:
    """
    Periodic scheduler driving the autoscaling session.

    `run()` ticks every `tick_interval` seconds until the state machine
    reaches TERMINATED or `stop_event` is set. While the alert pause is in
    effect, ticks only service the countdown.
    """

    def __init__(self, config: ScalingConfig, reconciler: Reconciler,
                 observers: Optional[Sequence[Observer]] = None,
                 stop_event: Optional[threading.Event] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.reconciler = reconciler
        self.observers: List[Observer] = list(observers or [])
        self.stop_event = stop_event or threading.Event()
        self.clock = clock
        self.state = SimulationState()
        self.iteration = 0
        self._instances: Sequence[Instance] = ()

    def stop(self) -> None:
        """Ask the loop to exit after the current tick."""
        self.stop_event.set()

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self) -> Optional[Event]:
        """
        Run one control loop iteration.

        Returns:
            The state machine event taken during this tick, if any
        """
        self.iteration += 1

        if self.state.paused:
            return self._tick_paused()

        self.state = demand_ramp.advance(self.state, self.config)
        desired = desired_replicas(self.state.demand, self.config)

        actual = self.reconciler.observe()
        if actual is None:
            logger.warning("Skipping reconciliation after listing failure")
            report = ReconcileReport(skipped=True)
        else:
            report = self.reconciler.run_cycle(desired, self.state.demand, actual=actual)
            self._instances = tuple(actual)
            if report.intent is not None:
                refreshed = self.reconciler.observe()
                if refreshed is not None:
                    self._instances = tuple(refreshed)

        transition = evaluate(self.state, self.config, self.clock())
        self.state = transition.state

        self._notify('on_reconcile', report)
        self._notify('on_snapshot', self.snapshot())
        if transition.event is Event.ALERT_RAISED:
            self._notify('on_alert', transition.alert)

        return transition.event

    def _tick_paused(self) -> Optional[Event]:
        transition = evaluate(self.state, self.config, self.clock())
        self.state = transition.state

        if transition.event is Event.RESUMED:
            logger.info("Resuming simulation in decreasing mode")
        else:
            remaining = pause_remaining(self.state, self.config, self.clock())
            self._notify('on_countdown', remaining if remaining is not None else 0.0)

        self._notify('on_snapshot', self.snapshot())
        return transition.event

    def snapshot(self) -> Snapshot:
        """Current view of the loop for observers."""
        return Snapshot(
            demand=self.state.demand,
            direction=self.state.direction,
            paused=self.state.paused,
            alert_fired=self.state.alert_fired,
            desired_count=desired_replicas(self.state.demand, self.config),
            instances=tuple(self._instances),
            phase=self.state.phase,
            pause_remaining=pause_remaining(self.state, self.config, self.clock()),
        )

    def _notify(self, hook: str, *args) -> None:
        for observer in self.observers:
            try:
                getattr(observer, hook)(*args)
            except Exception as e:
                logger.error(f"Observer {type(observer).__name__}.{hook} failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def run(self) -> bool:
        """
        Tick until the session finishes or a stop is requested.

        Returns:
            True if the state machine reached TERMINATED, False if stopped
        """
        logger.info(f"Control loop started (tick every {self.config.tick_interval}s)")

        while not self.stop_event.is_set():
            started = self.clock()
            try:
                event = self.tick()
            except Exception as e:
                logger.error(f"Error in iteration {self.iteration}: {e}", exc_info=True)
                event = None

            if self.state.terminated:
                return True

            if event is Event.RESUMED and self.config.resume_delay > 0:
                if self.stop_event.wait(self.config.resume_delay):
                    break

            elapsed = self.clock() - started
            self.stop_event.wait(max(0.0, self.config.tick_interval - elapsed))

        logger.info(f"Control loop stopped after {self.iteration} iterations")
        return False

    def finish(self) -> ReconcileReport:
        """
        Close a finished session: publish the final snapshot, then drain.

        Returns:
            The drain report
        """
        final = self.reconciler.observe()
        if final is not None:
            self._instances = tuple(final)
        self._notify('on_finished', self.snapshot())

        if self.config.final_delay > 0:
            logger.info(f"Stopping in {self.config.final_delay:.0f} seconds...")
            self.stop_event.wait(self.config.final_delay)

        report = self.reconciler.drain()
        self._instances = ()
        self._notify('on_reconcile', report)
        return report
