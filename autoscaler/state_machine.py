"""
Saturation-alert state machine.

    RAMPING_UP --[demand at ceiling, alert not fired]--> ALERT_PAUSED
    ALERT_PAUSED --[pause duration elapsed]--> RAMPING_DOWN
    RAMPING_DOWN --[demand at floor]--> TERMINATED

The alert flag is part of the first transition's guard and is never reset,
so the pause happens at most once per run.
"""

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from .config import ScalingConfig
from .models import AlertContext, Direction, Phase, SimulationState

logger = logging.getLogger(__name__)


class Event(Enum):
    """Notable transitions reported to the controller."""

    ALERT_RAISED = "alert_raised"
    RESUMED = "resumed"
    FINISHED = "finished"


@dataclass(frozen=True)
class Transition:
    """Result of evaluating the state machine once."""

    state: SimulationState
    event: Optional[Event] = None
    alert: Optional[AlertContext] = None

    @property
    def changed(self) -> bool:
        return self.event is not None


def build_alert_context(demand: int, config: ScalingConfig) -> AlertContext:
    """
    Compute the horizontal scaling recommendation for a saturated server.

    Args:
        demand: Users at the moment the alert fires
        config: Scaling configuration

    Returns:
        AlertContext with servers needed and excess demand
    """
    return AlertContext(
        demand=demand,
        max_capacity=config.max_users_capacity,
        replica_ceiling=config.max_replicas,
        servers_needed=math.ceil(demand / config.max_users_capacity),
        excess_demand=demand - config.max_users_capacity,
    )


def pause_remaining(state: SimulationState, config: ScalingConfig, now: float) -> Optional[float]:
    """Seconds left in the alert pause, or None when not paused."""
    if state.phase is not Phase.ALERT_PAUSED or state.paused_at is None:
        return None
    return max(0.0, config.alert_pause_duration - (now - state.paused_at))


def evaluate(state: SimulationState, config: ScalingConfig, now: float) -> Transition:
    """
    Evaluate ceiling/floor crossings and the pause timer.

    Args:
        state: Current simulation state
        config: Scaling configuration
        now: Monotonic clock reading

    Returns:
        Transition holding the next state and the event taken, if any
    """
    if state.phase is Phase.RAMPING_UP:
        if state.demand >= config.users_max and not state.alert_fired:
            alert = build_alert_context(state.demand, config)
            logger.warning(
                f"Demand {state.demand} reached ceiling {config.users_max}, "
                f"pausing for {config.alert_pause_duration:.0f}s"
            )
            next_state = replace(
                state,
                phase=Phase.ALERT_PAUSED,
                paused=True,
                alert_fired=True,
                paused_at=now,
            )
            return Transition(next_state, Event.ALERT_RAISED, alert)
        return Transition(state)

    if state.phase is Phase.ALERT_PAUSED:
        remaining = pause_remaining(state, config, now)
        if remaining is not None and remaining <= 0:
            logger.info("Alert pause elapsed, resuming with decreasing demand")
            next_state = replace(
                state,
                phase=Phase.RAMPING_DOWN,
                direction=Direction.DECREASING,
                paused=False,
                paused_at=None,
            )
            return Transition(next_state, Event.RESUMED)
        return Transition(state)

    if state.phase is Phase.RAMPING_DOWN:
        if state.demand <= config.users_min:
            logger.info(f"Demand reached floor {config.users_min}, simulation finished")
            return Transition(replace(state, phase=Phase.TERMINATED), Event.FINISHED)
        return Transition(state)

    return Transition(state)
