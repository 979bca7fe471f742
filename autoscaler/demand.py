"""
Synthetic demand ramp.
"""

from dataclasses import replace

from .config import ScalingConfig
from .models import Direction, SimulationState


def advance(state: SimulationState, config: ScalingConfig) -> SimulationState:
    """
    Move demand one step along the current ramp direction.

    The step is applied once per tick and clamped so the ramp lands exactly
    on the ceiling (increasing) or the floor (decreasing) even when the
    increment does not divide the range. Direction changes belong to the
    state machine, not to this function.

    Args:
        state: Current simulation state
        config: Scaling configuration

    Returns:
        New state with the updated demand (unchanged while paused)
    """
    if state.paused:
        return state

    if state.direction is Direction.INCREASING:
        demand = min(state.demand + config.users_increment, config.users_max)
    else:
        demand = max(state.demand - config.users_increment, config.users_min, 0)

    return replace(state, demand=demand)
