"""
Capacity planning: users -> replicas.
"""

import math

from .config import ScalingConfig


def desired_replicas(demand: int, config: ScalingConfig) -> int:
    """
    Compute the replica count needed to serve a demand level.

    Args:
        demand: Current user count
        config: Scaling configuration

    Returns:
        ceil(demand / users_per_replica), clamped to [min_replicas, max_replicas]
    """
    if demand <= 0:
        return config.min_replicas

    needed = math.ceil(demand / config.users_per_replica)
    return max(config.min_replicas, min(needed, config.max_replicas))


def total_capacity(replicas: int, config: ScalingConfig) -> int:
    """Users served by `replicas` instances."""
    return replicas * config.users_per_replica


def max_servable_capacity(config: ScalingConfig) -> int:
    """Largest demand the server can absorb; scale-up stops past this point."""
    return min(total_capacity(config.max_replicas, config), config.max_users_capacity)
