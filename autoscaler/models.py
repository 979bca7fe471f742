"""
Data types shared by the control loop, the runtime adapter and observers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union


class Direction(Enum):
    """Direction of the demand ramp."""

    INCREASING = "increasing"
    DECREASING = "decreasing"


class Phase(Enum):
    """Phases of the saturation-alert state machine."""

    RAMPING_UP = "ramping_up"
    ALERT_PAUSED = "alert_paused"
    RAMPING_DOWN = "ramping_down"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class Instance:
    """
    One replica of the scaled workload as reported by the runtime.

    Attributes:
        id: Short container id
        name: Container name
        sequence: Creation order index recorded in the instance label
        port: Host port mapped to the workload port (None if unknown)
        state: Runtime state ("running", "exited", ...)
        status: Human readable status from the runtime
    """

    id: str
    name: str
    sequence: int
    port: Optional[int] = None
    state: str = "running"
    status: str = ""

    @property
    def is_running(self) -> bool:
        return self.state == "running"


@dataclass(frozen=True)
class InstanceSpec:
    """Everything the runtime needs to launch one replica."""

    name: str
    image: str
    cpu_limit: float
    memory_bytes: int
    container_port: int
    env: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    restart_policy: str = "unless-stopped"


@dataclass(frozen=True)
class SimulationState:
    """
    Control loop state. Replaced, never mutated, on every tick.

    Attributes:
        demand: Current synthetic user count
        direction: Ramp direction
        paused: True while the saturation alert pause is in effect
        alert_fired: Set once when the alert is raised, never reset
        phase: Current state machine phase
        paused_at: Clock reading when the pause started
    """

    demand: int = 0
    direction: Direction = Direction.INCREASING
    paused: bool = False
    alert_fired: bool = False
    phase: Phase = Phase.RAMPING_UP
    paused_at: Optional[float] = None

    @property
    def terminated(self) -> bool:
        return self.phase is Phase.TERMINATED


@dataclass(frozen=True)
class Create:
    """Scaling intent: launch `count` new instances."""

    count: int


@dataclass(frozen=True)
class Terminate:
    """Scaling intent: stop and remove the listed instances, newest first."""

    instance_ids: Tuple[str, ...]

    @property
    def count(self) -> int:
        return len(self.instance_ids)


ScalingIntent = Union[Create, Terminate]


@dataclass(frozen=True)
class AlertContext:
    """
    Figures shown when demand saturates a single server.

    Attributes:
        demand: Users at the moment the alert fired
        max_capacity: Users a single server can serve
        replica_ceiling: Maximum replicas on this server
        servers_needed: Servers required to serve the demand
        excess_demand: Users above single-server capacity
    """

    demand: int
    max_capacity: int
    replica_ceiling: int
    servers_needed: int
    excess_demand: int

    @property
    def additional_servers(self) -> int:
        return max(0, self.servers_needed - 1)


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time view of the control loop pushed to observers."""

    demand: int
    direction: Direction
    paused: bool
    alert_fired: bool
    desired_count: int
    instances: Tuple[Instance, ...]
    phase: Phase
    pause_remaining: Optional[float] = None

    @property
    def actual_count(self) -> int:
        return len(self.instances)


@dataclass
class OperationFailure:
    """A single runtime operation that failed during a cycle."""

    operation: str
    target: str
    error: str


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation or drain cycle."""

    intent: Optional[ScalingIntent] = None
    created: List[Instance] = field(default_factory=list)
    terminated: List[str] = field(default_factory=list)
    failures: List[OperationFailure] = field(default_factory=list)
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures
