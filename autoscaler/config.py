"""
Configuration for the ramp autoscaler.

All settings come from environment variables and are frozen once the
service starts. Defaults reproduce the reference scenario:
0 -> 2000 users (+100/tick), alert pause at 2000, then 2000 -> 400 users.
"""

import os
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

_TRUE_VALUES = ('1', 'true', 'yes', 'on')


def _env_str(environ: Mapping[str, str], key: str, default: str) -> str:
    return environ.get(key, default)


def _env_int(environ: Mapping[str, str], key: str, default: int) -> int:
    return int(environ.get(key, str(default)))


def _env_float(environ: Mapping[str, str], key: str, default: float) -> float:
    return float(environ.get(key, str(default)))


def _env_bool(environ: Mapping[str, str], key: str, default: bool) -> bool:
    value = environ.get(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


@dataclass(frozen=True)
class ScalingConfig:
    """
    Immutable settings for one autoscaling session.

    Attributes:
        app_name: Label value grouping every instance of the scaled workload
        image: Container image launched for each replica
        container_port: Port the workload listens on inside the container
        container_cpu: CPU limit per replica (cores)
        container_ram_gb: Memory limit per replica (GB)
        server_total_cpu: CPU cores available on the host (dashboard only)
        server_total_ram_gb: Memory available on the host (dashboard only)

        min_replicas: Lower bound on the desired replica count
        max_replicas: Upper bound on the desired replica count
        users_per_replica: Users a single replica can serve
        max_users_capacity: Users a single server can serve before the
            saturation alert recommends horizontal scaling

        users_increment: Demand change applied on every tick
        users_max: Demand ceiling that triggers the alert
        users_min: Demand floor that ends the descending ramp
        alert_pause_duration: Seconds the simulation stays paused on alert
        tick_interval: Seconds between control loop ticks
    """

    # Workload
    app_name: str = 'test-app'
    image: str = 'test-app:latest'
    container_port: int = 3000
    container_cpu: float = 0.8
    container_ram_gb: float = 1.0
    server_total_cpu: float = 4.0
    server_total_ram_gb: float = 16.0

    # Capacity model
    min_replicas: int = 1
    max_replicas: int = 4
    users_per_replica: int = 500
    max_users_capacity: int = 2000

    # Demand ramp
    users_increment: int = 100
    users_max: int = 2000
    users_min: int = 400
    alert_pause_duration: float = 30.0
    tick_interval: float = 1.0

    # Runtime operations
    scale_down_stop_timeout: int = 10
    drain_stop_timeout: int = 5
    launch_stagger: float = 0.3
    max_workers: int = 2
    drain_timeout: float = 60.0
    skip_on_list_failure: bool = False

    # Process pacing
    startup_delay: float = 3.0
    resume_delay: float = 2.0
    final_delay: float = 5.0

    # Observers
    metrics_port: int = 0
    probe_health: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self):
        if self.min_replicas < 1:
            raise ValueError("min_replicas must be at least 1")
        if self.max_replicas < self.min_replicas:
            raise ValueError("max_replicas must be >= min_replicas")
        if self.users_per_replica < 1:
            raise ValueError("users_per_replica must be at least 1")
        if self.max_users_capacity < 1:
            raise ValueError("max_users_capacity must be at least 1")
        if self.users_increment < 1:
            raise ValueError("users_increment must be at least 1")
        if self.users_min < 0:
            raise ValueError("users_min must be non-negative")
        if self.users_max <= self.users_min:
            raise ValueError("users_max must be > users_min")
        if self.alert_pause_duration < 0:
            raise ValueError("alert_pause_duration must be non-negative")
        if self.tick_interval <= 0:
            raise ValueError("tick_interval must be positive")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if self.drain_timeout <= 0:
            raise ValueError("drain_timeout must be positive")

    @property
    def container_memory_bytes(self) -> int:
        return int(self.container_ram_gb * 1024 * 1024 * 1024)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ScalingConfig":
        """
        Build configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            Validated ScalingConfig

        Raises:
            ValueError: If a variable cannot be parsed or fails validation
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        return cls(
            app_name=_env_str(env, 'APP_NAME', defaults.app_name),
            image=_env_str(env, 'IMAGE', defaults.image),
            container_port=_env_int(env, 'CONTAINER_PORT', defaults.container_port),
            container_cpu=_env_float(env, 'CONTAINER_CPU', defaults.container_cpu),
            container_ram_gb=_env_float(env, 'CONTAINER_RAM_GB', defaults.container_ram_gb),
            server_total_cpu=_env_float(env, 'SERVER_TOTAL_CPU', defaults.server_total_cpu),
            server_total_ram_gb=_env_float(env, 'SERVER_TOTAL_RAM_GB', defaults.server_total_ram_gb),
            min_replicas=_env_int(env, 'MIN_REPLICAS', defaults.min_replicas),
            max_replicas=_env_int(env, 'MAX_REPLICAS', defaults.max_replicas),
            users_per_replica=_env_int(env, 'USERS_PER_REPLICA', defaults.users_per_replica),
            max_users_capacity=_env_int(env, 'MAX_USERS_CAPACITY', defaults.max_users_capacity),
            users_increment=_env_int(env, 'USERS_INCREMENT', defaults.users_increment),
            users_max=_env_int(env, 'USERS_MAX', defaults.users_max),
            users_min=_env_int(env, 'USERS_MIN', defaults.users_min),
            alert_pause_duration=_env_float(env, 'ALERT_PAUSE_DURATION', defaults.alert_pause_duration),
            tick_interval=_env_float(env, 'TICK_INTERVAL', defaults.tick_interval),
            scale_down_stop_timeout=_env_int(env, 'SCALE_DOWN_STOP_TIMEOUT', defaults.scale_down_stop_timeout),
            drain_stop_timeout=_env_int(env, 'DRAIN_STOP_TIMEOUT', defaults.drain_stop_timeout),
            launch_stagger=_env_float(env, 'LAUNCH_STAGGER', defaults.launch_stagger),
            max_workers=_env_int(env, 'MAX_WORKERS', defaults.max_workers),
            drain_timeout=_env_float(env, 'DRAIN_TIMEOUT', defaults.drain_timeout),
            skip_on_list_failure=_env_bool(env, 'SKIP_RECONCILE_ON_LIST_FAILURE', defaults.skip_on_list_failure),
            startup_delay=_env_float(env, 'STARTUP_DELAY', defaults.startup_delay),
            resume_delay=_env_float(env, 'RESUME_DELAY', defaults.resume_delay),
            final_delay=_env_float(env, 'FINAL_DELAY', defaults.final_delay),
            metrics_port=_env_int(env, 'METRICS_PORT', defaults.metrics_port),
            probe_health=_env_bool(env, 'PROBE_HEALTH', defaults.probe_health),
        )
