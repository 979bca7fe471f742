"""
Observers of the control loop.

Observers receive snapshots and events pushed by the controller. They never
feed anything back into it, and a failing observer is logged and ignored.
"""

import logging
from datetime import datetime
from typing import Optional

import requests
from prometheus_client import CollectorRegistry, Counter, Enum, Gauge, start_http_server

from .config import ScalingConfig
from .models import AlertContext, Direction, Instance, Phase, ReconcileReport, Snapshot
from .planner import total_capacity

logger = logging.getLogger(__name__)


class Observer:
    """Base observer; every hook is optional."""

    def on_snapshot(self, snapshot: Snapshot) -> None:
        pass

    def on_reconcile(self, report: ReconcileReport) -> None:
        pass

    def on_alert(self, alert: AlertContext) -> None:
        pass

    def on_countdown(self, remaining: float) -> None:
        pass

    def on_finished(self, snapshot: Snapshot) -> None:
        pass


# ============================================================================
# Console dashboard
# ============================================================================

def progress_bar(percent: float, width: int) -> str:
    """Render a `width` character bar filled to `percent` (0-100)."""
    percent = max(0.0, min(100.0, percent))
    filled = int(percent * width / 100)
    return '█' * filled + '░' * (width - filled)


def instance_load(index: int, demand: int, config: ScalingConfig) -> int:
    """Users served by the instance at position `index`, filling instances in order."""
    start = index * config.users_per_replica
    return min(max(0, demand - start), config.users_per_replica)


class InstanceHealthChecker:
    """
    Probes the `/health` endpoint of each workload instance.
    """

    def __init__(self, host: str = 'localhost', timeout: float = 1.0):
        self.host = host
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'User-Agent': 'ramp-autoscaler/1.0'
        })

    def check(self, instance: Instance) -> Optional[bool]:
        """
        Check one instance.

        Returns:
            True if healthy, False if unhealthy or unreachable, None if the
            instance has no known host port
        """
        if instance.port is None:
            return None

        try:
            url = f"http://{self.host}:{instance.port}/health"
            response = self.session.get(url, timeout=self.timeout)
            if response.status_code != 200:
                return False
            return response.json().get('status') == 'healthy'
        except requests.exceptions.RequestException as e:
            logger.debug(f"Health check failed for {instance.name}: {e}")
            return False
        except ValueError:
            return False


class ConsoleObserver(Observer):
    """Logs a dashboard of the control loop on every snapshot."""

    WIDTH = 90

    def __init__(self, config: ScalingConfig, health_checker: Optional[InstanceHealthChecker] = None):
        self.config = config
        self.health_checker = health_checker
        self._paused = False

    def on_snapshot(self, snapshot: Snapshot) -> None:
        was_paused, self._paused = self._paused, snapshot.paused
        if snapshot.paused and was_paused:
            # countdown lines replace the dashboard after the alert tick
            return

        cfg = self.config
        count = snapshot.actual_count
        capacity = total_capacity(count, cfg)

        logger.info('═' * self.WIDTH)
        logger.info(f"  AUTO-SCALER - {datetime.now().strftime('%H:%M:%S')} - {snapshot.phase.value.upper()}")
        logger.info('═' * self.WIDTH)

        if snapshot.direction is Direction.INCREASING:
            logger.info(f"  Trend:     INCREASING (+{cfg.users_increment} users/tick)")
            logger.info(f"  Target:    {cfg.users_max} users (then ramp down)")
        else:
            logger.info(f"  Trend:     DECREASING (-{cfg.users_increment} users/tick)")
            logger.info(f"  Target:    {cfg.users_min} users (then stop)")

        status = 'EXCEEDED' if snapshot.demand > capacity else 'OK'
        logger.info(f"  Users:     {snapshot.demand:,}")
        logger.info(f"  Capacity:  {capacity:,} users [{status}]")

        percent = min(100.0, snapshot.demand / cfg.users_max * 100)
        logger.info(f"  {progress_bar(percent, 50)} {percent:.0f}% ({snapshot.demand}/{cfg.users_max})")

        logger.info(
            f"  Instances: {count} actual | {snapshot.desired_count} desired | "
            f"min/max {cfg.min_replicas}/{cfg.max_replicas}"
        )
        if not snapshot.instances:
            logger.info("  No active instances")
        for index, instance in enumerate(snapshot.instances):
            self._log_instance(index, instance, snapshot.demand)

        cpu_used = count * cfg.container_cpu
        ram_used = count * cfg.container_ram_gb
        cpu_percent = cpu_used / cfg.server_total_cpu * 100
        ram_percent = ram_used / cfg.server_total_ram_gb * 100
        logger.info(f"  CPU: {cpu_used:.1f}/{cfg.server_total_cpu:g} CPUs ({cpu_percent:.1f}%)")
        logger.info(f"  RAM: {ram_used:.1f}/{cfg.server_total_ram_gb:g} GB ({ram_percent:.1f}%)")

        if count < snapshot.desired_count:
            logger.info(f"  Next cycle: scale UP to {snapshot.desired_count} instance(s)")
        elif count > snapshot.desired_count:
            logger.info(f"  Next cycle: scale DOWN to {snapshot.desired_count} instance(s)")
        else:
            logger.info("  Scaling optimal")

    def _log_instance(self, index: int, instance: Instance, demand: int) -> None:
        users = instance_load(index, demand, self.config)
        percent = users / self.config.users_per_replica * 100
        if percent > 95:
            icon = '!!'
        elif percent > 80:
            icon = '!'
        else:
            icon = 'ok'

        health = ''
        if self.health_checker is not None:
            healthy = self.health_checker.check(instance)
            health = {True: ' healthy', False: ' UNHEALTHY', None: ''}[healthy]

        port = instance.port if instance.port is not None else 'N/A'
        logger.info(f"  Instance {index + 1} (port {port}){health} {instance.name[:50]}")
        logger.info(
            f"    {progress_bar(percent, 20)} {percent:.0f}% {icon} "
            f"({users}/{self.config.users_per_replica} users)"
        )

    def on_alert(self, alert: AlertContext) -> None:
        logger.warning('═' * self.WIDTH)
        logger.warning("  ALERT: SERVER LIMIT REACHED - HORIZONTAL SCALING REQUIRED")
        logger.warning('═' * self.WIDTH)
        logger.warning(f"  Current users:     {alert.demand}")
        logger.warning(f"  Max capacity:      {alert.max_capacity} users/server")
        logger.warning(f"  Instances:         {alert.replica_ceiling}/{alert.replica_ceiling} (MAXIMUM)")
        logger.warning(f"  Servers needed:    {alert.servers_needed}")
        logger.warning(f"  Missing capacity:  {alert.excess_demand} users")
        logger.warning(f"  Action: add {alert.additional_servers} server(s) behind a load balancer")
        logger.warning(
            f"  Alternatives: scale vertically (more CPU/RAM, raise MAX_REPLICAS) "
            f"or move to an orchestrator"
        )
        logger.warning(f"  Simulation resumes in {self.config.alert_pause_duration:.0f} seconds")

    def on_countdown(self, remaining: float) -> None:
        total = self.config.alert_pause_duration
        elapsed_percent = (total - remaining) / total * 100 if total else 100.0
        logger.info(f"  Resuming in {int(round(remaining)):02d} seconds... {progress_bar(elapsed_percent, 15)}")

    def on_finished(self, snapshot: Snapshot) -> None:
        # the last tick already rendered this state
        logger.info(
            f"Simulation finished at {snapshot.demand} users with "
            f"{snapshot.actual_count} instance(s) running"
        )


# ============================================================================
# Prometheus metrics
# ============================================================================

class MetricsObserver(Observer):
    """Publishes control loop state as Prometheus metrics."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.demand = Gauge(
            'autoscaler_demand_users',
            'Synthetic user count',
            registry=self.registry
        )
        self.desired = Gauge(
            'autoscaler_desired_replicas',
            'Replica count computed by the capacity planner',
            registry=self.registry
        )
        self.actual = Gauge(
            'autoscaler_actual_replicas',
            'Replica count reported by the runtime',
            registry=self.registry
        )
        self.paused = Gauge(
            'autoscaler_paused',
            'Simulation pause status (1=paused, 0=running)',
            registry=self.registry
        )
        self.pause_remaining = Gauge(
            'autoscaler_pause_remaining_seconds',
            'Seconds left in the alert pause',
            registry=self.registry
        )
        self.phase = Enum(
            'autoscaler_phase',
            'State machine phase',
            states=[p.value for p in Phase],
            registry=self.registry
        )
        self.alerts = Counter(
            'autoscaler_alerts_total',
            'Saturation alerts raised',
            registry=self.registry
        )
        self.operations = Counter(
            'autoscaler_operations_total',
            'Runtime operations executed by the reconciler',
            ['operation', 'outcome'],
            registry=self.registry
        )

    def serve(self, port: int) -> None:
        """Expose the metrics over HTTP on `port`."""
        start_http_server(port, registry=self.registry)
        logger.info(f"Metrics endpoint: http://0.0.0.0:{port}/metrics")

    def on_snapshot(self, snapshot: Snapshot) -> None:
        self.demand.set(snapshot.demand)
        self.desired.set(snapshot.desired_count)
        self.actual.set(snapshot.actual_count)
        self.paused.set(1 if snapshot.paused else 0)
        self.pause_remaining.set(snapshot.pause_remaining or 0)
        self.phase.state(snapshot.phase.value)

    def on_reconcile(self, report: ReconcileReport) -> None:
        if report.created:
            self.operations.labels(operation='create', outcome='success').inc(len(report.created))
        if report.terminated:
            self.operations.labels(operation='terminate', outcome='success').inc(len(report.terminated))
        for failure in report.failures:
            self.operations.labels(operation=failure.operation, outcome='failure').inc()

    def on_alert(self, alert: AlertContext) -> None:
        self.alerts.inc()

    def on_countdown(self, remaining: float) -> None:
        self.pause_remaining.set(remaining)

    def on_finished(self, snapshot: Snapshot) -> None:
        self.on_snapshot(snapshot)
