#!/usr/bin/env python3
"""
Ramp autoscaler service.

Drives a synthetic user count up and down and keeps the number of workload
containers in line with it:

1. Check that the docker daemon and the workload image are available
2. Remove any leftover instances from a previous session
3. Tick: ramp demand, plan replicas, reconcile containers, evaluate alert
4. Pause on saturation, then ramp down to the floor
5. Drain every instance and exit

Ctrl+C (SIGINT) or SIGTERM drains the instances before exiting.
"""

import logging
import os
import signal
import sys
import threading
from typing import List, Optional, Sequence

from .config import ScalingConfig
from .controller import AutoscaleController
from .observer import ConsoleObserver, InstanceHealthChecker, MetricsObserver, Observer
from .planner import max_servable_capacity
from .reconciler import Reconciler
from .runtime import DockerRuntime, RuntimeUnavailableError

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging once for the service.

    Raises:
        ValueError: If the level is not a known logging level. Logging is
            still configured at INFO so the error can be reported.
    """
    name = (level or os.environ.get('LOG_LEVEL', 'INFO')).upper()
    known = isinstance(logging.getLevelName(name), int)
    logging.basicConfig(
        level=name if known else logging.INFO,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    if not known:
        raise ValueError(f"LOG_LEVEL must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL (got {name!r})")


def print_startup_banner(config: ScalingConfig) -> None:
    """Log the scenario and configuration."""
    logger.info("=" * 60)
    logger.info("RAMP AUTO-SCALER")
    logger.info("=" * 60)
    logger.info("Configuration:")
    logger.info(f"  Application:           {config.app_name}")
    logger.info(f"  Image:                 {config.image}")
    logger.info(f"  Users per instance:    {config.users_per_replica}")
    logger.info(f"  Replica Range:         {config.min_replicas} - {config.max_replicas}")
    logger.info(f"  Servable capacity:     {max_servable_capacity(config)} users")
    logger.info(f"  Tick Interval:         {config.tick_interval}s")
    logger.info("Scenario:")
    logger.info(f"  1. Increase: 0 -> {config.users_max} users (+{config.users_increment}/tick)")
    logger.info(f"  2. Alert at {config.users_max} users (pause {config.alert_pause_duration:.0f}s)")
    logger.info(f"  3. Decrease: {config.users_max} -> {config.users_min} users (-{config.users_increment}/tick)")
    logger.info("  4. Automatic stop and cleanup")
    logger.info("=" * 60)


def build_observers(config: ScalingConfig) -> List[Observer]:
    checker = InstanceHealthChecker() if config.probe_health else None
    observers: List[Observer] = [ConsoleObserver(config, health_checker=checker)]

    if config.metrics_port:
        metrics = MetricsObserver()
        metrics.serve(config.metrics_port)
        observers.append(metrics)

    return observers


def install_signal_handlers(stop_event: threading.Event) -> None:
    """Turn SIGINT/SIGTERM into a stop request for the control loop."""
    def _handle(signum, frame):
        logger.info(f"Shutdown requested ({signal.Signals(signum).name})")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def run(config: ScalingConfig, runtime, observers: Sequence[Observer],
        stop_event: threading.Event) -> int:
    """
    Run one full session against an already validated runtime.

    Returns:
        Process exit code
    """
    reconciler = Reconciler(runtime, config)
    controller = AutoscaleController(config, reconciler, observers, stop_event=stop_event)

    reconciler.drain()

    logger.info(f"Starting simulation in {config.startup_delay:.0f} seconds...")
    if stop_event.wait(config.startup_delay):
        reconciler.drain()
        return 0

    try:
        if controller.run():
            controller.finish()
            logger.info("Simulation finished")
        else:
            reconciler.drain()
            logger.info("Scaler service stopped gracefully")
    except Exception as e:
        logger.critical(f"Fatal error in main loop: {e}", exc_info=True)
        reconciler.drain()
        return 1

    return 0


def main() -> int:
    try:
        setup_logging()
        config = ScalingConfig.from_env()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    print_startup_banner(config)

    runtime = DockerRuntime(config.app_name, config.container_port)
    try:
        runtime.check_ready(config.image)
    except RuntimeUnavailableError as e:
        logger.error(f"Startup check failed: {e}")
        logger.info(f"Build the workload image with: docker build -t {config.image} workload/")
        return 1

    stop_event = threading.Event()
    install_signal_handlers(stop_event)

    return run(config, runtime, build_observers(config), stop_event)


if __name__ == "__main__":
    sys.exit(main())
