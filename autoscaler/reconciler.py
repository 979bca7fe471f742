"""
Replica reconciliation.

`reconcile()` diffs the observed instance set against the desired count and
returns at most one intent. `Reconciler` executes intents against the
runtime on a small thread pool, capturing every failure per operation so a
cycle always completes; whatever mismatch is left behind is picked up by the
next cycle's fresh observation.
"""

import logging
import random
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional, Sequence

from .config import ScalingConfig
from .models import (
    Create,
    Instance,
    InstanceSpec,
    OperationFailure,
    ReconcileReport,
    ScalingIntent,
    Terminate,
)
from .planner import max_servable_capacity
from .runtime import GROUP_LABEL, SEQUENCE_LABEL, RuntimeOperationError

logger = logging.getLogger(__name__)


def select_for_termination(actual: Sequence[Instance], count: int) -> List[Instance]:
    """
    Pick the `count` most recently created instances, newest first.

    Selection uses the creation sequence stored on each instance, not the
    order the runtime happened to list them in.
    """
    if count <= 0:
        return []
    newest_first = sorted(actual, key=lambda i: (i.sequence, i.name), reverse=True)
    return newest_first[:count]


def reconcile(actual: Sequence[Instance], desired: int) -> Optional[ScalingIntent]:
    """
    Compute the scaling intent for one cycle.

    Args:
        actual: Instances currently reported by the runtime
        desired: Target replica count

    Returns:
        Create, Terminate, or None when the counts already match
    """
    current = len(actual)
    if current < desired:
        return Create(desired - current)
    if current > desired:
        victims = select_for_termination(actual, current - desired)
        return Terminate(tuple(i.id for i in victims))
    return None


class Reconciler:
    """
    Executes scaling intents and drains against a runtime adapter.

    The runtime must provide `list_instances(include_stopped)`, `create(spec)`,
    `stop(instance_id, timeout, limit)` and `remove(instance_id, limit)`.

    Creation sequences come from a counter owned by the reconciler. It only
    moves forward: every successful listing raises it to the highest
    sequence seen and every launch attempt consumes one, so an empty
    observation after a listing failure cannot hand out a sequence that a
    surviving instance already carries.
    """

    def __init__(self, runtime, config: ScalingConfig,
                 sleep: Callable[[float], None] = time.sleep):
        self.runtime = runtime
        self.config = config
        self._sleep = sleep
        self.last_sequence = 0

    def _record_sequences(self, instances: Sequence[Instance]) -> None:
        for instance in instances:
            if instance.sequence > self.last_sequence:
                self.last_sequence = instance.sequence

    def _next_sequence(self) -> int:
        self.last_sequence += 1
        return self.last_sequence

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def observe(self) -> Optional[List[Instance]]:
        """
        List running instances of the scaling group.

        A listing failure is reported as an empty set, which can make the
        next cycle over-provision until a later observation corrects it.
        With `skip_on_list_failure` the failure returns None instead and
        the caller skips the cycle.
        """
        try:
            instances = self.runtime.list_instances(include_stopped=False)
        except RuntimeOperationError as e:
            logger.error(f"Failed to list instances: {e}")
            if self.config.skip_on_list_failure:
                return None
            return []
        self._record_sequences(instances)
        return instances

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def run_cycle(self, desired: int, demand: int,
                  actual: Sequence[Instance]) -> ReconcileReport:
        """
        Diff an observation against the plan and execute the intent.

        Args:
            desired: Target replica count
            demand: Current users, used to hold scale-up past server capacity
            actual: Instances returned by `observe()`

        Returns:
            ReconcileReport describing what was done
        """
        intent = reconcile(actual, desired)
        if intent is None:
            return ReconcileReport()

        if isinstance(intent, Create) and demand > max_servable_capacity(self.config):
            logger.warning(
                f"Demand {demand} exceeds servable capacity "
                f"{max_servable_capacity(self.config)}, not scaling up"
            )
            return ReconcileReport(skipped=True)

        return self.execute(intent, actual, demand)

    def execute(self, intent: ScalingIntent, actual: Sequence[Instance],
                demand: Optional[int] = None) -> ReconcileReport:
        """Carry out a single intent; never raises for runtime failures."""
        report = ReconcileReport(intent=intent)
        reason = f" ({demand} users)" if demand is not None else ""

        if isinstance(intent, Create):
            logger.info(f"SCALE UP: +{intent.count} instance(s){reason}")
            self._create_many(intent.count, report)
            logger.info(f"Scale up finished: {len(report.created)}/{intent.count} created")
        else:
            logger.info(f"SCALE DOWN: -{intent.count} instance(s){reason}")
            by_id = {i.id: i for i in actual}
            victims = [by_id[i] for i in intent.instance_ids if i in by_id]
            self._terminate_many(victims, self.config.scale_down_stop_timeout, report)
            logger.info(f"Scale down finished: {len(report.terminated)}/{intent.count} removed")

        for failure in report.failures:
            logger.error(f"  {failure.operation} {failure.target} failed: {failure.error}")
        return report

    def build_spec(self, sequence: int) -> InstanceSpec:
        """Launch specification for the instance with creation index `sequence`."""
        name = f"{self.config.app_name}-{sequence}-{int(time.time() * 1000)}-{random.randint(0, 999):03d}"
        return InstanceSpec(
            name=name,
            image=self.config.image,
            cpu_limit=self.config.container_cpu,
            memory_bytes=self.config.container_memory_bytes,
            container_port=self.config.container_port,
            env={
                'INSTANCE_NAME': name,
                'PORT': str(self.config.container_port),
            },
            labels={
                GROUP_LABEL: self.config.app_name,
                SEQUENCE_LABEL: str(sequence),
            },
        )

    def _create_many(self, count: int, report: ReconcileReport):
        specs = [self.build_spec(self._next_sequence()) for _ in range(count)]

        futures: Dict[Future, str] = {}
        with ThreadPoolExecutor(max_workers=self.config.max_workers,
                                thread_name_prefix='create') as pool:
            for n, spec in enumerate(specs):
                if n and self.config.launch_stagger > 0:
                    self._sleep(self.config.launch_stagger)
                logger.info(f"  [{n + 1}/{count}] Creating {spec.name}...")
                futures[pool.submit(self.runtime.create, spec)] = spec.name
            wait(futures)

        for future, name in futures.items():
            try:
                instance = future.result()
            except Exception as e:
                report.failures.append(OperationFailure('create', name, str(e)))
                continue
            port = instance.port if instance.port is not None else 'N/A'
            logger.info(f"      Started {instance.name} -> http://localhost:{port}")
            report.created.append(instance)

        report.created.sort(key=lambda i: i.sequence)

    @staticmethod
    def _remaining(expires_at: Optional[float]) -> Optional[float]:
        if expires_at is None:
            return None
        remaining = expires_at - time.monotonic()
        if remaining <= 0:
            raise RuntimeOperationError("drain deadline passed")
        return remaining

    def _terminate_one(self, instance: Instance, timeout: int,
                       expires_at: Optional[float] = None) -> str:
        if instance.is_running:
            self.runtime.stop(instance.id, timeout, limit=self._remaining(expires_at))
        self.runtime.remove(instance.id, limit=self._remaining(expires_at))
        return instance.id

    def _terminate_many(self, instances: Sequence[Instance], timeout: int,
                        report: ReconcileReport,
                        deadline: Optional[float] = None):
        """
        Stop and remove instances concurrently.

        With a `deadline`, every runtime command is bounded by the time left
        until it expires, so worker threads end with it. Operations still
        running when it expires are abandoned and reported as failures.
        """
        if not instances:
            return

        expires_at = time.monotonic() + deadline if deadline is not None else None
        futures: Dict[Future, Instance] = {}
        pool = ThreadPoolExecutor(max_workers=self.config.max_workers,
                                  thread_name_prefix='terminate')
        try:
            for n, instance in enumerate(instances):
                logger.info(f"  [{n + 1}/{len(instances)}] Stopping {instance.name}...")
                futures[pool.submit(self._terminate_one, instance, timeout, expires_at)] = instance
            done, not_done = wait(futures, timeout=deadline)
        finally:
            pool.shutdown(wait=deadline is None, cancel_futures=True)

        for future in done:
            instance = futures[future]
            try:
                report.terminated.append(future.result())
            except Exception as e:
                report.failures.append(OperationFailure('terminate', instance.name, str(e)))

        for future in not_done:
            instance = futures[future]
            report.failures.append(
                OperationFailure('terminate', instance.name, f"abandoned after {deadline}s")
            )

    # ------------------------------------------------------------------
    # Drain
    # ------------------------------------------------------------------

    def drain(self) -> ReconcileReport:
        """
        Stop and remove every instance of the scaling group.

        Includes instances that are not running. Best effort: failures are
        logged and swallowed, and the whole drain is bounded by
        `drain_timeout`. Safe to call repeatedly.
        """
        report = ReconcileReport()
        logger.info("Draining instances...")

        try:
            instances = self.runtime.list_instances(include_stopped=True)
        except RuntimeOperationError as e:
            logger.warning(f"Drain could not list instances: {e}")
            report.failures.append(OperationFailure('list', self.config.app_name, str(e)))
            return report

        self._record_sequences(instances)
        if not instances:
            logger.info("Drain complete: no instances")
            return report

        report.intent = Terminate(tuple(i.id for i in instances))
        self._terminate_many(instances, self.config.drain_stop_timeout, report,
                             deadline=self.config.drain_timeout)

        for failure in report.failures:
            logger.warning(f"  {failure.operation} {failure.target} failed: {failure.error}")
        logger.info(f"Drain complete: {len(report.terminated)}/{len(instances)} removed")
        return report
