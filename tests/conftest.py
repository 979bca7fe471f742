"""Pytest configuration and shared fixtures."""

import threading
from dataclasses import replace
from typing import Dict, List, Set

import pytest

from autoscaler.config import ScalingConfig
from autoscaler.models import Instance, InstanceSpec
from autoscaler.runtime import SEQUENCE_LABEL, RuntimeOperationError


class FakeRuntime:
    """In-memory stand-in for the docker runtime."""

    def __init__(self):
        self.instances: Dict[str, Instance] = {}
        self.created_specs: List[InstanceSpec] = []
        self.fail_create_sequences: Set[int] = set()
        self.fail_stop_ids: Set[str] = set()
        self.list_error = None
        self.list_calls = 0
        self._counter = 0
        self._lock = threading.Lock()

    def add(self, sequence: int, state: str = 'running') -> Instance:
        with self._lock:
            self._counter += 1
            instance = Instance(
                id=f"c{self._counter:011d}",
                name=f"test-app-{sequence}",
                sequence=sequence,
                port=49000 + self._counter,
                state=state,
            )
            self.instances[instance.id] = instance
        return instance

    def list_instances(self, include_stopped: bool = False) -> List[Instance]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        with self._lock:
            found = [i for i in self.instances.values() if include_stopped or i.is_running]
        return sorted(found, key=lambda i: i.sequence)

    def create(self, spec: InstanceSpec) -> Instance:
        sequence = int(spec.labels[SEQUENCE_LABEL])
        with self._lock:
            self.created_specs.append(spec)
        if sequence in self.fail_create_sequences:
            raise RuntimeOperationError(f"cannot create {spec.name}")
        return self.add(sequence)

    def stop(self, instance_id: str, timeout: int, limit=None) -> None:
        if instance_id in self.fail_stop_ids:
            raise RuntimeOperationError(f"cannot stop {instance_id}")
        with self._lock:
            self.instances[instance_id] = replace(self.instances[instance_id], state='exited')

    def remove(self, instance_id: str, limit=None) -> None:
        with self._lock:
            if instance_id not in self.instances:
                raise RuntimeOperationError(f"no such container: {instance_id}")
            del self.instances[instance_id]

    @property
    def running(self) -> List[Instance]:
        return [i for i in self.instances.values() if i.is_running]


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def config():
    """Reference scenario with every delay shortened for tests."""
    return ScalingConfig(
        tick_interval=0.01,
        alert_pause_duration=0.05,
        launch_stagger=0,
        resume_delay=0,
        final_delay=0,
        startup_delay=0,
        drain_timeout=5,
    )


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def clock():
    return ManualClock()
