"""
Docker runtime adapter.

Drives the `docker` CLI to create, stop, remove and list the replicas of the
scaled workload. The runtime is the only source of truth for which instances
exist; nothing here caches container state between calls.
"""

import json
import logging
import re
import subprocess
from typing import Dict, List, Optional, Sequence

from .models import Instance, InstanceSpec

logger = logging.getLogger(__name__)

GROUP_LABEL = 'app'
SEQUENCE_LABEL = 'instance'


class RuntimeOperationError(Exception):
    """A single docker command failed."""


class RuntimeUnavailableError(RuntimeOperationError):
    """The docker daemon or the workload image cannot be reached."""


def parse_labels(raw: str) -> Dict[str, str]:
    """
    Parse the comma separated `key=value` label string printed by `docker ps`.

    Args:
        raw: Label string (e.g. "app=test-app,instance=2")

    Returns:
        Dictionary of labels
    """
    labels = {}
    for item in raw.split(','):
        if '=' not in item:
            continue
        key, value = item.split('=', 1)
        labels[key.strip()] = value.strip()
    return labels


def parse_host_port(raw: str, container_port: int) -> Optional[int]:
    """
    Extract the host port bound to `container_port`.

    Accepts both the `docker ps` Ports column
    ("0.0.0.0:49153->3000/tcp, :::49153->3000/tcp") and `docker port`
    output ("0.0.0.0:49153").
    """
    match = re.search(rf':(\d+)->{container_port}/tcp', raw)
    if match:
        return int(match.group(1))

    for line in raw.strip().splitlines():
        match = re.search(r':(\d+)$', line.strip())
        if match:
            return int(match.group(1))
    return None


class DockerRuntime:
    """
    Lifecycle primitives for the scaling group, backed by the docker CLI.

    Every instance carries two labels: the group label (`app=<app_name>`) used
    to select the scaling group, and the sequence label (`instance=<n>`)
    recording its creation order.
    """

    def __init__(self, app_name: str, container_port: int, docker_bin: str = 'docker',
                 command_timeout: int = 30):
        """
        Initialize Docker runtime.

        Args:
            app_name: Value of the group label
            container_port: Workload port inside the container
            docker_bin: docker executable
            command_timeout: Timeout for commands without their own bound
        """
        self.app_name = app_name
        self.container_port = container_port
        self.docker_bin = docker_bin
        self.command_timeout = command_timeout
        logger.info(f"Initialized Docker runtime for group: {GROUP_LABEL}={app_name}")

    def _run(self, args: Sequence[str], timeout: Optional[float] = None) -> str:
        cmd = [self.docker_bin, *args]
        logger.debug(f"Executing: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=timeout or self.command_timeout
            )
        except subprocess.TimeoutExpired as e:
            raise RuntimeOperationError(f"'{' '.join(cmd)}' timed out after {e.timeout}s") from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or '').strip()
            raise RuntimeOperationError(
                f"'{' '.join(cmd)}' failed with exit code {e.returncode}: {stderr}"
            ) from e
        except OSError as e:
            raise RuntimeUnavailableError(f"Cannot execute {self.docker_bin}: {e}") from e
        return result.stdout

    def check_ready(self, image: str) -> None:
        """
        Verify the daemon is reachable and the workload image is present.

        Raises:
            RuntimeUnavailableError: If either check fails
        """
        try:
            version = self._run(['version', '--format', '{{.Server.Version}}']).strip()
        except RuntimeOperationError as e:
            raise RuntimeUnavailableError(f"Docker daemon unreachable: {e}") from e
        logger.info(f"Docker daemon reachable (server {version})")

        try:
            self._run(['image', 'inspect', image])
        except RuntimeOperationError as e:
            raise RuntimeUnavailableError(f"Image {image} not found") from e
        logger.info(f"Image {image} found")

    def list_instances(self, include_stopped: bool = False) -> List[Instance]:
        """
        List instances of the scaling group.

        Args:
            include_stopped: Also return containers that are not running

        Returns:
            Instances ordered by creation sequence

        Raises:
            RuntimeOperationError: If the listing command fails
        """
        args = ['ps', '--no-trunc', '--filter', f'label={GROUP_LABEL}={self.app_name}',
                '--format', '{{json .}}']
        if include_stopped:
            args.insert(1, '--all')

        instances = []
        for line in self._run(args).splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                row = json.loads(line)
            except json.JSONDecodeError:
                logger.warning(f"Skipping unparsable docker ps line: {line[:80]}")
                continue
            instances.append(self._to_instance(row))

        instances.sort(key=lambda i: (i.sequence, i.name))
        logger.debug(f"Found {len(instances)} instances: {[i.name for i in instances]}")
        return instances

    def _to_instance(self, row: Dict[str, str]) -> Instance:
        labels = parse_labels(row.get('Labels', ''))
        try:
            sequence = int(labels.get(SEQUENCE_LABEL, '0'))
        except ValueError:
            sequence = 0

        state = row.get('State') or ('running' if row.get('Status', '').startswith('Up') else 'exited')
        return Instance(
            id=row.get('ID', '')[:12],
            name=row.get('Names', '').split(',')[0].lstrip('/'),
            sequence=sequence,
            port=parse_host_port(row.get('Ports', ''), self.container_port),
            state=state,
            status=row.get('Status', ''),
        )

    def create(self, spec: InstanceSpec) -> Instance:
        """
        Create and start one instance.

        Args:
            spec: Launch specification

        Returns:
            The running instance with its assigned host port

        Raises:
            RuntimeOperationError: If the container cannot be started
        """
        args = ['run', '--detach', '--name', spec.name]
        for key, value in spec.labels.items():
            args += ['--label', f'{key}={value}']
        for key, value in spec.env.items():
            args += ['--env', f'{key}={value}']
        args += [
            '--publish', str(spec.container_port),
            '--cpus', str(spec.cpu_limit),
            '--memory', str(spec.memory_bytes),
            '--restart', spec.restart_policy,
            spec.image,
        ]

        container_id = self._run(args).strip()[:12]
        port = parse_host_port(self._run(['port', container_id, f'{spec.container_port}/tcp']),
                               spec.container_port)

        return Instance(
            id=container_id,
            name=spec.name,
            sequence=int(spec.labels.get(SEQUENCE_LABEL, '0')),
            port=port,
            state='running',
            status='Up',
        )

    def stop(self, instance_id: str, timeout: int, limit: Optional[float] = None) -> None:
        """
        Gracefully stop an instance, killing it after `timeout` seconds.

        Args:
            instance_id: Container ID
            timeout: Grace period before docker kills the container
            limit: Hard bound on the whole command; the grace period is
                shortened to fit inside it
        """
        if limit is None:
            self._run(['stop', '--time', str(timeout), instance_id], timeout=timeout + self.command_timeout)
            return
        grace = max(0, min(timeout, int(limit) - 1))
        self._run(['stop', '--time', str(grace), instance_id], timeout=limit)

    def remove(self, instance_id: str, limit: Optional[float] = None) -> None:
        """Delete a stopped instance."""
        self._run(['rm', instance_id], timeout=limit)
