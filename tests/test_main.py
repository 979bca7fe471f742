"""Tests for the service entry point."""

import logging
import threading
from unittest.mock import patch

from autoscaler import main as entry
from autoscaler.config import ScalingConfig
from autoscaler.observer import ConsoleObserver, MetricsObserver
from autoscaler.runtime import RuntimeUnavailableError


class TestMain:
    """Tests for process exit codes."""

    def test_invalid_configuration_exits_1(self, monkeypatch):
        monkeypatch.setenv('MIN_REPLICAS', '0')
        with patch.object(entry, 'setup_logging'):
            assert entry.main() == 1

    def test_unknown_log_level_exits_1(self, monkeypatch, caplog):
        monkeypatch.setenv('LOG_LEVEL', 'LOUD')
        with patch.object(entry.logging, 'basicConfig') as basic_config, \
                patch.object(entry, 'run') as run:
            assert entry.main() == 1

        assert basic_config.call_args[1]['level'] == logging.INFO
        assert 'Invalid configuration' in caplog.text
        assert 'LOUD' in caplog.text
        run.assert_not_called()

    def test_setup_logging_accepts_known_levels(self):
        with patch.object(entry.logging, 'basicConfig') as basic_config:
            entry.setup_logging('debug')

        assert basic_config.call_args[1]['level'] == 'DEBUG'

    def test_missing_image_exits_1(self, monkeypatch):
        monkeypatch.delenv('MIN_REPLICAS', raising=False)
        with patch.object(entry, 'setup_logging'), \
                patch.object(entry.DockerRuntime, 'check_ready',
                             side_effect=RuntimeUnavailableError("Image test-app:latest not found")), \
                patch.object(entry, 'run') as run:
            assert entry.main() == 1

        run.assert_not_called()


class TestRun:
    """Tests for a full session against the fake runtime."""

    def test_session_drains_and_exits_0(self, config, runtime):
        runtime.add(7, state='exited')

        code = entry.run(config, runtime, [], threading.Event())

        assert code == 0
        assert runtime.instances == {}

    def test_interrupt_before_start_drains(self, config, runtime):
        runtime.add(1)
        stop_event = threading.Event()
        stop_event.set()

        assert entry.run(config, runtime, [], stop_event) == 0
        assert runtime.instances == {}

    def test_interrupt_during_session_drains(self, config, runtime):
        stop_event = threading.Event()
        timer = threading.Timer(0.1, stop_event.set)
        timer.start()
        try:
            code = entry.run(config, runtime, [], stop_event)
        finally:
            timer.cancel()

        assert code == 0
        assert runtime.instances == {}


class TestBuildObservers:
    """Tests for observer wiring."""

    def test_console_only_by_default(self):
        observers = entry.build_observers(ScalingConfig())
        assert [type(o) for o in observers] == [ConsoleObserver]
        assert observers[0].health_checker is None

    def test_metrics_and_health(self):
        config = ScalingConfig(metrics_port=9200, probe_health=True)

        with patch.object(MetricsObserver, 'serve') as serve:
            observers = entry.build_observers(config)

        serve.assert_called_once_with(9200)
        assert [type(o) for o in observers] == [ConsoleObserver, MetricsObserver]
        assert observers[0].health_checker is not None
