"""
Tests for the scheduler service lifecycle.

Most tests replace the command runner with a fake so ticks are
observable without spawning processes. Services run in a background thread with signal
handling disabled and are stopped through request_shutdown().
"""

import logging
import threading
import time

import pytest

from cronx.config import CronxConfig
from cronx.errors import CommandExecutionError
from cronx.jobs import CommandResult
from cronx.service import EXIT_FAILURE, EXIT_OK, CronxService, ServiceState

EVERY_SECOND = "* * * * * *"


class FakeRunner:
    """Stands in for CommandRunner."""

    def __init__(self, fail=False, block=None):
        self.fail = fail
        self.block = block
        self.calls = []
        self.finished = 0
        self._lock = threading.Lock()

    def run(self, command, args=()):
        with self._lock:
            self.calls.append((command, list(args)))
        if self.block is not None:
            self.block.wait()
        with self._lock:
            self.finished += 1
        if self.fail:
            raise CommandExecutionError(command, "exit status 2", returncode=2)
        return CommandResult(command, list(args), "fake", 0, 0.0)


def make_service(runner, schedule=EVERY_SECOND, **kwargs):
    return CronxService(
        schedule=schedule,
        command="/bin/job",
        args=["--flag"],
        config=CronxConfig(timezone="UTC"),
        logger=logging.getLogger("test.service"),
        runner=runner,
        handle_signals=False,
        poll_interval=0.05,
        **kwargs,
    )


def run_in_thread(service):
    result = {}
    thread = threading.Thread(target=lambda: result.update(code=service.run()))
    thread.start()
    return thread, result


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


def test_invalid_schedule_fails_fast(caplog):
    runner = FakeRunner()
    service = make_service(runner, schedule="* * * * 8")

    assert service.run() == EXIT_FAILURE
    assert service.state is ServiceState.STOPPED
    assert service.tick_source is None
    assert runner.calls == []

    failures = [r for r in caplog.records if r.getMessage() == "failed to create scheduler"]
    assert len(failures) == 1
    assert failures[0].schedule == "* * * * 8"


def test_runs_command_on_schedule(caplog):
    caplog.set_level(logging.INFO)
    runner = FakeRunner()
    service = make_service(runner)
    thread, result = run_in_thread(service)

    assert wait_until(lambda: len(runner.calls) >= 2)
    assert service.state is ServiceState.RUNNING
    service.request_shutdown()
    thread.join(timeout=5)

    assert result["code"] == EXIT_OK
    assert service.state is ServiceState.STOPPED
    assert runner.calls[0] == ("/bin/job", ["--flag"])

    scheduled = [r for r in caplog.records if r.getMessage() == "new cron scheduled"]
    assert len(scheduled) == 1
    assert scheduled[0].schedule == EVERY_SECOND
    assert scheduled[0].command_args == ["--flag"]


def test_failed_runs_do_not_stop_the_schedule(caplog):
    runner = FakeRunner(fail=True)
    service = make_service(runner)
    thread, result = run_in_thread(service)

    assert wait_until(lambda: runner.finished >= 3, timeout=6)
    service.request_shutdown()
    thread.join(timeout=5)

    assert result["code"] == EXIT_OK
    errors = [r for r in caplog.records if r.getMessage() == "command execution error"]
    assert len(errors) >= 3
    assert errors[0].returncode == 2


def test_shutdown_waits_for_running_command():
    release = threading.Event()
    runner = FakeRunner(block=release)
    service = make_service(runner)
    thread, result = run_in_thread(service)

    assert wait_until(lambda: len(runner.calls) >= 1)
    service.request_shutdown("test")

    assert wait_until(lambda: service.state is ServiceState.SHUTTING_DOWN)
    time.sleep(0.3)
    assert thread.is_alive()
    assert service.tracker.in_flight >= 1

    release.set()
    thread.join(timeout=5)

    assert result["code"] == EXIT_OK
    assert service.tracker.in_flight == 0
    assert runner.finished == len(runner.calls)


def test_no_command_starts_after_shutdown():
    runner = FakeRunner()
    service = make_service(runner)
    thread, result = run_in_thread(service)

    assert wait_until(lambda: len(runner.calls) >= 1)
    service.request_shutdown()
    thread.join(timeout=5)
    calls = len(runner.calls)
    time.sleep(1.5)

    assert len(runner.calls) == calls
    assert service.coordinator.is_active()


def test_shutdown_requested_before_run():
    runner = FakeRunner()
    service = make_service(runner)
    service.request_shutdown()

    assert service.run() == EXIT_OK
    assert service.state is ServiceState.STOPPED
    assert service.tick_source.running is False


def test_run_twice_raises():
    service = make_service(FakeRunner(), schedule="bogus")
    service.run()

    with pytest.raises(RuntimeError):
        service.run()


def test_scheduler_construction_failure(monkeypatch):
    def broken_tick_source(*args, **kwargs):
        raise RuntimeError("no threads left")

    monkeypatch.setattr("cronx.service.TickSource", broken_tick_source)
    runner = FakeRunner()
    service = make_service(runner)

    assert service.run() == EXIT_FAILURE
    assert service.state is ServiceState.STOPPED
    assert service.coordinator.is_active()
    assert runner.calls == []


def test_missing_executable_keeps_ticking(caplog):
    """The real runner's spawn failures are logged per tick, never fatal"""
    service = CronxService(
        schedule=EVERY_SECOND,
        command="/nonexistent/cronx-test-command",
        config=CronxConfig(timezone="UTC"),
        logger=logging.getLogger("test.service"),
        handle_signals=False,
        poll_interval=0.05,
    )
    thread, result = run_in_thread(service)

    def errors():
        return [r for r in caplog.records if r.getMessage() == "command execution error"]

    assert wait_until(lambda: len(errors()) >= 2, timeout=6)
    service.request_shutdown()
    thread.join(timeout=5)

    assert result["code"] == EXIT_OK
    for record in errors():
        assert record.command == "/nonexistent/cronx-test-command"
        assert record.returncode is None
        assert "FileNotFoundError" in record.cause
