"""
Tests for the command-line interface.
"""

import json
import logging
import os
import signal
import subprocess
import sys
import time
from pathlib import Path

import pytest

import cronx
from cronx import cli

REPO_ROOT = Path(__file__).resolve().parent


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    """Isolate tests from CRONX_* variables, .env files and logging setup."""
    for key in list(os.environ):
        if key.startswith("CRONX_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)

    yield

    root_logger = logging.getLogger()
    for handler in cli._installed_handlers:
        root_logger.removeHandler(handler)
        handler.close()
    cli._installed_handlers.clear()


def test_version(capsys):
    cli.main(["version"])

    out = capsys.readouterr().out
    assert f"cronx version {cronx.__version__}" in out
    assert "commit:" in out
    assert "built:" in out
    assert "built by:" in out


@pytest.mark.parametrize("argv", [[], ["* * * * *"]])
def test_missing_arguments_exit_1(argv, capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(argv)

    assert excinfo.value.code == 1
    assert "usage:" in capsys.readouterr().err


def test_arguments_after_command_are_passed_through():
    args = cli.build_parser().parse_args(
        ["--max-instances", "2", "@daily", "/bin/backup", "--full", "-v"]
    )

    assert args.max_instances == 2
    assert args.schedule == "@daily"
    assert args.command == "/bin/backup"
    assert args.args == ["--full", "-v"]


def test_invalid_schedule_exit_1(capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["* * * * 8", "/bin/true"])

    assert excinfo.value.code == 1

    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line]
    failure = next(line for line in lines if line["msg"] == "failed to create scheduler")
    assert failure["level"] == "error"
    assert failure["schedule"] == "* * * * 8"
    assert "time" in failure


def test_bad_environment_value_exit_1(monkeypatch, capsys):
    monkeypatch.setenv("CRONX_MAX_INSTANCES", "many")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["@daily", "/bin/true"])

    assert excinfo.value.code == 1
    assert "CRONX_MAX_INSTANCES" in capsys.readouterr().err


def test_bad_option_value_exit_1(capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--timeout", "0", "@daily", "/bin/true"])

    assert excinfo.value.code == 1
    assert "timeout must be positive" in capsys.readouterr().err


def test_text_log_format(capsys):
    with pytest.raises(SystemExit):
        cli.main(["--log-format", "text", "* * * * 8", "/bin/true"])

    out = capsys.readouterr().out
    assert "failed to create scheduler" in out
    with pytest.raises(json.JSONDecodeError):
        json.loads(out.splitlines()[0])


def test_log_file_receives_json(tmp_path, capsys):
    log_file = tmp_path / "logs" / "cronx.log"

    with pytest.raises(SystemExit):
        cli.main(["--log-format", "text", "--log-file", str(log_file), "* * * * 8", "/bin/true"])

    record = json.loads(log_file.read_text().splitlines()[0])
    assert record["msg"] == "failed to create scheduler"


def start_scheduled_job(tmp_path, sleep_seconds):
    """
    Start ``python -m cronx`` running a job every second.

    Returns the process and the job's "done" marker once the first run has
    started.
    """
    started = tmp_path / "started"
    done = tmp_path / "done"
    script = tmp_path / "job.py"
    script.write_text(
        "import sys, time\n"
        "open(sys.argv[1], 'w').close()\n"
        f"time.sleep({sleep_seconds})\n"
        "open(sys.argv[2], 'w').close()\n"
    )

    env = dict(os.environ, PYTHONPATH=str(REPO_ROOT))
    process = subprocess.Popen(
        [sys.executable, "-m", "cronx", "* * * * * *",
         sys.executable, str(script), str(started), str(done)],
        cwd=str(tmp_path),
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )

    deadline = time.monotonic() + 10
    while not started.exists() and time.monotonic() < deadline:
        time.sleep(0.05)
    assert started.exists()

    return process, done


def log_messages(out):
    return [json.loads(line)["msg"] for line in out.splitlines() if line.startswith("{")]


@pytest.mark.parametrize("signum", [signal.SIGTERM, signal.SIGINT])
def test_signal_waits_for_running_command(tmp_path, signum):
    """End to end: the in-flight run finishes before the process exits 0"""
    process, done = start_scheduled_job(tmp_path, sleep_seconds=1.5)

    process.send_signal(signum)
    out, err = process.communicate(timeout=15)

    assert process.returncode == 0, err
    assert done.exists()

    messages = log_messages(out)
    assert "received signal" in messages
    assert messages[-1] == "scheduler stopped successfully"
    assert messages.index("stopping scheduler") < messages.index("waiting for running jobs to complete")


def test_repeated_signal_during_drain_is_absorbed(tmp_path):
    """A second SIGTERM while waiting for the command does not kill cronx"""
    process, done = start_scheduled_job(tmp_path, sleep_seconds=3)

    process.send_signal(signal.SIGTERM)
    time.sleep(0.5)
    process.send_signal(signal.SIGTERM)
    out, err = process.communicate(timeout=15)

    assert process.returncode == 0, err
    assert done.exists()
    assert log_messages(out)[-1] == "scheduler stopped successfully"
