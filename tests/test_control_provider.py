"""Tests for the server control provider."""
from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from pglitectl.instance import InstancePaths
from pglitectl.personality import resolve
from pglitectl.providers import control as control_module
from pglitectl.providers.control import ControlError, ServerControl


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class Recorder:
    """Capture ``subprocess.run`` invocations and replay canned results."""

    def __init__(self, *results: DummyResult) -> None:
        """Queue *results*; an empty queue yields successful results."""
        self.results = list(results)
        self.calls: list[dict[str, Any]] = []

    def __call__(self, args: Sequence[str], **kwargs: Any) -> DummyResult:
        self.calls.append({"args": list(args), **kwargs})
        if self.results:
            return self.results.pop(0)
        return DummyResult()

    @property
    def argv(self) -> list[str]:
        return self.calls[-1]["args"]


@pytest.fixture
def paths(tmp_path: Path) -> InstancePaths:
    """Instance paths rooted in the temporary directory."""
    return InstancePaths.from_root(tmp_path / "var")


@pytest.fixture
def provider(paths: InstancePaths) -> ServerControl:
    """Return a postgres provider scoped to the temporary path."""
    return ServerControl(personality=resolve("postgres"), paths=paths, locale="C.UTF-8")


def _install(monkeypatch: pytest.MonkeyPatch, *results: DummyResult) -> Recorder:
    recorder = Recorder(*results)
    monkeypatch.setattr(control_module.subprocess, "run", recorder)
    return recorder


def test_environment_forces_locale(provider: ServerControl) -> None:
    """Every subprocess sees the configured UTF-8 locale."""
    env = provider.environment()
    assert env["LC_ALL"] == "C.UTF-8"
    assert env["LANG"] == "C.UTF-8"


def test_initdb_arguments(
    monkeypatch: pytest.MonkeyPatch,
    provider: ServerControl,
    paths: InstancePaths,
) -> None:
    """initdb creates the cluster with trust auth and the fixed locale."""
    recorder = _install(monkeypatch)

    provider.initdb()

    assert recorder.argv == [
        "initdb",
        "-D",
        str(paths.db),
        "--auth=trust",
        "--locale=C.UTF-8",
        "--encoding=UTF8",
    ]
    assert recorder.calls[0]["capture_output"] is False
    assert recorder.calls[0]["env"]["LC_ALL"] == "C.UTF-8"


def test_start_waits(
    monkeypatch: pytest.MonkeyPatch,
    provider: ServerControl,
    paths: InstancePaths,
) -> None:
    """Start passes the data directory, log file and ``-w``."""
    recorder = _install(monkeypatch)

    provider.start()

    assert recorder.argv == ["pg_ctl", "-D", str(paths.db), "-l", str(paths.log), "-w", "start"]


def test_fast_stop_without_check(
    monkeypatch: pytest.MonkeyPatch,
    provider: ServerControl,
    paths: InstancePaths,
) -> None:
    """A fast stop places ``-m fast`` before the verb and tolerates failure."""
    recorder = _install(monkeypatch, DummyResult(returncode=1, stderr="PID file does not exist"))

    result = provider.stop(mode="fast", check=False)

    assert result.returncode == 1
    assert recorder.argv == [
        "pg_ctl",
        "-D",
        str(paths.db),
        "-l",
        str(paths.log),
        "-w",
        "-m",
        "fast",
        "stop",
    ]


def test_checked_failure_raises_with_returncode(
    monkeypatch: pytest.MonkeyPatch,
    provider: ServerControl,
) -> None:
    """A failing checked command raises ``ControlError`` carrying its exit code."""
    _install(monkeypatch, DummyResult(returncode=1, stderr="could not start server"))

    with pytest.raises(ControlError) as excinfo:
        provider.start()

    assert excinfo.value.returncode == 1
    assert str(excinfo.value) == "pg_ctl start failed (exit 1): could not start server"


def test_missing_binary_is_environment_error(
    monkeypatch: pytest.MonkeyPatch,
    provider: ServerControl,
) -> None:
    """A missing executable maps onto the environment exit code."""

    def missing(args: Sequence[str], **kwargs: Any) -> DummyResult:
        raise FileNotFoundError(2, "No such file or directory", args[0])

    monkeypatch.setattr(control_module.subprocess, "run", missing)

    with pytest.raises(ControlError, match="pg_ctl not found") as excinfo:
        provider.status()
    assert excinfo.value.returncode == 3


@pytest.mark.parametrize(
    ("returncode", "stdout", "expected"),
    [
        (0, "pg_ctl: server is running (PID: 4242)\n/usr/bin/postgres \"-D\" \"db\"\n", True),
        (3, "pg_ctl: no server running\n", False),
        (4, "pg_ctl: directory \"db\" does not exist\n", False),
        (0, "", False),
    ],
)
def test_is_running_parses_status(
    monkeypatch: pytest.MonkeyPatch,
    provider: ServerControl,
    paths: InstancePaths,
    returncode: int,
    stdout: str,
    expected: bool,
) -> None:
    """Only a zero exit with the running marker counts as running."""
    recorder = _install(monkeypatch, DummyResult(returncode=returncode, stdout=stdout))

    assert provider.is_running() is expected
    assert recorder.argv == ["pg_ctl", "-D", str(paths.db), "status"]
    assert recorder.calls[0]["capture_output"] is True


def test_run_passes_extra_arguments(
    monkeypatch: pytest.MonkeyPatch,
    provider: ServerControl,
    paths: InstancePaths,
) -> None:
    """Passthrough arguments follow the verb and stdio is inherited."""
    recorder = _install(monkeypatch, DummyResult(returncode=3))

    result = provider.run("status", ["--silent", "-t", "5"])

    assert result.returncode == 3
    assert recorder.argv == [
        "pg_ctl",
        "-D",
        str(paths.db),
        "-l",
        str(paths.log),
        "status",
        "--silent",
        "-t",
        "5",
    ]
    assert recorder.calls[0]["capture_output"] is False


def test_execute_sql_uses_socket_and_stdin(
    monkeypatch: pytest.MonkeyPatch,
    provider: ServerControl,
    paths: InstancePaths,
) -> None:
    """SQL is fed on stdin to the shell connected over the instance socket."""
    recorder = _install(monkeypatch)

    provider.execute_sql("SELECT 1;")

    assert recorder.argv == [
        "psql",
        "-X",
        "-q",
        "-v",
        "ON_ERROR_STOP=1",
        "-h",
        str(paths.root),
        "-d",
        "template1",
    ]
    assert recorder.calls[0]["input"] == "SELECT 1;"


def test_pipeline_personality_binaries(monkeypatch: pytest.MonkeyPatch, paths: InstancePaths) -> None:
    """The pipeline personality drives its own binaries."""
    provider = ServerControl(personality=resolve("pipeline"), paths=paths)
    recorder = _install(monkeypatch)

    provider.start()
    assert recorder.argv[0] == "pipeline-ctl"
    provider.initdb()
    assert recorder.argv[0] == "pipeline-init"
    provider.execute_sql("SELECT 1;")
    assert recorder.argv[0] == "pipeline"


def test_shell_argv(provider: ServerControl, paths: InstancePaths) -> None:
    """The client session targets the role and database over the socket."""
    argv = provider.shell_argv("lite", "lite", ["-c", "select 1"])

    assert argv == ["psql", "-h", str(paths.root), "-U", "lite", "-d", "lite", "-c", "select 1"]


def test_exec_shell_replaces_process(
    monkeypatch: pytest.MonkeyPatch,
    provider: ServerControl,
) -> None:
    """``exec_shell`` hands argv and the forced environment to ``execvpe``."""
    captured: list[tuple[str, list[str], dict[str, str]]] = []

    def fake_execvpe(file: str, args: list[str], env: dict[str, str]) -> None:
        captured.append((file, args, env))

    monkeypatch.setattr(control_module.os, "execvpe", fake_execvpe)

    provider.exec_shell(["psql", "-h", "/tmp"])

    ((file, args, env),) = captured
    assert file == "psql"
    assert args == ["psql", "-h", "/tmp"]
    assert env["LC_ALL"] == "C.UTF-8"


def test_exec_shell_failure(
    monkeypatch: pytest.MonkeyPatch,
    provider: ServerControl,
) -> None:
    """A shell that cannot be executed raises an environment error."""

    def fake_execvpe(file: str, args: list[str], env: dict[str, str]) -> None:
        raise FileNotFoundError(2, "No such file or directory")

    monkeypatch.setattr(control_module.os, "execvpe", fake_execvpe)

    with pytest.raises(ControlError, match="psql could not be executed") as excinfo:
        provider.exec_shell(["psql"])
    assert excinfo.value.returncode == 3
