"""Shared fakes and fixtures for procfinger tests."""

import os
import shutil
import subprocess
import sys
import threading

import pytest

from procfinger.finger import ProcessFinger
from procfinger.models import CapabilityUnavailable, CommandResult, FingerSettings
from procfinger.platform import Host, Kernel, Platform
from procfinger.probe import SignalKind

LINUX = Host(Platform.POSIX_NATIVE, Kernel.LINUX)
LINUX_SHELL_ONLY = Host(Platform.POSIX_SHELL_ONLY, Kernel.LINUX)
DARWIN = Host(Platform.POSIX_NATIVE, Kernel.DARWIN)
WINDOWS = Host(Platform.WINDOWS, Kernel.WINDOWS)
UNKNOWN_OS = Host(Platform.POSIX_SHELL_ONLY, Kernel.OTHER)

FAST = FingerSettings(poll_interval=0.01, restart_settle=0)


def ps_supports_pid_columns() -> bool:
    """Whether the host `ps` understands `-p PID -o col=` (BusyBox does not)."""
    if shutil.which("ps") is None:
        return False
    me = str(os.getpid())
    completed = subprocess.run(
        ["ps", "-p", me, "-o", "pid="], capture_output=True, text=True, check=False
    )
    return completed.returncode == 0 and me in completed.stdout.split()


def ok(output: str, exit_code: int = 0, pid: int | None = None) -> CommandResult:
    """A command that ran and printed output."""
    return CommandResult(output=output or None, exit_code=exit_code, pid=pid)


class FakeRunner:
    """Command runner that answers from a table and records every call."""

    def __init__(self, responses: dict | None = None, launch_pid: int | None = None) -> None:
        self.responses = {tuple(k): v for k, v in (responses or {}).items()}
        self.calls: list[tuple[str, ...]] = []
        self.launched: list[tuple[str, ...]] = []
        self.launch_pid = launch_pid

    def run(self, argv, merge_stderr: bool = False) -> CommandResult:
        argv = tuple(argv)
        self.calls.append(argv)
        # Unlisted commands behave like a missing binary
        return self.responses.get(argv, CommandResult(argv=argv))

    def launch(self, argv) -> int | None:
        self.launched.append(tuple(argv))
        return self.launch_pid


class FakeSignals:
    """Native signal capability backed by a set of live PIDs."""

    def __init__(
        self,
        alive=(),
        euid: int | None = 1000,
        deliver: bool = True,
        script: list[bool] | None = None,
        unavailable: bool = False,
    ) -> None:
        self.alive = set(alive)
        self.euid = euid
        self.deliver = deliver
        self.script = list(script or [])
        self.unavailable = unavailable
        self.probes: list[int] = []
        self.sent: list[tuple[int, SignalKind]] = []

    def probe(self, pid: int) -> bool:
        if self.unavailable:
            raise CapabilityUnavailable("no os.kill")
        self.probes.append(pid)
        if self.script:
            return self.script.pop(0)
        return pid in self.alive

    def send(self, pid: int, kind: SignalKind) -> bool:
        self.sent.append((pid, kind))
        if self.deliver:
            self.alive.discard(pid)
        return self.deliver

    def effective_uid(self) -> int | None:
        return self.euid


def linux_process(
    pid: int,
    name: str = "python3",
    ppid: int = 1,
    rss_kib: int = 2048,
    cpu: str = "0.0",
    stat: str = "S",
    children: tuple[int, ...] = (),
) -> dict:
    """Canned ps answers describing one Linux process."""

    def ps(column: str) -> tuple[str, ...]:
        return ("ps", "-p", str(pid), "-o", f"{column}=")

    return {
        ps("comm"): ok(f"{name}\n"),
        ps("ppid"): ok(f"{ppid:>6}\n"),
        ps("rss"): ok(f"{rss_kib:>6}\n"),
        ps("%cpu"): ok(f" {cpu}\n"),
        ps("stat"): ok(f"{stat}\n"),
        ("ps", "-o", "pid=", "--ppid", str(pid)): ok("".join(f"{c:>6}\n" for c in children)),
    }


@pytest.fixture
def make_finger(tmp_path):
    """Build a ProcessFinger on a fixed host with fake collaborators."""

    def _make(host=LINUX, responses=None, signals=None, settings=FAST, launch_pid=None):
        runner = FakeRunner(responses, launch_pid=launch_pid)
        signals = signals if signals is not None else FakeSignals()
        finger = ProcessFinger(
            host=host,
            runner=runner,
            signals=signals,
            settings=settings,
            proc_root=tmp_path / "proc",
        )
        return finger, runner, signals

    return _make


@pytest.fixture
def spawn_sleeper():
    """Spawn real sleeping children that are reaped as soon as they exit."""
    processes: list[subprocess.Popen] = []

    def _spawn(seconds: float = 30.0, env: dict | None = None, args: list[str] | None = None):
        argv = args or [sys.executable, "-c", f"import time; time.sleep({seconds})"]
        process = subprocess.Popen(argv, env=env)
        threading.Thread(target=process.wait, daemon=True).start()
        processes.append(process)
        return process

    yield _spawn

    for process in processes:
        if process.poll() is None:
            process.kill()
    for process in processes:
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            pass
