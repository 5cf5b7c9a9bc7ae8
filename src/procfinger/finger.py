"""
Cross-platform process inspection and control.

ProcessFinger picks, per operation, between native signals, the /proc
pseudo-filesystem and external inventory commands (ps, pgrep, wmic, tasklist,
taskkill), parses what comes back and degrades to None, TriState.UNKNOWN,
False or an empty list instead of raising. PIDs <= 0 are rejected before any
probe runs.

PID reuse is not detected: a PID checked in one call may name a different
process in the next.
"""

import logging
import os
import shlex
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TypeVar

from procfinger.models import (
    CapabilityUnavailable,
    FingerSettings,
    ProcessSnapshot,
    TriState,
    UnparseableOutput,
)
from procfinger.parsers import (
    contains_pid,
    parse_column,
    parse_environ,
    parse_first_int,
    parse_first_number_line,
    parse_float_column,
    parse_int_column,
    parse_nul_blob,
    parse_pid_lines,
    script_candidates,
    split_command_line,
)
from procfinger.platform import Host, Kernel, Platform
from procfinger.probe import CommandRunner, NativeSignals, SignalKind

logger = logging.getLogger("procfinger.finger")

T = TypeVar("T")

_ACCESS_DENIED = "access is denied"


class ProcessFinger:
    """
    Inspect and control processes on the current host.

    Every public method is synchronous, keeps no state between calls and is
    safe to call from several threads at once.
    """

    def __init__(
        self,
        host: Host | None = None,
        runner: CommandRunner | None = None,
        signals: NativeSignals | None = None,
        settings: FingerSettings | None = None,
        proc_root: str | os.PathLike = "/proc",
    ) -> None:
        """
        Initialize the ProcessFinger.

        Args:
            host: Platform to behave as. Defaults to the running host.
            runner: Executes inventory commands. Defaults to a subprocess runner.
            signals: Native signal capability, used on POSIX_NATIVE hosts.
            settings: Polling, restart and command tunables.
            proc_root: Where the /proc pseudo-filesystem is mounted.
        """
        self.settings = settings or FingerSettings()
        self.host = host or Host.current()
        self._runner = runner or CommandRunner(
            enabled=self.settings.allow_commands,
            timeout=self.settings.command_timeout,
        )
        self._signals = signals or NativeSignals()
        self._proc_root = Path(proc_root)

    # Helpers

    def _target(self, pid: int | None) -> int | None:
        """Resolve a default PID and reject invalid ones."""
        if pid is None:
            pid = self.get_current_id()
        if pid <= 0:
            return None
        return int(pid)

    def _query(self, argv: Sequence[str]) -> str | None:
        return self._runner.run(argv).output

    def _ps(self, pid: int, column: str) -> str | None:
        return self._query(["ps", "-p", str(pid), "-o", f"{column}="])

    def _wmic_process(self, pid: int, column: str) -> str | None:
        return self._query(["wmic", "process", "where", f"ProcessId={pid}", "get", column])

    @staticmethod
    def _parse(parser: Callable[..., T], raw, what: str, pid: int, *args) -> T | None:
        try:
            return parser(raw, *args)
        except UnparseableOutput as exc:
            logger.debug("No %s for PID %d: %s", what, pid, exc)
            return None

    # Identity and lineage

    def get_current_id(self) -> int:
        """Return the calling process's own PID."""
        return os.getpid()

    def get_parent_id(self, pid: int | None = None) -> int | None:
        """Return the parent PID, or None when it cannot be determined."""
        pid = self._target(pid)
        if pid is None or not self.host.is_supported:
            return None

        if self.host.is_windows:
            ppid = self._parse(
                parse_first_int, self._wmic_process(pid, "ParentProcessId"), "parent", pid
            )
        else:
            ppid = self._parse(parse_int_column, self._ps(pid, "ppid"), "parent", pid)

        if ppid is None or ppid <= 0:
            return None
        return ppid

    def list_children(self, pid: int | None = None) -> list[int]:
        """
        Return the PIDs whose parent is pid (default: the current process).

        The result is empty, never None, when nothing is found or the host
        cannot answer. The inventory command itself is never reported.
        """
        pid = self._target(pid)
        if pid is None or not self.host.is_supported:
            return []

        if self.host.is_windows:
            argv = ["wmic", "process", "where", f"ParentProcessId={pid}", "get", "ProcessId"]
        elif self.host.kernel is Kernel.LINUX:
            argv = ["ps", "-o", "pid=", "--ppid", str(pid)]
        else:
            argv = ["pgrep", "-P", str(pid)]

        result = self._runner.run(argv)
        return [child for child in parse_pid_lines(result.output) if child != result.pid]

    def get_process_name(self, pid: int | None = None) -> str | None:
        """Return the process (command) name."""
        pid = self._target(pid)
        if pid is None or not self.host.is_supported:
            return None

        if self.host.is_windows:
            return self._parse(parse_column, self._wmic_process(pid, "Name"), "name", pid, "Name")
        return self._parse(parse_column, self._ps(pid, "comm"), "name", pid)

    def get_script_path(self, pid: int | None = None) -> str | None:
        """
        Return the absolute path of the script a process is running.

        The first argument that is not a flag, ends with settings.script_suffix
        and names an existing file wins.
        """
        pid = self._target(pid)
        if pid is None or not self.host.is_supported:
            return None

        if self.host.kernel is Kernel.LINUX:
            return self._linux_script_path(pid)

        if self.host.is_windows:
            command_line = self._query(
                [
                    "powershell",
                    "-NoProfile",
                    "-Command",
                    f"(Get-CimInstance Win32_Process -Filter 'ProcessId={pid}').CommandLine",
                ]
            )
            args = self._parse(split_command_line, command_line, "command line", pid, False)
        else:
            args = self._parse(
                split_command_line, self._ps(pid, "command"), "command line", pid, True
            )

        if not args:
            return None
        for candidate in script_candidates(args, self.settings.script_suffix):
            if os.path.isfile(candidate):
                return os.path.realpath(candidate)
        return None

    def _linux_script_path(self, pid: int) -> str | None:
        base = self._proc_root / str(pid)
        try:
            blob = (base / "cmdline").read_bytes()
        except OSError as exc:
            logger.debug("Cannot read cmdline of PID %d: %s", pid, exc)
            return None

        args = self._parse(parse_nul_blob, blob, "cmdline", pid)
        if not args:
            return None

        try:
            cwd = os.readlink(base / "cwd")
        except OSError:
            cwd = None

        for candidate in script_candidates(args, self.settings.script_suffix):
            if os.path.isfile(candidate):
                return os.path.realpath(candidate)
            if cwd and os.path.isfile(os.path.join(cwd, candidate)):
                return os.path.realpath(os.path.join(cwd, candidate))
        return None

    # State checkers

    def exists(self, pid: int) -> TriState:
        """
        Check whether a process exists.

        Uses a zero signal where native signals are available, otherwise an
        inventory command whose output must name the PID as a whole word.
        UNKNOWN means neither mechanism could answer.
        """
        if pid <= 0:
            return TriState.FALSE
        if not self.host.is_supported:
            return TriState.UNKNOWN

        if self.host.platform is Platform.POSIX_NATIVE:
            try:
                return TriState.from_bool(self._signals.probe(pid))
            except (CapabilityUnavailable, OSError) as exc:
                logger.debug("Native probe failed for PID %d, using inventory: %s", pid, exc)

        if self.host.is_windows:
            result = self._runner.run(["tasklist", "/FI", f"PID eq {pid}"])
        else:
            result = self._runner.run(["ps", "-p", str(pid), "-o", "pid="])

        if not result.ran:
            return TriState.UNKNOWN
        return TriState.from_bool(contains_pid(result.output, pid))

    def is_running_as_root(self) -> bool:
        """
        Check whether the current process has superuser/administrator rights.

        On Windows only an explicit 'Access is denied' from `net session`
        counts as unprivileged. Any other outcome, command failure included,
        is reported as elevated.
        """
        if self.host.is_windows:
            result = self._runner.run(["net", "session"], merge_stderr=True)
            if result.output and _ACCESS_DENIED in result.output.lower():
                return False
            if not result.ok:
                logger.warning(
                    "net session gave no verdict (exit %s); assuming elevated", result.exit_code
                )
            return True

        if not self.host.is_supported:
            return False
        return self._signals.effective_uid() == 0

    def is_zombie(self, pid: int) -> bool:
        """True iff ps reports the zombie state. Missing processes are not zombies."""
        if pid <= 0 or self.host.is_windows or not self.host.is_supported:
            return False

        state = self._parse(parse_column, self._ps(pid, "stat"), "state", pid)
        if state is None:
            return False
        return "Z" in state

    # Resources

    def get_memory_usage(self, pid: int | None = None) -> int | None:
        """Return resident memory in bytes."""
        pid = self._target(pid)
        if pid is None or not self.host.is_supported:
            return None

        if self.host.is_windows:
            return self._parse(
                parse_first_int, self._wmic_process(pid, "WorkingSetSize"), "memory", pid
            )

        rss_kib = self._parse(parse_int_column, self._ps(pid, "rss"), "memory", pid)
        return None if rss_kib is None else rss_kib * 1024

    def get_cpu_usage(self, pid: int | None = None) -> float | None:
        """
        Return the OS's own point-in-time CPU percent for a process.

        This is not sampled over an interval; precision depends on the platform.
        """
        pid = self._target(pid)
        if pid is None or not self.host.is_supported:
            return None

        if self.host.is_windows:
            output = self._query(
                [
                    "wmic",
                    "path",
                    "Win32_PerfFormattedData_PerfProc_Process",
                    "where",
                    f"IDProcess={pid}",
                    "get",
                    "PercentProcessorTime",
                ]
            )
            return self._parse(parse_first_number_line, output, "cpu", pid)
        return self._parse(parse_float_column, self._ps(pid, "%cpu"), "cpu", pid)

    def get_process_env(self, pid: int | None = None) -> dict[str, str] | None:
        """
        Return a process's environment from /proc/<pid>/environ.

        None on Windows, and when the file is missing or not readable by us.
        """
        pid = self._target(pid)
        if pid is None or self.host.is_windows or not self.host.is_supported:
            return None

        try:
            blob = (self._proc_root / str(pid) / "environ").read_bytes()
        except OSError as exc:
            logger.debug("Cannot read environ of PID %d: %s", pid, exc)
            return None
        return self._parse(parse_environ, blob, "environment", pid)

    def snapshot(self, pid: int | None = None) -> ProcessSnapshot | None:
        """Collect every field for a process. None if it is known not to exist."""
        pid = self._target(pid)
        if pid is None or self.exists(pid) is TriState.FALSE:
            return None

        return ProcessSnapshot(
            pid=pid,
            name=self.get_process_name(pid),
            parent_pid=self.get_parent_id(pid),
            memory_rss=self.get_memory_usage(pid),
            cpu_percent=self.get_cpu_usage(pid),
            script_path=self.get_script_path(pid),
            zombie=self.is_zombie(pid),
            children=tuple(self.list_children(pid)),
        )

    # Lifecycle

    def kill(self, pid: int, force: bool = True) -> bool:
        """
        Terminate a process.

        With native signals the PID is probed first so an already-dead process
        reports False. On Windows taskkill must exit with status 0.
        """
        if pid <= 0 or not self.host.is_supported:
            return False

        if self.host.platform is Platform.POSIX_NATIVE:
            kind = SignalKind.KILL if force else SignalKind.TERMINATE
            try:
                if not self._signals.probe(pid):
                    logger.debug("PID %d is not running, nothing to kill", pid)
                    return False
                delivered = self._signals.send(pid, kind)
            except (CapabilityUnavailable, OSError) as exc:
                logger.warning("Could not signal PID %d: %s", pid, exc)
                return False
            if not delivered:
                logger.warning("Signal %s was not delivered to PID %d", kind.value, pid)
            return delivered

        if self.host.is_windows:
            argv = ["taskkill", "/PID", str(pid)]
            if force:
                argv.append("/F")
            result = self._runner.run(argv)
            if not result.ok:
                logger.warning("taskkill for PID %d exited with %s", pid, result.exit_code)
            return result.ok

        return False

    def wait(self, pid: int, timeout: float = 0) -> bool:
        """
        Block until a process is gone.

        Polls exists() every settings.poll_interval seconds. Both FALSE and
        UNKNOWN end the wait. A timeout of 0 waits forever.

        Returns:
            True if the process stopped being observable before the timeout.
        """
        if pid <= 0:
            return False

        interval = self.settings.poll_interval
        deadline = time.monotonic() + timeout if timeout > 0 else None
        while True:
            if self.exists(pid) is not TriState.TRUE:
                return True
            if deadline is None:
                time.sleep(interval)
                continue
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            time.sleep(min(interval, remaining))

    def restart(self, pid: int, command: str | Sequence[str], force: bool = True) -> int | None:
        """
        Kill a process and launch command in its place.

        The new PID is a best guess: the launched PID if it shows up among the
        current process's children, otherwise the first child found.

        Returns:
            The presumed new PID. None if the kill or the launch failed, or if
            the command was launched but no child PID could be found for it.
        """
        if pid <= 0:
            return None
        argv = self._command_argv(command)
        if not argv:
            return None

        if not self.kill(pid, force):
            logger.warning("Not restarting PID %d: it could not be killed", pid)
            return None

        launched = self._runner.launch(argv)
        if launched is None:
            logger.warning("Killed PID %d but could not launch %s", pid, argv[0])
            return None

        if self.settings.restart_settle:
            time.sleep(self.settings.restart_settle)

        children = self.list_children(self.get_current_id())
        if launched in children:
            return launched
        return children[0] if children else None

    def _command_argv(self, command: str | Sequence[str]) -> list[str]:
        if not isinstance(command, str):
            return [str(arg) for arg in command]
        if not command.strip():
            return []
        if self.host.is_windows:
            try:
                return split_command_line(command, allow_single_quotes=False)
            except UnparseableOutput:
                return []
        try:
            return shlex.split(command)
        except ValueError as exc:
            logger.warning("Cannot parse restart command %r: %s", command, exc)
            return []
