"""External command execution and native signalling for procfinger."""

import logging
import os
import signal
import subprocess
import threading
from collections.abc import Sequence
from enum import Enum

from procfinger.models import CapabilityUnavailable, CommandResult

logger = logging.getLogger("procfinger.probe")


class SignalKind(Enum):
    """Signals ProcessFinger knows how to deliver."""

    PROBE = "probe"
    TERMINATE = "terminate"
    KILL = "kill"


class CommandRunner:
    """
    Runs inventory commands and captures their standard output.

    Every failure (execution disabled, missing binary, timeout, OS error) is
    reported as a CommandResult without output or exit code; nothing is raised.
    """

    def __init__(self, enabled: bool = True, timeout: float | None = None) -> None:
        """
        Initialize the CommandRunner.

        Args:
            enabled: When False, no command is ever started (execution disabled by policy).
            timeout: Seconds to wait for a command before giving up. None waits forever.
        """
        self._enabled = enabled
        self._timeout = timeout

    @property
    def enabled(self) -> bool:
        return self._enabled

    def run(self, argv: Sequence[str], merge_stderr: bool = False) -> CommandResult:
        """
        Run argv to completion and capture stdout as text.

        Args:
            argv: Program and arguments. Never passed through a shell.
            merge_stderr: Capture stderr into the same output (like 2>&1).
        """
        argv = tuple(argv)
        if not self._enabled or not argv:
            logger.debug("Command execution disabled, skipping %s", argv[:1])
            return CommandResult(argv=argv)

        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if merge_stderr else subprocess.DEVNULL,
                text=True,
                errors="replace",
            )
        except (OSError, ValueError) as exc:
            logger.debug("Command could not be started: %s (%s)", argv, exc)
            return CommandResult(argv=argv)

        with process:
            try:
                stdout, _ = process.communicate(timeout=self._timeout)
            except subprocess.TimeoutExpired:
                process.kill()
                process.communicate()
                logger.debug("Command timed out after %ss: %s", self._timeout, argv)
                return CommandResult(argv=argv, pid=process.pid)

        logger.debug("Command %s exited with %d", argv, process.returncode)
        return CommandResult(
            output=stdout or None,
            exit_code=process.returncode,
            argv=argv,
            pid=process.pid,
        )

    def launch(self, argv: Sequence[str]) -> int | None:
        """
        Start argv detached from our stdio and return its PID without waiting.

        Returns None when the process could not be started.
        """
        argv = tuple(argv)
        if not self._enabled or not argv:
            return None

        kwargs: dict = {
            "stdin": subprocess.DEVNULL,
            "stdout": subprocess.DEVNULL,
            "stderr": subprocess.DEVNULL,
        }
        if os.name == "nt":
            kwargs["creationflags"] = (
                subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
            )
        else:
            kwargs["start_new_session"] = True

        try:
            process = subprocess.Popen(argv, **kwargs)
        except (OSError, ValueError) as exc:
            logger.warning("Could not launch %s: %s", argv, exc)
            return None

        # Callers only see the PID; the child is reaped here
        threading.Thread(
            target=process.wait, daemon=True, name=f"reap-{process.pid}"
        ).start()
        logger.debug("Launched %s as PID %d", argv, process.pid)
        return process.pid


class NativeSignals:
    """
    POSIX signal delivery and effective-uid lookup through the os module.

    Raises CapabilityUnavailable when the running interpreter lacks the primitive.
    """

    _SIGNALS = {
        SignalKind.PROBE: 0,
        SignalKind.TERMINATE: signal.SIGTERM,
        SignalKind.KILL: getattr(signal, "SIGKILL", signal.SIGTERM),
    }

    @property
    def available(self) -> bool:
        return os.name == "posix" and hasattr(os, "kill")

    def probe(self, pid: int) -> bool:
        """Zero-signal existence check. A permission error still proves the PID is live."""
        if not self.available:
            raise CapabilityUnavailable("os.kill is not available")
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    def send(self, pid: int, kind: SignalKind) -> bool:
        """Deliver a signal; False when the process is gone or not ours to signal."""
        if kind is SignalKind.PROBE:
            return self.probe(pid)
        if not self.available:
            raise CapabilityUnavailable("os.kill is not available")
        try:
            os.kill(pid, self._SIGNALS[kind])
        except (ProcessLookupError, PermissionError):
            return False
        return True

    def effective_uid(self) -> int | None:
        geteuid = getattr(os, "geteuid", None)
        if geteuid is None:
            return None
        return geteuid()
