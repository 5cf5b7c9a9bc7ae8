"""Tests for the command runner and native signalling."""

import os
import sys
import time

import pytest

from procfinger.models import CapabilityUnavailable
from procfinger.probe import CommandRunner, NativeSignals, SignalKind

posix_only = pytest.mark.skipif(os.name != "posix", reason="POSIX signals required")


class TestCommandRunner:
    """Tests for CommandRunner."""

    def test_captures_stdout_and_exit_code(self):
        result = CommandRunner().run([sys.executable, "-c", "print('hello')"])
        assert result.ok
        assert result.output.strip() == "hello"
        assert isinstance(result.pid, int)

    def test_nonzero_exit(self):
        result = CommandRunner().run([sys.executable, "-c", "import sys; sys.exit(3)"])
        assert result.ran
        assert result.exit_code == 3
        assert result.output is None

    def test_stderr_is_dropped_unless_merged(self):
        argv = [sys.executable, "-c", "import sys; sys.stderr.write('denied')"]
        assert CommandRunner().run(argv).output is None
        assert "denied" in CommandRunner().run(argv, merge_stderr=True).output

    def test_missing_binary_is_no_information(self):
        result = CommandRunner().run(["procfinger-no-such-binary-xyz"])
        assert not result.ran
        assert result.output is None

    def test_disabled_runner_never_starts_anything(self):
        runner = CommandRunner(enabled=False)
        result = runner.run([sys.executable, "-c", "print('x')"])
        assert not result.ran
        assert runner.launch([sys.executable, "-c", "pass"]) is None

    def test_timeout_is_no_information(self):
        runner = CommandRunner(timeout=0.2)
        result = runner.run([sys.executable, "-c", "import time; time.sleep(5)"])
        assert not result.ran

    def test_launch_returns_pid(self):
        pid = CommandRunner().launch([sys.executable, "-c", "pass"])
        assert isinstance(pid, int) and pid > 0

    @posix_only
    def test_launched_process_is_reaped_after_exit(self):
        pid = CommandRunner().launch([sys.executable, "-c", "pass"])
        signals = NativeSignals()
        deadline = time.monotonic() + 10
        while signals.probe(pid) and time.monotonic() < deadline:
            time.sleep(0.05)
        assert signals.probe(pid) is False

    def test_launch_missing_binary(self):
        assert CommandRunner().launch(["procfinger-no-such-binary-xyz"]) is None


@posix_only
class TestNativeSignals:
    """Tests for NativeSignals on a POSIX host."""

    def test_probe_self(self):
        assert NativeSignals().probe(os.getpid()) is True

    def test_probe_via_send(self):
        assert NativeSignals().send(os.getpid(), SignalKind.PROBE) is True

    def test_probe_reaped_child(self, spawn_sleeper):
        process = spawn_sleeper(0)
        process.wait(timeout=10)
        assert NativeSignals().probe(process.pid) is False

    def test_send_terminate(self, spawn_sleeper):
        process = spawn_sleeper(30)
        assert NativeSignals().send(process.pid, SignalKind.TERMINATE) is True
        process.wait(timeout=10)
        assert NativeSignals().send(process.pid, SignalKind.KILL) is False

    def test_effective_uid(self):
        assert NativeSignals().effective_uid() == os.geteuid()


def test_unavailable_capability_raises(monkeypatch):
    monkeypatch.setattr(NativeSignals, "available", property(lambda self: False))
    with pytest.raises(CapabilityUnavailable):
        NativeSignals().probe(os.getpid())
    with pytest.raises(CapabilityUnavailable):
        NativeSignals().send(os.getpid(), SignalKind.TERMINATE)
