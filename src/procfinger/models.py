"""Data models for procfinger."""

import math
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from enum import Enum


class ProcessFingerError(Exception):
    """Base class for procfinger errors."""


class CapabilityUnavailable(ProcessFingerError):
    """The mechanism an operation needs is not present on this host."""


class UnparseableOutput(ProcessFingerError, ValueError):
    """A probe succeeded but its output did not match any known shape."""


class TriState(Enum):
    """A boolean that can also be 'cannot determine'."""

    TRUE = "true"
    FALSE = "false"
    UNKNOWN = "unknown"

    def __bool__(self) -> bool:
        return self is TriState.TRUE

    @classmethod
    def from_bool(cls, value: bool | None) -> "TriState":
        if value is None:
            return cls.UNKNOWN
        return cls.TRUE if value else cls.FALSE


@dataclass(slots=True, frozen=True)
class ProcessSnapshot:
    """Point-in-time view of a process. Fields may come from different instants."""

    pid: int
    name: str | None = None
    parent_pid: int | None = None
    memory_rss: int | None = None  # Bytes
    cpu_percent: float | None = None
    script_path: str | None = None
    zombie: bool = False
    children: tuple[int, ...] = ()


_ENV_PREFIX = "PROCFINGER_"


def _env_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(value)


@dataclass(slots=True, frozen=True)
class FingerSettings:
    """Tunables for ProcessFinger."""

    poll_interval: float = 0.1  # Seconds between exists() polls in wait()
    restart_settle: float = 0.1  # Pause before looking for the relaunched child
    script_suffix: str = ".py"
    command_timeout: float | None = None  # None blocks until the command exits
    allow_commands: bool = True

    def __post_init__(self) -> None:
        for name in ("poll_interval", "restart_settle", "command_timeout"):
            value = getattr(self, name)
            if value is not None and not math.isfinite(value):
                raise ValueError(f"{name} must be a finite number")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if self.restart_settle < 0:
            raise ValueError("restart_settle must not be negative")
        if self.command_timeout is not None and self.command_timeout <= 0:
            raise ValueError("command_timeout must be positive or None")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "FingerSettings":
        """
        Build settings from PROCFINGER_* variables.

        Malformed values are ignored and the default is kept.
        """
        environ = os.environ if environ is None else environ
        settings = cls()
        converters = {
            "poll_interval": float,
            "restart_settle": float,
            "script_suffix": str,
            "command_timeout": lambda v: float(v) if v.strip() else None,
            "allow_commands": _env_bool,
        }
        for f in fields(cls):
            raw = environ.get(_ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            try:
                settings = replace(settings, **{f.name: converters[f.name](raw)})
            except ValueError:
                continue
        return settings


@dataclass(slots=True)
class CommandResult:
    """Captured result of one external command."""

    output: str | None = None
    exit_code: int | None = None  # None when the command could not be run at all
    argv: tuple[str, ...] = field(default=(), compare=False)
    pid: int | None = field(default=None, compare=False)  # PID the command itself ran as

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def ran(self) -> bool:
        return self.exit_code is not None
