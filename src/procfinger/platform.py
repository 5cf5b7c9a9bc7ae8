"""Host platform classification for procfinger."""

import os
import sys
from dataclasses import dataclass
from enum import Enum


class Platform(Enum):
    """Behavioral family that decides which mechanism each operation uses."""

    POSIX_NATIVE = "posix-native"
    POSIX_SHELL_ONLY = "posix-shell-only"
    WINDOWS = "windows"


class Kernel(Enum):
    """OS family, used where command shapes differ between POSIX systems."""

    LINUX = "linux"
    DARWIN = "darwin"
    BSD = "bsd"
    WINDOWS = "windows"
    OTHER = "other"


def detect_kernel(sys_platform: str | None = None) -> Kernel:
    """Map a sys.platform string to a Kernel."""
    name = (sys_platform if sys_platform is not None else sys.platform).lower()
    if name.startswith("linux"):
        return Kernel.LINUX
    if name == "darwin":
        return Kernel.DARWIN
    if "bsd" in name or name.startswith("dragonfly"):
        return Kernel.BSD
    if name == "win32":
        return Kernel.WINDOWS
    return Kernel.OTHER


def detect_platform(os_name: str | None = None, has_kill: bool | None = None) -> Platform:
    """
    Classify the host.

    POSIX_NATIVE needs os.kill on a POSIX host. Anything that is neither
    Windows nor POSIX with native signals falls back to POSIX_SHELL_ONLY.
    """
    os_name = os.name if os_name is None else os_name
    has_kill = hasattr(os, "kill") if has_kill is None else has_kill
    if os_name == "nt":
        return Platform.WINDOWS
    if os_name == "posix" and has_kill:
        return Platform.POSIX_NATIVE
    return Platform.POSIX_SHELL_ONLY


@dataclass(slots=True, frozen=True)
class Host:
    """The platform family plus kernel flavour a ProcessFinger runs against."""

    platform: Platform
    kernel: Kernel

    @classmethod
    def current(cls) -> "Host":
        kernel = detect_kernel()
        platform = detect_platform()
        if kernel is Kernel.OTHER and platform is not Platform.WINDOWS:
            platform = Platform.POSIX_SHELL_ONLY
        return cls(platform=platform, kernel=kernel)

    @property
    def is_windows(self) -> bool:
        return self.platform is Platform.WINDOWS

    @property
    def is_posix(self) -> bool:
        return self.platform is not Platform.WINDOWS

    @property
    def is_supported(self) -> bool:
        return self.kernel is not Kernel.OTHER
