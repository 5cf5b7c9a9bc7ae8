"""Parsers for inventory-command output and /proc blobs."""

import re
from collections.abc import Iterable

from procfinger.models import UnparseableOutput

# Double-quoted, single-quoted, then bare tokens. Alternation order gives the
# quoted groups precedence, so a quoted token is never re-captured as bare.
_POSIX_ARG_RE = re.compile(r'"([^"]*)"|\'([^\']*)\'|(\S+)')
_WINDOWS_ARG_RE = re.compile(r'"([^"]*)"|(\S+)')
_INT_TOKEN_RE = re.compile(r"\d+")
_FLOAT_RE = re.compile(r"^\d+(?:\.\d+)?$")


def _lines(text: str | None) -> list[str]:
    if not text:
        return []
    return [line.strip() for line in text.splitlines() if line.strip()]


def parse_column(text: str | None, header: str | None = None) -> str:
    """
    Return the first value of single-column output.

    A line equal to header (case-insensitive) is treated as the column header and skipped.
    """
    for line in _lines(text):
        if header is not None and line.lower() == header.lower():
            continue
        return line
    raise UnparseableOutput("no value in column output")


def parse_int_column(text: str | None, header: str | None = None) -> int:
    value = parse_column(text, header)
    if not value.isdigit():
        raise UnparseableOutput(f"expected an integer, got {value!r}")
    return int(value)


def parse_float_column(text: str | None, header: str | None = None) -> float:
    value = parse_column(text, header).replace(",", ".")
    if not _FLOAT_RE.match(value):
        raise UnparseableOutput(f"expected a number, got {value!r}")
    return float(value)


def parse_first_int(text: str | None) -> int:
    """Return the first integer token anywhere in text."""
    match = _INT_TOKEN_RE.search(text or "")
    if match is None:
        raise UnparseableOutput("no integer in output")
    return int(match.group(0))


def parse_first_number_line(text: str | None) -> float:
    """Return the first line that is entirely a number."""
    for line in _lines(text):
        if _FLOAT_RE.match(line):
            return float(line)
    raise UnparseableOutput("no numeric line in output")


def parse_pid_lines(text: str | None) -> list[int]:
    """Every digit-only line as a PID, in order. Other lines are skipped."""
    return [int(line) for line in _lines(text) if line.isdigit()]


def contains_pid(text: str | None, pid: int) -> bool:
    """True when pid appears as a whole word on some line of text."""
    pattern = re.compile(r"\b" + re.escape(str(pid)) + r"\b")
    return any(pattern.search(line) for line in _lines(text))


def parse_nul_blob(blob: bytes | None) -> list[str]:
    """
    Split a NUL-separated blob such as /proc/<pid>/cmdline.

    Empty elements, including the trailing one after the final NUL, are dropped.
    """
    if not blob:
        raise UnparseableOutput("empty blob")
    parts = [part.decode("utf-8", errors="replace") for part in blob.split(b"\x00") if part]
    if not parts:
        raise UnparseableOutput("blob holds only separators")
    return parts


def parse_environ(blob: bytes | None) -> dict[str, str]:
    """
    Parse /proc/<pid>/environ into a mapping.

    Each entry splits on the first '=' only. Entries without '=' are skipped.
    When a key repeats, the last occurrence wins.
    """
    env: dict[str, str] = {}
    for entry in parse_nul_blob(blob):
        key, sep, value = entry.partition("=")
        if not sep or not key:
            continue
        env.pop(key, None)
        env[key] = value
    return env


def split_command_line(text: str | None, allow_single_quotes: bool = True) -> list[str]:
    """
    Split a command line as printed by ps or Win32_Process.CommandLine.

    Single quotes only group on POSIX; on Windows they are ordinary characters.
    """
    text = (text or "").strip()
    if not text:
        raise UnparseableOutput("empty command line")
    pattern = _POSIX_ARG_RE if allow_single_quotes else _WINDOWS_ARG_RE
    args = []
    for match in pattern.finditer(text):
        token = next((group for group in match.groups() if group is not None), "")
        if token:
            args.append(token)
    if not args:
        raise UnparseableOutput("no arguments in command line")
    return args


def script_candidates(args: Iterable[str], suffix: str) -> list[str]:
    """Arguments that look like a script path: not a flag, ending with suffix."""
    return [arg for arg in args if arg and not arg.startswith("-") and arg.endswith(suffix)]
