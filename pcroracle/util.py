"""Parsing and formatting helpers: PCR masks, hex strings, versions and paths."""

from __future__ import annotations

import base64
import logging
import re
import time
from typing import Callable

log = logging.getLogger(__name__)

PATH_MAX = 4096
PCR_COUNT = 32
ALL_PCRS = (1 << PCR_COUNT) - 1

_NUMBER = re.compile(r"[0-9]+")
_HEX = re.compile(r"[0-9a-fA-F]*")
_MAX_VERSION_PARTS = 16


def parse_pcr_index(word: str) -> int:
    """Parse a decimal PCR index."""
    if not _NUMBER.fullmatch(word):
        raise ValueError(f"Unable to parse PCR index {word!r}")
    return int(word)


def _with_pcr(mask: int, index: int) -> int:
    if index >= PCR_COUNT:
        raise ValueError(f"PCR index {index} out of range")
    return mask | (1 << index)


def parse_pcr_mask(word: str) -> int:
    """Parse a PCR list such as ``"0-7,9"`` or ``"all"`` into a bit mask."""
    if word == "all":
        return ALL_PCRS

    mask = 0
    pos = 0
    while pos < len(word):
        match = _NUMBER.match(word, pos)
        if match is None:
            raise ValueError(f"Unable to parse PCR mask {word!r}")
        value = int(match.group())
        pos = match.end()

        if word.startswith("-", pos):
            upper = _NUMBER.match(word, pos + 1)
            if upper is not None:
                last = int(upper.group())
                pos = upper.end()
                while value < last:
                    mask = _with_pcr(mask, value)
                    value += 1

        mask = _with_pcr(mask, value)
        while word.startswith(",", pos):
            pos += 1
    return mask


def print_pcr_mask(mask: int) -> str:
    """Format a PCR bit mask as a compact list of indices and ranges."""
    parts = []
    index = 0
    while index < PCR_COUNT:
        if mask & (1 << index):
            start = index
            while index < PCR_COUNT - 1 and mask & (1 << (index + 1)):
                index += 1
            parts.append(f"{start}-{index}" if index > start else str(index))
        index += 1
    return ",".join(parts)


def parse_octet_string(string: str) -> bytes:
    """Parse a string of hex digit pairs into bytes."""
    if not _HEX.fullmatch(string):
        raise ValueError(f"bad octet string {string!r}")
    if len(string) % 2:
        raise ValueError(f"octet string {string!r} has odd length")
    return bytes.fromhex(string)


def print_octet_string(data: bytes) -> str:
    """Format short data as colon separated hex octets."""
    if len(data) < 32:
        return ":".join(f"{octet:02x}" for octet in data)
    return f"<{len(data)} bytes of data>"


def print_hex_string(data: bytes) -> str:
    """Format up to 64 bytes as a plain hex string."""
    if len(data) <= 64:
        return bytes(data).hex()
    return f"<{len(data)} bytes of data>"


def print_base64_value(data: bytes) -> str:
    """Encode data as padded standard base64."""
    return base64.b64encode(bytes(data)).decode("ascii")


def hexdump(data: bytes, print_fn: Callable[[str], object] = print, indent: int = 0) -> None:
    """Emit a hex and ASCII dump, 32 bytes per line, through ``print_fn``."""
    data = bytes(data)
    for offset in range(0, len(data), 32):
        chunk = data[offset:offset + 32]
        octets = "".join(f" {octet:02x}" for octet in chunk).ljust(96)
        text = "".join(chr(octet) if 0x21 <= octet <= 0x7E else "." for octet in chunk)
        print_fn(f"{' ' * indent}{offset:04x} {octets} {text}")


def convert_from_utf16le(data: bytes) -> str:
    """Decode UTF-16LE bytes, as used in EFI event logs."""
    return bytes(data).decode("utf-16-le")


def convert_to_utf16le(text: str) -> bytes:
    """Encode text as UTF-16LE."""
    return text.encode("utf-16-le")


_timing_origin: float | None = None


def _relative_timing() -> float:
    global _timing_origin
    now = time.monotonic()
    if _timing_origin is None:
        _timing_origin = now
    return now - _timing_origin


def timing_begin() -> float:
    """Return a timestamp for later use with :func:`timing_since`."""
    return _relative_timing()


def timing_since(since: float) -> float:
    """Return the seconds elapsed since a :func:`timing_begin` timestamp."""
    return _relative_timing() - since


def _parse_version(string: str) -> list[int]:
    numbers: list[int] = []
    for part in filter(None, string.split(".")):
        if not _NUMBER.fullmatch(part) or len(numbers) >= _MAX_VERSION_PARTS:
            log.warning("unable to parse complete version string %r", string)
            break
        numbers.append(int(part))
    return numbers


def version_string_compare(ver_a: str, ver_b: str) -> int:
    """Compare dotted numeric versions; return -1, 0 or 1."""
    a = _parse_version(ver_a)
    b = _parse_version(ver_b)
    for x, y in zip(a, b):
        if x != y:
            return -1 if x < y else 1
    return (len(a) > len(b)) - (len(a) < len(b))


def _check_path_length(path: str) -> None:
    if len(path) >= PATH_MAX:
        raise ValueError(f"path {path!r} too long")


def path_unix2dos(path: str) -> str:
    """Replace forward slashes with backslashes."""
    _check_path_length(path)
    return path.replace("/", "\\")


def path_dos2unix(path: str) -> str:
    """Replace backslashes with forward slashes."""
    _check_path_length(path)
    return path.replace("\\", "/")


def path_has_file_extension(path: str, suffix: str) -> bool:
    """Tell whether ``path`` ends in ``.suffix``, ignoring case."""
    if suffix.startswith("."):
        suffix = suffix[1:]
    n = len(path) - len(suffix)
    if n <= 0 or path[n - 1] != ".":
        return False
    return path[n:].lower() == suffix.lower()


def read_single_line_file(path: str) -> str | None:
    """Return the first line of a file without its newline, or None if unreadable."""
    try:
        with open(path, encoding="utf-8", errors="replace", newline="") as fp:
            line = fp.readline()
    except OSError as exc:
        log.debug("Cannot open %s: %s", path, exc)
        return None
    return line.split("\n", 1)[0]