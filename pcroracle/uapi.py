"""UAPI boot loader entries: parsing, matching and version ordering."""

from __future__ import annotations

import logging
import os
import platform
import string
from dataclasses import dataclass, field
from pathlib import Path

from .util import path_has_file_extension

log = logging.getLogger(__name__)

UAPI_BOOT_DIRECTORY_EFI = "/loader/entries"
UAPI_BOOT_DIRECTORY = "/boot/efi" + UAPI_BOOT_DIRECTORY_EFI
MAX_ENTRY_TOKENS = 8

_ENTRY_KEYS = {
    "sort-key": "sort_key",
    "machine-id": "machine_id",
    "version": "version",
    "options": "options",
    "linux": "image_path",
    "initrd": "initrd_path",
}

_LETTERS = frozenset(string.ascii_letters)
_DIGITS = frozenset(string.digits)
_SEPARATORS = "~-^."
_VALID = _LETTERS | _DIGITS | frozenset(_SEPARATORS)


def _sign(x, y) -> int:
    return (x > y) - (x < y)


@dataclass
class BootEntry:
    """A boot loader entry as described by a UAPI ``.conf`` file."""

    title: str | None = None
    efi: bool = False
    sort_key: str | None = None
    version: str | None = None
    machine_id: str | None = None
    architecture: str | None = None
    image_path: str | None = None
    initrd_path: str | None = None
    options: str | None = None

    def applies(self, machine_id: str | None, architecture: str | None) -> bool:
        """Tell whether the entry is usable for this machine and architecture."""
        if self.machine_id and machine_id and self.machine_id != machine_id:
            return False
        if self.architecture and architecture and self.architecture != architecture:
            return False
        return True

    def more_recent(self, other: BootEntry) -> bool:
        """Tell whether this entry is better than ``other``."""
        r = _sign(self.sort_key or "", other.sort_key or "")
        if r == 0:
            r = vercmp(self.version or "", other.version or "")
        return r > 0


@dataclass
class EntryTokens:
    """A short list of entry tokens used to select boot entry files."""

    tokens: list[str] = field(default_factory=list)

    def add(self, token: str | None) -> None:
        """Append a token; None is ignored."""
        if token is None:
            return
        if len(self.tokens) >= MAX_ENTRY_TOKENS:
            raise ValueError("too many entry tokens")
        self.tokens.append(token)

    def match_filename(self, filename: str) -> bool:
        """Tell whether ``filename`` starts with a token followed by end, '-' or '.'."""
        for token in self.tokens:
            if filename.startswith(token) and filename[len(token):len(token) + 1] in ("", "-", "."):
                return True
        return False

    def __len__(self) -> int:
        return len(self.tokens)

    def __iter__(self):
        return iter(self.tokens)


def load_boot_entry(path: str | os.PathLike) -> BootEntry:
    """Parse a boot entry file; raises OSError if it cannot be read."""
    values: dict[str, str | None] = {}
    with open(path, encoding="utf-8", errors="replace") as fp:
        for line in fp:
            if not line[:1] or line[0] not in _LETTERS:
                continue
            parts = line.rstrip().split(None, 1)
            key = parts[0]
            value = parts[1] if len(parts) > 1 else None
            attr = _ENTRY_KEYS.get(key)
            if attr is not None:
                values[attr] = value
    return BootEntry(**values)


def _char_at(text: str, index: int) -> str:
    return text[index] if index < len(text) else ""


def _span(text: str, index: int, charset: frozenset) -> int:
    while index < len(text) and text[index] in charset:
        index += 1
    return index


def vercmp(a: str, b: str) -> int:
    """Compare two version strings; the sign of the result orders them."""
    i = j = 0
    while True:
        while i < len(a) and a[i] not in _VALID:
            i += 1
        while j < len(b) and b[j] not in _VALID:
            j += 1

        if i >= len(a) or j >= len(b):
            return _sign(_char_at(a, i), _char_at(b, j))

        for sep in _SEPARATORS:
            ca, cb = _char_at(a, i), _char_at(b, j)
            if ca == sep or cb == sep:
                r = _sign(ca != sep, cb != sep)
                if r:
                    return r
                i += 1
                j += 1

        ca, cb = _char_at(a, i), _char_at(b, j)
        if ca in _DIGITS or cb in _DIGITS:
            end_a = _span(a, i, _DIGITS)
            end_b = _span(b, j, _DIGITS)
            r = _sign(end_a != i, end_b != j)
            if r:
                return r
            r = _sign(int(a[i:end_a]), int(b[j:end_b]))
            if r:
                return r
        else:
            end_a = _span(a, i, _LETTERS)
            end_b = _span(b, j, _LETTERS)
            n = min(end_a - i, end_b - j)
            r = _sign(a[i:i + n], b[j:j + n])
            if r:
                return r
            r = _sign(end_a - i, end_b - j)
            if r:
                return r

        i, j = end_a, end_b


def find_matching_boot_entry(
    dir_path: str | os.PathLike,
    match: EntryTokens | None,
    machine_id: str | None,
    architecture: str | None,
) -> BootEntry | None:
    """Return the most recent applicable entry in ``dir_path``, or None."""
    try:
        with os.scandir(dir_path) as it:
            dirents = sorted(it, key=lambda d: d.name)
    except FileNotFoundError:
        return None
    except OSError as exc:
        log.error("Cannot open %s for reading: %s", dir_path, exc)
        return None

    best: BootEntry | None = None
    for dirent in dirents:
        if not dirent.is_file(follow_symlinks=False):
            continue
        if match is not None and not match.match_filename(dirent.name):
            continue
        config_path = Path(dir_path) / dirent.name
        try:
            entry = load_boot_entry(config_path)
        except OSError:
            log.warning('Unable to process UAPI boot entry file at "%s"', config_path)
            continue
        if entry.applies(machine_id, architecture):
            if best is None or entry.more_recent(best):
                best = entry
    return best


def get_boot_entry(entry_id: str, directory: str | os.PathLike = UAPI_BOOT_DIRECTORY) -> BootEntry | None:
    """Load the entry named exactly by ``entry_id``, with or without ``.conf``."""
    name = entry_id if path_has_file_extension(entry_id, ".conf") else f"{entry_id}.conf"
    path = Path(directory) / name
    if not os.access(path, os.R_OK):
        return None
    try:
        return load_boot_entry(path)
    except OSError as exc:
        log.error("Unable to open %s: %s", path, exc)
        return None


def find_boot_entry(
    match: EntryTokens | None,
    machine_id: str | None,
    directory: str | os.PathLike = UAPI_BOOT_DIRECTORY,
) -> BootEntry | None:
    """Find the best entry for this machine among the files in ``directory``."""
    architecture = platform.machine() or None
    return find_matching_boot_entry(directory, match, machine_id, architecture)