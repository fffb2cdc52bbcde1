"""systemd-boot support: entry tokens, boot entry lookup and the signed policy file."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field

from .uapi import (
    UAPI_BOOT_DIRECTORY,
    UAPI_BOOT_DIRECTORY_EFI,
    BootEntry,
    EntryTokens,
    find_boot_entry,
    get_boot_entry,
)
from .util import PCR_COUNT, print_base64_value, print_hex_string, read_single_line_file

log = logging.getLogger(__name__)

_C_WHITESPACE = " \t\n\v\f\r"
_OS_RELEASE_VALUE_MAX = 127


def read_os_release(path: str | os.PathLike, key: str) -> str | None:
    """Return the double-quoted value of ``key`` in an os-release file, or None."""
    try:
        with open(path, encoding="utf-8", errors="replace") as fp:
            lines = fp.readlines()
    except OSError as exc:
        log.error("Cannot open %s: %s", path, exc)
        return None

    for line in lines:
        if not line.startswith(key):
            continue
        rest = line[len(key):].lstrip(_C_WHITESPACE)
        if not rest.startswith("="):
            continue
        rest = rest[1:].lstrip(_C_WHITESPACE)
        if not rest.startswith('"'):
            continue
        value, quote, _ = rest[1:].partition('"')
        if not quote or len(value) > _OS_RELEASE_VALUE_MAX:
            continue
        return value
    return None


def is_boot_entry(application: str | None) -> bool:
    """Tell whether a path lies in the boot loader entries directory."""
    if not application:
        return False
    return application.startswith(UAPI_BOOT_DIRECTORY_EFI)


@dataclass
class SystemIdentity:
    """The identifiers of the installed system that name its kernels."""

    entry_token_path: str = "/etc/kernel/entry-token"
    machine_id_path: str = "/etc/machine-id"
    os_release_path: str = "/etc/os-release"
    boot_entry_dir: str = UAPI_BOOT_DIRECTORY
    _tokens: EntryTokens | None = field(default=None, init=False, repr=False)

    def _machine_id(self) -> str | None:
        return read_single_line_file(self.machine_id_path)

    def entry_tokens(self) -> EntryTokens:
        """Return the valid entry tokens, read once and then cached."""
        if self._tokens is not None and len(self._tokens):
            return self._tokens
        tokens = EntryTokens()
        tokens.add(read_single_line_file(self.entry_token_path))
        tokens.add(self._machine_id())
        tokens.add(read_os_release(self.os_release_path, "ID"))
        tokens.add(read_os_release(self.os_release_path, "IMAGE_ID"))
        self._tokens = tokens
        return tokens

    def _has_entry_token(self, application: str | None, prefix: str) -> bool:
        if not application:
            return False
        tokens = self.entry_tokens()
        found = 0
        for component in filter(None, application.split("/")):
            for token in tokens:
                if component == token:
                    found |= 1
                elif component.startswith(prefix):
                    found |= 2
        return found == 3

    def is_kernel(self, application: str | None) -> bool:
        """Tell whether a path names a kernel installed under an entry token."""
        return self._has_entry_token(application, "linux-")

    def is_initrd(self, application: str | None) -> bool:
        """Tell whether a path names an initrd installed under an entry token."""
        return self._has_entry_token(application, "initrd-")

    def identify_boot_entry(self, entry_id: str | None = None) -> BootEntry | None:
        """Find the boot entry named by ``entry_id``, or the best one when it is None or "auto"."""
        if entry_id is None or entry_id.lower() == "auto":
            match = self.entry_tokens()
        else:
            result = get_boot_entry(entry_id, self.boot_entry_dir)
            if result is not None:
                return result
            match = EntryTokens()
            match.add(entry_id)

        machine_id = self._machine_id()
        if machine_id is None:
            return None
        return find_boot_entry(match, machine_id, self.boot_entry_dir)


def _find_or_create_entry(bank: list, policy: bytes) -> dict:
    formatted = bytes(policy).hex()
    for entry in bank:
        if not isinstance(entry, dict):
            continue
        entry_policy = entry.get("pol")
        if not isinstance(entry_policy, str):
            continue
        if entry_policy.lower() == formatted:
            return entry
    entry = {"pol": formatted}
    bank.append(entry)
    return entry


def policy_file_add_entry(
    filename: str | os.PathLike,
    policy_name: str | None,
    algo_name: str,
    pcr_mask: int,
    fingerprint: bytes,
    policy: bytes,
    signature: bytes,
) -> None:
    """Add or update a signed policy entry in a systemd PCR signature JSON file."""
    try:
        with open(filename, encoding="utf-8") as fp:
            text = fp.read()
    except FileNotFoundError:
        doc: object = {}
    else:
        try:
            doc = json.loads(text)
        except ValueError as exc:
            raise ValueError(f"{filename}: unable to read json file: {exc}") from exc
        if not isinstance(doc, dict):
            raise ValueError(f"{filename}: not a valid json file")

    bank = doc.get(algo_name)
    if bank is None:
        bank = []
        doc[algo_name] = bank
    elif not isinstance(bank, list):
        raise ValueError(f"{filename}: unexpected type for {algo_name}")

    entry = _find_or_create_entry(bank, policy)
    entry["pcrs"] = [index for index in range(PCR_COUNT) if pcr_mask & (1 << index)]
    entry["pkfp"] = print_hex_string(fingerprint)
    entry["sig"] = print_base64_value(signature)

    with open(filename, "w", encoding="utf-8") as fp:
        json.dump(doc, fp, indent=2)