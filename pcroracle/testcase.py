"""Recording and playback of the system state a prediction depends on."""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, TextIO

from .util import PATH_MAX

log = logging.getLogger(__name__)

_FIRST_WORD = re.compile(r"[^: ]*")
_HEX_DIGITS = re.compile(r"(?:[0-9a-fA-F]{2})+")


@dataclass(frozen=True)
class EvDigest:
    """A digest value together with the name of the algorithm that produced it."""

    algo: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    def hex(self) -> str:
        return self.data.hex()


def _basename(path: str) -> str:
    return path.rsplit("/", 1)[-1]


def _make_dirs(path: Path) -> None:
    path.mkdir(mode=0o700, parents=True, exist_ok=True)


def _create_file(path: Path) -> BinaryIO:
    _make_dirs(path.parent)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    return os.fdopen(fd, "wb")


def _create_symlink(path: Path, target: str) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    os.symlink(target, path)


def _read_symlink(path: Path, default_dir: str | None) -> str:
    target = os.readlink(path)
    if not target.startswith("/") and default_dir:
        return f"{default_dir}/{target}"
    return target


def canon_path(path: str) -> str:
    """Normalise an absolute path, resolving "." and ".." components lexically."""
    if len(path) >= PATH_MAX:
        raise ValueError(f"path too long ({path})")
    components: list[str] = []
    for comp in path.split("/"):
        if comp in ("", "."):
            continue
        if comp == "..":
            if components:
                components.pop()
        else:
            components.append(comp)
    if not components:
        return "/"
    return "/" + "/".join(components)


def _digest_size(algo: str) -> int:
    try:
        return hashlib.new(algo).digest_size
    except ValueError as exc:
        raise ValueError(f"unknown digest algorithm {algo!r}") from exc


def _split_hash_log_line(line: str) -> list[str]:
    line = line.lstrip(": ")
    first = _FIRST_WORD.match(line)
    words = [first.group()] if first.group() else []
    rest = line[first.end() + 1:]
    words.extend(word for word in rest.split(" ") if word)
    return words


class BlockDevRecording:
    """A sparse file capturing the sectors read from a block device."""

    def __init__(self, name: str, fp: BinaryIO) -> None:
        self.name = name
        self._fp = fp

    def write(self, offset: int, data: bytes) -> None:
        """Store ``data`` at byte ``offset`` of the recording."""
        self._fp.seek(offset)
        self._fp.write(bytes(data))

    def close(self) -> None:
        self._fp.close()

    def __enter__(self) -> BlockDevRecording:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class Testcase:
    """A directory holding a recorded snapshot of firmware and disk state."""

    def __init__(self, base_directory: str | os.PathLike) -> None:
        self.base_directory = Path(base_directory)
        _make_dirs(self.base_directory)
        self.efi_directory = self._make_subdir("efivars")
        self.bsa_directory = self._make_subdir("images")
        self.gpt_directory = self._make_subdir("gpts")
        self.partition_directory = self._make_subdir("partitions")
        self.disk_directory = self._make_subdir("disks")
        self.hash_log = self.base_directory / "hash.log"
        self._hash_log_writer: TextIO | None = None

    def _make_subdir(self, relative: str) -> Path:
        path = self.base_directory / relative
        _make_dirs(path)
        return path

    def close(self) -> None:
        if self._hash_log_writer is not None:
            self._hash_log_writer.close()
            self._hash_log_writer = None

    def __enter__(self) -> Testcase:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # sysfs files

    def record_sysfs_file(self, path: str | os.PathLike, nickname: str) -> None:
        """Copy a sysfs file into the testcase under ``nickname``."""
        with open(path, "rb") as src, _create_file(self.base_directory / nickname) as dst:
            shutil.copyfileobj(src, dst, 8192)

    def playback_sysfs_file(self, nickname: str) -> BinaryIO:
        """Open a recorded sysfs file for reading."""
        return open(self.base_directory / nickname, "rb")

    # EFI variables

    def record_efi_variable(self, name: str, data: bytes) -> None:
        with _create_file(self.efi_directory / name) as fp:
            fp.write(bytes(data))

    def playback_efi_variable(self, name: str) -> bytes | None:
        """Return a recorded EFI variable, or None when it was not recorded."""
        # Systems in setup mode have no PK, KEK or db, yet the event log still
        # refers to them; a missing file is therefore not an error.
        try:
            return (self.efi_directory / name).read_bytes()
        except FileNotFoundError:
            return None

    # EFI applications

    def _application_path(self, partition: str, application: str) -> Path:
        return self.bsa_directory / _basename(partition) / application.lstrip("/")

    def record_efi_application(self, partition: str, application: str, data: bytes) -> None:
        with _create_file(self._application_path(partition, application)) as fp:
            fp.write(bytes(data))

    def playback_efi_application(self, partition: str, application: str) -> bytes:
        return self._application_path(partition, application).read_bytes()

    # partitions and disks

    def record_partition_uuid(self, uuid: str, dev_name: str) -> None:
        if dev_name.startswith("/dev/"):
            dev_name = dev_name[5:]
        _create_symlink(self.partition_directory / uuid, dev_name)

    def playback_partition_uuid(self, uuid: str) -> str:
        return _read_symlink(self.partition_directory / uuid, "/dev")

    def record_partition_disk(self, dev_name: str, disk_name: str) -> None:
        _create_symlink(self.disk_directory / dev_name, disk_name)

    def playback_partition_disk(self, dev_path: str) -> str:
        return _read_symlink(self.disk_directory / _basename(dev_path), "/dev")

    def record_block_dev(self, dev_path: str) -> BlockDevRecording:
        name = _basename(dev_path)
        return BlockDevRecording(name, _create_file(self.gpt_directory / name))

    def playback_block_dev(self, dev_path: str) -> BinaryIO:
        return open(self.gpt_directory / _basename(dev_path), "rb")

    # PCR values

    def record_pcrs(self, name: str) -> TextIO:
        path = self.base_directory / name
        _make_dirs(path.parent)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        return os.fdopen(fd, "w", encoding="utf-8")

    def playback_pcrs(self, name: str) -> TextIO:
        return open(self.base_directory / name, encoding="utf-8")

    # file digests

    def _record_digest(self, klass: str, path: str, md: EvDigest) -> None:
        if self._hash_log_writer is None:
            self._hash_log_writer = open(self.hash_log, "w", encoding="utf-8")
        self._hash_log_writer.write(f"{md.algo} {md.hex()} {klass} {canon_path(path)}\n")
        self._hash_log_writer.flush()

    def _playback_digest(self, klass: str, path: str, algo: str) -> EvDigest:
        size = _digest_size(algo)
        path = canon_path(path)
        if self._hash_log_writer is not None:
            self._hash_log_writer.flush()

        with open(self.hash_log, encoding="utf-8") as fp:
            for line in fp:
                words = _split_hash_log_line(line.rstrip("\r\n"))
                if len(words) != 4:
                    continue
                name, value, entry_klass, entry_path = words
                if name != algo or entry_klass != klass or entry_path != path:
                    continue
                if not _HEX_DIGITS.fullmatch(value) or len(value) // 2 != size:
                    log.error('bad %s digest "%s" - incorrect length', algo, value)
                    continue
                return EvDigest(algo, bytes.fromhex(value))

        log.error("Did not find digest for %s:%s in hash.log - returning all 0 digest", klass, path)
        return EvDigest(algo, bytes(size))

    def record_rootfs_digest(self, path: str, md: EvDigest) -> None:
        self._record_digest("rootfs", path, md)

    def playback_rootfs_digest(self, path: str, algo: str) -> EvDigest:
        return self._playback_digest("rootfs", path, algo)

    def record_efi_digest(self, path: str, md: EvDigest) -> None:
        self._record_digest("efi", path, md)

    def playback_efi_digest(self, path: str, algo: str) -> EvDigest:
        return self._playback_digest("efi", path, algo)