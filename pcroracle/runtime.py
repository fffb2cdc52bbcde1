"""Access to firmware, sysfs and disk state, with optional testcase recording or playback."""

from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass
from typing import BinaryIO, TextIO

from .testcase import BlockDevRecording, EvDigest, Testcase

log = logging.getLogger(__name__)

DEFAULT_SECTOR_SIZE = 512
_CHUNK_SIZE = 65536


def read_file(
    path: str | os.PathLike,
    short_read_ok: bool = False,
    missing_ok: bool = False,
) -> bytes | None:
    """Read a whole file.

    Returns None for a missing file when ``missing_ok`` is set. Unless
    ``short_read_ok`` is set, reading fewer bytes than the file's reported
    size is an error.
    """
    try:
        with open(path, "rb") as fp:
            expected = os.fstat(fp.fileno()).st_size
            data = fp.read()
    except FileNotFoundError:
        if missing_ok:
            return None
        raise
    if not short_read_ok and len(data) < expected:
        raise OSError(f"{path}: short read ({len(data)} of {expected} bytes)")
    return data


def write_file(path: str | os.PathLike, data: bytes) -> None:
    """Write ``data`` to ``path``, replacing its contents."""
    with open(path, "wb") as fp:
        fp.write(bytes(data))


def _digest_file(algo: str, path: str | os.PathLike) -> EvDigest:
    try:
        hasher = hashlib.new(algo)
    except ValueError as exc:
        raise ValueError(f"unknown digest algorithm {algo!r}") from exc
    with open(path, "rb") as fp:
        for chunk in iter(lambda: fp.read(_CHUNK_SIZE), b""):
            hasher.update(chunk)
    return EvDigest(algo, hasher.digest())


class BlockDevice:
    """A block device opened for reading whole sectors."""

    def __init__(
        self,
        fp: BinaryIO,
        sector_size: int = DEFAULT_SECTOR_SIZE,
        recording: BlockDevRecording | None = None,
    ) -> None:
        self._fp = fp
        self.sector_size = sector_size
        self._recording = recording

    def bytes_to_sectors(self, size: int) -> int:
        """Return the number of sectors needed to hold ``size`` bytes."""
        return (size + self.sector_size - 1) // self.sector_size

    def read_lba(self, block: int, count: int) -> bytes:
        """Read ``count`` sectors starting at logical block ``block``."""
        offset = block * self.sector_size
        wanted = count * self.sector_size
        self._fp.seek(offset)
        data = self._fp.read(wanted)
        if len(data) < wanted:
            raise OSError(f"block dev read: short read ({len(data)} of {wanted} bytes)")
        if self._recording is not None:
            self._recording.write(offset, data)
        return data

    def close(self) -> None:
        self._fp.close()
        if self._recording is not None:
            self._recording.close()
            self._recording = None

    def __enter__(self) -> BlockDevice:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


@dataclass
class Runtime:
    """The running system, or a testcase standing in for it."""

    efivars_dir: str = "/sys/firmware/efi/efivars"
    legacy_efivars_dir: str = "/sys/firmware/efi/vars"
    eventlog_path: str = "/sys/kernel/security/tpm0/binary_bios_measurements"
    ima_path: str = "/sys/kernel/security/integrity/ima/ascii_runtime_measurements"
    efi_mount: str = "/boot/efi"
    sys_class_block: str = "/sys/class/block"
    partuuid_dir: str = "/dev/disk/by-partuuid"
    recording: Testcase | None = None
    playback: Testcase | None = None

    def record_testcase(self, tc: Testcase) -> None:
        """Record everything read from the system into ``tc``."""
        log.debug("Starting testcase recording")
        self.recording = tc

    def replay_testcase(self, tc: Testcase) -> None:
        """Answer all requests from the recorded testcase ``tc``."""
        log.debug("Starting testcase playback")
        self.playback = tc

    def _open_sysfs_file(self, sysfs_path: str, nickname: str) -> BinaryIO:
        if self.playback is not None:
            return self.playback.playback_sysfs_file(nickname)
        fp = open(sysfs_path, "rb")
        if self.recording is not None:
            self.recording.record_sysfs_file(sysfs_path, nickname)
        return fp

    def open_eventlog(self, override_path: str | None = None) -> BinaryIO:
        """Open the TPM event log, or the file given by ``override_path``."""
        path = override_path or self.eventlog_path
        try:
            return self._open_sysfs_file(path, "tpm_measurements")
        except OSError as exc:
            log.error("Unable to open TPM event log %s: %s", path, exc)
            raise

    def open_ima_measurements(self) -> BinaryIO:
        """Open the IMA runtime measurement list."""
        return self._open_sysfs_file(self.ima_path, "ima_measurements")

    def read_efi_variable(self, var_name: str) -> bytes | None:
        """Return the data of an EFI variable, or None if it cannot be read."""
        if self.playback is not None:
            return self.playback.playback_efi_variable(var_name)

        result = read_file(
            os.path.join(self.efivars_dir, var_name), short_read_ok=True, missing_ok=True
        )
        if result is not None:
            # the efivarfs file starts with 4 bytes of variable attributes
            result = result[4:]
        else:
            result = read_file(
                os.path.join(self.legacy_efivars_dir, var_name, "data"),
                short_read_ok=True,
                missing_ok=True,
            )

        if result is None:
            log.debug('Unable to read EFI variable "%s"', var_name)
        elif self.recording is not None:
            self.recording.record_efi_variable(var_name, result)
        return result

    def digest_efi_file(self, algo: str, path: str) -> EvDigest:
        """Digest a file on the EFI system partition, given its path there."""
        if self.playback is not None:
            return self.playback.playback_efi_digest(path, algo)
        md = _digest_file(algo, f"{self.efi_mount}{path}")
        if self.recording is not None:
            self.recording.record_efi_digest(path, md)
        return md

    def digest_rootfs_file(self, algo: str, path: str) -> EvDigest:
        """Digest a file on the root file system."""
        if self.playback is not None:
            return self.playback.playback_rootfs_digest(path, algo)
        md = _digest_file(algo, path)
        if self.recording is not None:
            self.recording.record_rootfs_digest(path, md)
        return md

    def disk_for_partition(self, part_dev: str) -> str:
        """Return the disk device, e.g. ``/dev/nvme0n1``, holding a partition."""
        if self.playback is not None:
            return self.playback.playback_partition_disk(part_dev)

        part_name = part_dev.rsplit("/", 1)[-1]
        sys_block = os.path.join(self.sys_class_block, part_name)
        try:
            target = os.readlink(sys_block)
        except OSError as exc:
            log.error("Error when reading the link of %s: %s", sys_block, exc)
            raise

        parent = target.rsplit("/", 1)[0]
        disk_name = parent.rsplit("/", 1)[-1]

        if self.recording is not None:
            self.recording.record_partition_disk(part_name, disk_name)
        return f"/dev/{disk_name}"

    def blockdev_by_partuuid(self, uuid: str) -> str | None:
        """Return the device node of the partition with this UUID, or None."""
        if self.playback is not None:
            return self.playback.playback_partition_uuid(uuid)
        try:
            dev_name = os.path.realpath(os.path.join(self.partuuid_dir, uuid), strict=True)
        except OSError:
            return None
        if self.recording is not None:
            self.recording.record_partition_uuid(uuid, dev_name)
        return dev_name

    def blockdev_open(self, dev: str) -> BlockDevice:
        """Open a block device for sector reads."""
        if self.playback is not None:
            fp = self.playback.playback_block_dev(dev)
        else:
            fp = open(dev, "rb")
        recording = self.recording.record_block_dev(dev) if self.recording is not None else None
        return BlockDevice(fp, DEFAULT_SECTOR_SIZE, recording)

    def maybe_record_pcrs(self) -> TextIO | None:
        """Return a stream to record current PCR values into, when recording."""
        if self.recording is not None:
            return self.recording.record_pcrs("current-pcrs")
        return None

    def maybe_playback_pcrs(self) -> TextIO | None:
        """Return a stream of recorded PCR values, when playing back."""
        if self.playback is not None:
            return self.playback.playback_pcrs("current-pcrs")
        return None