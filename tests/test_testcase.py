import hashlib

import pytest

from pcroracle.testcase import EvDigest, Testcase, canon_path


@pytest.fixture
def tc(tmp_path):
    with Testcase(tmp_path / "rec") as testcase:
        yield testcase


def test_creates_subdirectories(tmp_path):
    base = tmp_path / "a" / "b"
    Testcase(base).close()
    for name in ("efivars", "images", "gpts", "partitions", "disks"):
        assert (base / name).is_dir()


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/a/./b/../c", "/a/c"),
        ("", "/"),
        ("../..", "/"),
    ],
)
def test_canon_path(path, expected):
    assert canon_path(path) == expected


def test_canon_path_is_idempotent():
    once = canon_path("//boot//efi/./EFI/../grub.cfg")
    assert canon_path(once) == once


def test_canon_path_too_long():
    with pytest.raises(ValueError):
        canon_path("/" + "x" * 5000)


def test_sysfs_round_trip(tc, tmp_path):
    src = tmp_path / "measurements"
    payload = bytes(range(256)) * 50
    src.write_bytes(payload)
    tc.record_sysfs_file(src, "tpm_measurements")
    with tc.playback_sysfs_file("tpm_measurements") as fp:
        assert fp.read() == payload


def test_sysfs_playback_missing(tc):
    with pytest.raises(FileNotFoundError):
        tc.playback_sysfs_file("nothing")


def test_efi_variable_round_trip(tc):
    tc.record_efi_variable("SecureBoot-guid", b"\x01")
    assert tc.playback_efi_variable("SecureBoot-guid") == b"\x01"


def test_efi_variable_missing_is_none(tc):
    assert tc.playback_efi_variable("PK-guid") is None


def test_efi_application_round_trip(tc):
    data = b"MZ" + bytes(100)
    tc.record_efi_application("/dev/sda1", "EFI/BOOT/grub.efi", data)
    assert tc.playback_efi_application("sda1", "EFI/BOOT/grub.efi") == data
    assert (tc.bsa_directory / "sda1" / "EFI" / "BOOT" / "grub.efi").exists()


def test_partition_uuid_round_trip(tc):
    tc.record_partition_uuid("1234-abcd", "/dev/vda2")
    assert tc.playback_partition_uuid("1234-abcd") == "/dev/vda2"


def test_partition_uuid_rerecord_replaces(tc):
    tc.record_partition_uuid("1234-abcd", "/dev/vda2")
    tc.record_partition_uuid("1234-abcd", "/dev/vda3")
    assert tc.playback_partition_uuid("1234-abcd") == "/dev/vda3"


def test_partition_disk_round_trip(tc):
    tc.record_partition_disk("nvme0n1p1", "nvme0n1")
    assert tc.playback_partition_disk("/dev/nvme0n1p1") == "/dev/nvme0n1"


def test_block_dev_round_trip(tc):
    with tc.record_block_dev("/dev/sda") as rec:
        rec.write(512, b"EFI PART")
    with tc.playback_block_dev("/dev/sda") as fp:
        content = fp.read()
    assert content[512:520] == b"EFI PART"
    assert content[:512] == bytes(512)


def test_pcrs_round_trip(tc):
    with tc.record_pcrs("current-pcrs") as fp:
        fp.write("sha256:0 abc\n")
    with tc.playback_pcrs("current-pcrs") as fp:
        assert fp.read() == "sha256:0 abc\n"


def test_rootfs_digest_round_trip(tc):
    value = hashlib.sha256(b"kernel").digest()
    tc.record_rootfs_digest("/boot/./vmlinuz", EvDigest("sha256", value))
    md = tc.playback_rootfs_digest("/boot/vmlinuz", "sha256")
    assert md == EvDigest("sha256", value)
    assert md.size == hashlib.sha256().digest_size


def test_hash_log_line_format(tc):
    value = hashlib.sha256(b"x").digest()
    tc.record_efi_digest("/EFI/BOOT/../grub.efi", EvDigest("sha256", value))
    line = tc.hash_log.read_text().splitlines()[0]
    assert line == f"sha256 {value.hex()} efi /EFI/grub.efi"


def test_digest_class_is_distinguished(tc):
    rootfs = hashlib.sha256(b"a").digest()
    efi = hashlib.sha256(b"b").digest()
    tc.record_rootfs_digest("/x", EvDigest("sha256", rootfs))
    tc.record_efi_digest("/x", EvDigest("sha256", efi))
    assert tc.playback_rootfs_digest("/x", "sha256").data == rootfs
    assert tc.playback_efi_digest("/x", "sha256").data == efi


def test_missing_digest_returns_zeros(tc):
    tc.record_rootfs_digest("/other", EvDigest("sha256", hashlib.sha256().digest()))
    md = tc.playback_rootfs_digest("/missing", "sha256")
    assert md.data == bytes(hashlib.sha256().digest_size)
    assert md.algo == "sha256"


def test_wrong_length_digest_skipped(tc):
    tc.hash_log.write_text("sha256 abcd rootfs /f\n")
    md = tc.playback_rootfs_digest("/f", "sha256")
    assert md.data == bytes(hashlib.sha256().digest_size)


def test_playback_from_existing_log(tmp_path):
    value = hashlib.sha1(b"data").digest()
    with Testcase(tmp_path / "r") as writer:
        writer.record_rootfs_digest("/etc/file", EvDigest("sha1", value))
    with Testcase(tmp_path / "r") as reader:
        assert reader.playback_rootfs_digest("/etc/file", "sha1").data == value


def test_unknown_algorithm(tc):
    with pytest.raises(ValueError):
        tc.playback_rootfs_digest("/f", "no-such-hash")