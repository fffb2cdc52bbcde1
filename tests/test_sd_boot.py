import base64
import json

import pytest

from pcroracle.sd_boot import (
    SystemIdentity,
    is_boot_entry,
    policy_file_add_entry,
    read_os_release,
)
from pcroracle.util import parse_pcr_mask


@pytest.fixture
def os_release(tmp_path):
    path = tmp_path / "os-release"
    path.write_text(
        'NAME="openSUSE Tumbleweed"\n'
        'ID_LIKE="suse"\n'
        'ID = "opensuse-tumbleweed"\n'
        'IMAGE_ID="img"\n'
        "VERSION_ID=20230101\n"
        'BROKEN="unterminated\n'
    )
    return path


def test_read_os_release_values(os_release):
    assert read_os_release(os_release, "ID") == "opensuse-tumbleweed"
    assert read_os_release(os_release, "IMAGE_ID") == "img"
    assert read_os_release(os_release, "NAME") == "openSUSE Tumbleweed"


def test_read_os_release_rejects_unquoted_and_unterminated(os_release):
    assert read_os_release(os_release, "VERSION_ID") is None
    assert read_os_release(os_release, "BROKEN") is None
    assert read_os_release(os_release, "MISSING") is None


def test_read_os_release_missing_file(tmp_path):
    assert read_os_release(tmp_path / "nope", "ID") is None


def test_is_boot_entry():
    assert is_boot_entry("/loader/entries/foo.conf")
    assert not is_boot_entry("/EFI/BOOT/bootx64.efi")
    assert not is_boot_entry(None)


@pytest.fixture
def identity(tmp_path):
    (tmp_path / "entry-token").write_text("opensuse\n")
    (tmp_path / "machine-id").write_text("mid\n")
    (tmp_path / "os-release").write_text('ID="suse"\nIMAGE_ID="img"\n')
    entries = tmp_path / "entries"
    entries.mkdir()
    for name, version in [("opensuse-6.1", "6.1"), ("opensuse-6.2", "6.2"), ("other-7.0", "7.0")]:
        (entries / f"{name}.conf").write_text(f"version {version}\nmachine-id mid\n")
    return SystemIdentity(
        entry_token_path=str(tmp_path / "entry-token"),
        machine_id_path=str(tmp_path / "machine-id"),
        os_release_path=str(tmp_path / "os-release"),
        boot_entry_dir=str(entries),
    )


def test_entry_tokens_order(identity):
    assert list(identity.entry_tokens()) == ["opensuse", "mid", "suse", "img"]
    assert identity.entry_tokens() is identity.entry_tokens()


def test_is_kernel_and_initrd(identity):
    assert identity.is_kernel("/opensuse/6.1.0/linux-abc")
    assert not identity.is_kernel("/fedora/6.1.0/linux-abc")
    assert not identity.is_kernel("/opensuse/6.1.0/initrd-abc")
    assert identity.is_initrd("/mid/6.1.0/initrd-abc")
    assert not identity.is_initrd(None)


def test_identify_auto(identity):
    assert identity.identify_boot_entry(None).version == "6.2"
    assert identity.identify_boot_entry("AUTO").version == "6.2"


def test_identify_exact_and_prefix(identity):
    assert identity.identify_boot_entry("opensuse-6.1").version == "6.1"
    assert identity.identify_boot_entry("other").version == "7.0"
    assert identity.identify_boot_entry("nothing") is None


def test_identify_without_machine_id(tmp_path, identity):
    identity.machine_id_path = str(tmp_path / "no-machine-id")
    assert identity.identify_boot_entry("other") is None


def _add(path, policy, mask="0,2,7", fingerprint=b"\x01\x02", signature=b"sig-bytes"):
    policy_file_add_entry(path, "name", "sha256", parse_pcr_mask(mask), fingerprint, policy, signature)
    return json.loads(path.read_text())


def test_policy_file_new(tmp_path):
    path = tmp_path / "policy.json"
    doc = _add(path, b"\xab\xcd")
    entry = doc["sha256"][0]
    assert entry["pol"] == "abcd"
    assert entry["pcrs"] == [0, 2, 7]
    assert entry["pkfp"] == "0102"
    assert base64.b64decode(entry["sig"]) == b"sig-bytes"


def test_policy_file_update_and_append(tmp_path):
    path = tmp_path / "policy.json"
    _add(path, b"\xab\xcd")
    doc = _add(path, b"\xab\xcd", mask="4")
    assert len(doc["sha256"]) == 1
    assert doc["sha256"][0]["pcrs"] == [4]
    doc = _add(path, b"\x12\x34")
    assert [e["pol"] for e in doc["sha256"]] == ["abcd", "1234"]


def test_policy_file_matches_case_insensitively(tmp_path):
    path = tmp_path / "policy.json"
    path.write_text(json.dumps({"sha256": [{"pol": "ABCD", "extra": 1}]}))
    doc = _add(path, b"\xab\xcd")
    assert len(doc["sha256"]) == 1
    assert doc["sha256"][0]["extra"] == 1


@pytest.mark.parametrize("content", ['{"sha256": {}}', "[]", "not json"])
def test_policy_file_bad_content(tmp_path, content):
    path = tmp_path / "policy.json"
    path.write_text(content)
    with pytest.raises(ValueError):
        _add(path, b"\xab")