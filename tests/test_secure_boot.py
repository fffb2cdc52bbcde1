import os

from pcroracle.runtime import Runtime
from pcroracle.secure_boot import SECURE_BOOT_EFIVAR_NAME, secure_boot_enabled


def make_runtime(tmp_path, payload, name=SECURE_BOOT_EFIVAR_NAME):
    efivars = tmp_path / "efivars"
    efivars.mkdir()
    if payload is not None:
        with open(os.path.join(efivars, name), "wb") as fp:
            fp.write(b"\x06\x00\x00\x00" + payload)
    return Runtime(efivars_dir=str(efivars), legacy_efivars_dir=str(tmp_path / "vars"))


def test_enabled(tmp_path):
    assert secure_boot_enabled(make_runtime(tmp_path, b"\x01")) is True


def test_disabled(tmp_path):
    assert secure_boot_enabled(make_runtime(tmp_path, b"\x00")) is False


def test_missing_variable(tmp_path):
    assert secure_boot_enabled(make_runtime(tmp_path, None)) is False


def test_empty_variable(tmp_path):
    assert secure_boot_enabled(make_runtime(tmp_path, b"")) is False


def test_variable_read_under_global_guid_name(tmp_path):
    runtime = make_runtime(
        tmp_path, b"\x01", name="SecureBoot-8be4df61-93ca-11d2-aa0d-00e098032b8c"
    )
    assert secure_boot_enabled(runtime) is True