"""Secure Boot state as reported by the firmware."""

from __future__ import annotations

from .runtime import Runtime

SECURE_BOOT_EFIVAR_NAME = "SecureBoot-8be4df61-93ca-11d2-aa0d-00e098032b8c"


def secure_boot_enabled(runtime: Runtime | None = None) -> bool:
    """Tell whether the SecureBoot EFI variable says Secure Boot is on."""
    runtime = runtime if runtime is not None else Runtime()
    data = runtime.read_efi_variable(SECURE_BOOT_EFIVAR_NAME)
    if not data:
        return False
    return data[0] == 1