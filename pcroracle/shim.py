"""Names of the EFI variables that shim mirrors at runtime."""

from __future__ import annotations

SHIM_EFIVAR_GUID = "605dab50-e046-4300-abb6-3dd810dd8b23"

_RUNTIME_NAMES = {
    "MokList": "MokListRT",
    "MokListX": "MokListXRT",
    "MokSBState": "MokSBStateRT",
    "MokDBState": "MokIgnoreDB",
    "MokListTrusted": "MokListTrustedRT",
    "MokPolicy": "MokPolicyRT",
    "SbatLevel": "SbatLevelRT",
}


def shim_variable_name_valid(name: str) -> bool:
    """Tell whether ``name`` is a variable known to shim."""
    return name in _RUNTIME_NAMES


def shim_variable_get_rtname(name: str) -> str | None:
    """Return the runtime name of a shim variable, or None if unknown."""
    return _RUNTIME_NAMES.get(name)


def shim_variable_get_full_rtname(name: str) -> str | None:
    """Return the runtime name with shim's vendor GUID appended, or None if unknown."""
    rtname = _RUNTIME_NAMES.get(name)
    if rtname is None:
        return None
    return f"{rtname}-{SHIM_EFIVAR_GUID}"