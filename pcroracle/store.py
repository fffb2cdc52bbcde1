"""Key files named on the command line, in PEM or TPM native format."""

from __future__ import annotations

import enum
import logging
import os

from .rsa import RsaKey, TpmRsaPublic, read_private_key, read_public_key
from .runtime import read_file, write_file
from .util import path_has_file_extension

log = logging.getLogger(__name__)


class StoredKeyError(Exception):
    """Raised when a stored key cannot be read or written in its format."""


class KeyFormat(enum.Enum):
    PEM = 1
    NATIVE = 2

    @property
    def label(self) -> str:
        return "PEM" if self is KeyFormat.PEM else "native"


def _format_name(fmt: KeyFormat | None) -> str:
    return fmt.label if fmt is not None else "<unknown>"


class StoredKey:
    """A key file together with its format and whether it holds a private key."""

    def __init__(
        self,
        pathname: str | os.PathLike,
        is_private: bool = False,
        fmt: KeyFormat | None = None,
    ) -> None:
        self.is_private = is_private
        self.format: KeyFormat | None = None
        self.path = ""
        self.set_path(pathname)
        if self.format is None and fmt is not None:
            self.set_format(fmt)

    def set_format(self, fmt: KeyFormat) -> None:
        """Set the format; a conflicting format already set is an error."""
        if self.format is not None and self.format != fmt:
            raise StoredKeyError(
                f"Ambiguous key format for {self.path}: "
                f"{_format_name(self.format)} vs {_format_name(fmt)}"
            )
        self.format = fmt

    def set_path(self, pathname: str | os.PathLike) -> None:
        """Set the path; a "pem:" or "native:" prefix or a .pem extension sets the format."""
        if pathname is None:
            raise StoredKeyError("pathname is None")
        pathname = os.fspath(pathname)
        lowered = pathname.lower()
        if lowered.startswith("pem:"):
            self.path = pathname[4:]
            self.set_format(KeyFormat.PEM)
        elif lowered.startswith("native:"):
            self.path = pathname[7:]
            self.set_format(KeyFormat.NATIVE)
        else:
            self.path = pathname
            if path_has_file_extension(pathname, "pem"):
                self.set_format(KeyFormat.PEM)

    def read_rsa_private(self) -> RsaKey:
        if self.format is KeyFormat.PEM:
            return read_private_key(self.path)
        raise StoredKeyError(
            f'Unable to read RSA private key from file "{self.path}": unsupported format'
        )

    def write_rsa_private(self, key: RsaKey) -> None:
        if not self.is_private:
            raise StoredKeyError(
                f'Refusing to write RSA private key to file "{self.path}": '
                "file is supposed to contain public key"
            )
        if self.format is KeyFormat.PEM:
            key.write_private(self.path)
            return
        raise StoredKeyError(
            f'Unable to write RSA private key to file "{self.path}": unsupported format'
        )

    def read_rsa_public(self) -> RsaKey:
        """Read the public key; a private key file is read whole."""
        log.debug(
            "Trying to read RSA public key from %s file %s",
            "private" if self.is_private else "public",
            self.path,
        )
        if self.is_private:
            return self.read_rsa_private()
        if self.format is KeyFormat.PEM:
            return read_public_key(self.path)
        if self.format is KeyFormat.NATIVE:
            raise StoredKeyError(
                f'Unable to read RSA public key from native file "{self.path}": '
                "automatic conversion not implemented"
            )
        raise StoredKeyError(
            f'Unable to read RSA public key from file "{self.path}": unsupported format'
        )

    def write_rsa_public(self, key: RsaKey) -> None:
        """Write the public key, converting it to the TPM structure for native files."""
        if self.format is KeyFormat.PEM:
            key.write_public(self.path)
            return
        if self.format is KeyFormat.NATIVE:
            write_file(self.path, key.to_tpm_public().marshal())
            return
        raise StoredKeyError(
            f'Unable to write RSA public key to file "{self.path}": unsupported format'
        )

    def read_native_public(self) -> TpmRsaPublic:
        """Read the key as a TPM public key structure, converting PEM keys."""
        log.debug(
            "Trying to read TPM formatted public key from %s file %s",
            "private" if self.is_private else "public",
            self.path,
        )
        if self.format is KeyFormat.NATIVE:
            return TpmRsaPublic.unmarshal(read_file(self.path))
        if self.format is KeyFormat.PEM:
            return self.read_rsa_public().to_tpm_public()
        raise StoredKeyError(
            f'Unable to read native TPM public key from file "{self.path}": unsupported format'
        )

    def write_native_public(self, native_key: TpmRsaPublic) -> None:
        """Write a TPM public key structure to a native file."""
        if self.format is KeyFormat.NATIVE:
            write_file(self.path, native_key.marshal())
            return
        if self.format is KeyFormat.PEM:
            raise StoredKeyError(
                f'Unable to write native public key to PEM file "{self.path}": '
                "automatic conversion not implemented"
            )
        raise StoredKeyError(
            f'Unable to write native TPM public key to file "{self.path}": unsupported format'
        )


def new_public_key(fmt: KeyFormat | None, pathname: str | os.PathLike) -> StoredKey:
    """Describe a file that holds a public key."""
    return StoredKey(pathname, is_private=False, fmt=fmt)


def new_private_key(fmt: KeyFormat | None, pathname: str | os.PathLike) -> StoredKey:
    """Describe a file that holds a private key."""
    return StoredKey(pathname, is_private=True, fmt=fmt)