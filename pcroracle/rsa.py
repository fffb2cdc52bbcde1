"""RSA keys in PEM files and their conversion to the TPM public key structure."""

from __future__ import annotations

import hashlib
import logging
import os
import struct
from dataclasses import dataclass

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .testcase import EvDigest

log = logging.getLogger(__name__)

TPM2_ALG_RSA = 0x0001
TPM2_ALG_SHA256 = 0x000B
TPM2_ALG_NULL = 0x0010
TPM2_ALG_RSAES = 0x0015

TPMA_OBJECT_USERWITHAUTH = 0x00000040
TPMA_OBJECT_DECRYPT = 0x00020000
TPMA_OBJECT_SIGN_ENCRYPT = 0x00040000
DEFAULT_OBJECT_ATTRIBUTES = TPMA_OBJECT_DECRYPT | TPMA_OBJECT_SIGN_ENCRYPT | TPMA_OBJECT_USERWITHAUTH

SUPPORTED_KEY_BITS = (1024, 2048, 3072, 4096)
RSA_F4 = 65537
_EXPONENT_BYTES = 4
GENERATED_KEY_PATH = "<generated>"


class RsaKeyError(Exception):
    """Raised when an RSA key cannot be read, written, converted or used."""


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self.pos = 0

    def take(self, count: int) -> bytes:
        if self.pos + count > len(self._data):
            raise RsaKeyError("truncated TPM public key structure")
        chunk = self._data[self.pos:self.pos + count]
        self.pos += count
        return chunk

    def u16(self) -> int:
        return struct.unpack(">H", self.take(2))[0]

    def u32(self) -> int:
        return struct.unpack(">I", self.take(4))[0]

    def sized(self) -> bytes:
        return self.take(self.u16())

    @property
    def remaining(self) -> int:
        return len(self._data) - self.pos


def _sized(data: bytes) -> bytes:
    return struct.pack(">H", len(data)) + data


@dataclass(frozen=True)
class TpmRsaPublic:
    """An RSA public key in the form the TPM expects (TPM2B_PUBLIC)."""

    key_bits: int
    exponent: int
    modulus: bytes
    name_alg: int = TPM2_ALG_SHA256
    object_attributes: int = DEFAULT_OBJECT_ATTRIBUTES
    auth_policy: bytes = b""
    symmetric_algorithm: int = TPM2_ALG_NULL
    symmetric_key_bits: int = 0
    symmetric_mode: int = TPM2_ALG_NULL
    scheme: int = TPM2_ALG_NULL
    scheme_hash: int = TPM2_ALG_NULL

    def _marshal_area(self) -> bytes:
        out = bytearray()
        out += struct.pack(">HHI", TPM2_ALG_RSA, self.name_alg, self.object_attributes)
        out += _sized(self.auth_policy)
        out += struct.pack(">H", self.symmetric_algorithm)
        if self.symmetric_algorithm != TPM2_ALG_NULL:
            out += struct.pack(">HH", self.symmetric_key_bits, self.symmetric_mode)
        out += struct.pack(">H", self.scheme)
        if self.scheme not in (TPM2_ALG_NULL, TPM2_ALG_RSAES):
            out += struct.pack(">H", self.scheme_hash)
        out += struct.pack(">HI", self.key_bits, self.exponent)
        out += _sized(self.modulus)
        return bytes(out)

    def marshal(self) -> bytes:
        """Return the big-endian TPM2B_PUBLIC encoding of this key."""
        return _sized(self._marshal_area())

    @classmethod
    def unmarshal(cls, data: bytes) -> TpmRsaPublic:
        """Decode a TPM2B_PUBLIC holding an RSA key."""
        outer = _Reader(data)
        reader = _Reader(outer.sized())
        if outer.remaining:
            raise RsaKeyError("trailing data after TPM public key structure")

        key_type = reader.u16()
        if key_type != TPM2_ALG_RSA:
            raise RsaKeyError(f"TPM public key has type 0x{key_type:04x}, not RSA")
        name_alg = reader.u16()
        attributes = reader.u32()
        auth_policy = reader.sized()

        sym_alg = reader.u16()
        sym_bits = 0
        sym_mode = TPM2_ALG_NULL
        if sym_alg != TPM2_ALG_NULL:
            sym_bits = reader.u16()
            sym_mode = reader.u16()

        scheme = reader.u16()
        scheme_hash = TPM2_ALG_NULL
        if scheme not in (TPM2_ALG_NULL, TPM2_ALG_RSAES):
            scheme_hash = reader.u16()

        key_bits = reader.u16()
        exponent = reader.u32()
        modulus = reader.sized()
        if reader.remaining:
            raise RsaKeyError("trailing data inside TPM public key structure")

        return cls(
            key_bits=key_bits,
            exponent=exponent,
            modulus=modulus,
            name_alg=name_alg,
            object_attributes=attributes,
            auth_policy=auth_policy,
            symmetric_algorithm=sym_alg,
            symmetric_key_bits=sym_bits,
            symmetric_mode=sym_mode,
            scheme=scheme,
            scheme_hash=scheme_hash,
        )


class RsaKey:
    """An RSA key pair or public key, remembered with the file it came from."""

    def __init__(
        self,
        key: rsa.RSAPrivateKey | rsa.RSAPublicKey,
        path: str | os.PathLike = GENERATED_KEY_PATH,
    ) -> None:
        self.key = key
        self.path = os.fspath(path)

    @property
    def is_private(self) -> bool:
        return isinstance(self.key, rsa.RSAPrivateKey)

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        if isinstance(self.key, rsa.RSAPrivateKey):
            return self.key.public_key()
        return self.key

    def write_public(self, path: str | os.PathLike) -> None:
        """Write the public key as a PEM SubjectPublicKeyInfo file."""
        pem = self.public_key.public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        try:
            with open(path, "wb") as fp:
                fp.write(pem)
        except OSError as exc:
            raise RsaKeyError(f"Cannot open RSA public key file {path}: {exc}") from exc

    def write_private(self, path: str | os.PathLike) -> None:
        """Write the private key as unencrypted PEM, readable by the owner only."""
        if not isinstance(self.key, rsa.RSAPrivateKey):
            raise RsaKeyError(f"Unable to write private key to {path}: {self.path} is not a private key")
        pem = self.key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as fp:
                fp.write(pem)
        except OSError as exc:
            raise RsaKeyError(f"Cannot open RSA private key file {path}: {exc}") from exc

    def sign(self, data: bytes) -> bytes:
        """Sign ``data`` with PKCS#1 v1.5 over SHA-256."""
        if not isinstance(self.key, rsa.RSAPrivateKey):
            raise RsaKeyError(f"Cannot use {self.path} for signing - not a private key")
        return self.key.sign(bytes(data), padding.PKCS1v15(), hashes.SHA256())

    def to_tpm_public(self) -> TpmRsaPublic:
        """Convert the public key into the TPM's public key structure."""
        numbers = self.public_key.public_numbers()
        n_bytes = (numbers.n.bit_length() + 7) // 8
        key_bits = n_bytes * 8
        if key_bits not in SUPPORTED_KEY_BITS:
            raise RsaKeyError(f"{self.path}: unsupported RSA key size ({key_bits} bits)")
        e_bytes = (numbers.e.bit_length() + 7) // 8
        if e_bytes > _EXPONENT_BYTES:
            raise RsaKeyError(f"{self.path}: unsupported RSA exponent size ({e_bytes * 8} bits)")
        return TpmRsaPublic(
            key_bits=key_bits,
            exponent=numbers.e,
            modulus=numbers.n.to_bytes(n_bytes, "big"),
        )

    def public_digest(self) -> EvDigest:
        """Return the SHA-256 digest of the DER encoded (PKCS#1) public key."""
        der = self.public_key.public_bytes(
            serialization.Encoding.DER, serialization.PublicFormat.PKCS1
        )
        return EvDigest("sha256", hashlib.sha256(der).digest())


def _read_pem(path: str | os.PathLike, kind: str) -> bytes:
    try:
        with open(path, "rb") as fp:
            return fp.read()
    except OSError as exc:
        raise RsaKeyError(f"Cannot read RSA {kind} key from {path}: {exc}") from exc


def read_public_key(path: str | os.PathLike) -> RsaKey:
    """Read an RSA public key from a PEM file."""
    pem = _read_pem(path, "public")
    try:
        key = serialization.load_pem_public_key(pem)
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise RsaKeyError(f"Failed to parse RSA public key from {path}") from exc
    if not isinstance(key, rsa.RSAPublicKey):
        raise RsaKeyError(f"Not a RSA public key: {path}")
    return RsaKey(key, path)


def read_private_key(path: str | os.PathLike) -> RsaKey:
    """Read an unencrypted RSA private key from a PEM file."""
    pem = _read_pem(path, "private")
    try:
        key = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise RsaKeyError(f"Failed to parse RSA private key from {path}") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise RsaKeyError(f"Not a RSA private key: {path}")
    return RsaKey(key, path)


def generate_key(bits: int) -> RsaKey:
    """Generate a new RSA key pair with public exponent 65537."""
    try:
        key = rsa.generate_private_key(public_exponent=RSA_F4, key_size=bits)
    except (ValueError, TypeError) as exc:
        raise RsaKeyError(f"Failed to generate {bits} bit RSA key") from exc
    return RsaKey(key, GENERATED_KEY_PATH)