"""TPM 2.0 key files: sealed objects with their PCR and authorization policies, in DER."""

from __future__ import annotations

import os
import struct
from dataclasses import dataclass, field
from typing import Protocol, Union

from .rsa import TPM2_ALG_SHA256
from .runtime import read_file, write_file

OID_SEALED_DATA = "2.23.133.10.1.5"
TSSPRIVKEY_PEM_STRING = "TSS2 PRIVATE KEY"

TPM2_CC_POLICY_AUTHORIZE = 0x0000016A
TPM2_CC_POLICY_PCR = 0x0000017F
TPM2_ALG_RSASSA = 0x0014

_PCR_SELECT_MIN = 3

_TAG_BOOLEAN = 0x01
_TAG_INTEGER = 0x02
_TAG_OCTET_STRING = 0x04
_TAG_OID = 0x06
_TAG_UTF8STRING = 0x0C
_TAG_SEQUENCE = 0x30


def _context(number: int) -> int:
    return 0xA0 | number


class Tpm2KeyError(Exception):
    """Raised when a TPM 2.0 key cannot be built, encoded, decoded or stored."""


class _Marshalable(Protocol):
    def marshal(self) -> bytes: ...


_Blob = Union[bytes, bytearray, memoryview, _Marshalable]


def _marshaled(obj: _Blob) -> bytes:
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return bytes(obj)
    return obj.marshal()


def _sized(data: bytes) -> bytes:
    return struct.pack(">H", len(data)) + data


_EMPTY_DIGEST = _sized(b"")


def _marshal_signature(signature: _Blob) -> bytes:
    """Return a TPMT_SIGNATURE; raw bytes are taken as an RSASSA SHA-256 signature."""
    if isinstance(signature, (bytes, bytearray, memoryview)):
        return struct.pack(">HH", TPM2_ALG_RSASSA, TPM2_ALG_SHA256) + _sized(bytes(signature))
    return signature.marshal()


@dataclass(frozen=True)
class PcrSelection:
    """A TPML_PCR_SELECTION: one PCR bit mask per hash algorithm bank."""

    selections: tuple[tuple[int, int], ...]

    def marshal(self) -> bytes:
        """Return the big-endian TPM encoding of the selection list."""
        out = bytearray(struct.pack(">I", len(self.selections)))
        for hash_alg, mask in self.selections:
            if not 0 <= mask < (1 << 32):
                raise Tpm2KeyError(f"PCR mask 0x{mask:x} out of range")
            size = max(_PCR_SELECT_MIN, (mask.bit_length() + 7) // 8)
            out += struct.pack(">HB", hash_alg, size)
            out += mask.to_bytes(size, "little")
        return bytes(out)


@dataclass
class PolicyCommand:
    """One TPM policy command and its marshaled parameters."""

    command_code: int
    command_policy: bytes


@dataclass
class AuthPolicy:
    """A named alternative authorization policy."""

    name: str | None
    policy: list[PolicyCommand] = field(default_factory=list)


def _policy_pcr(pcr_sel: PcrSelection) -> PolicyCommand:
    return PolicyCommand(TPM2_CC_POLICY_PCR, _EMPTY_DIGEST + pcr_sel.marshal())


def _policy_authorize(pub_key: _Blob, signature: _Blob) -> PolicyCommand:
    data = _marshaled(pub_key) + _EMPTY_DIGEST + _marshal_signature(signature)
    return PolicyCommand(TPM2_CC_POLICY_AUTHORIZE, data)


# DER encoding

def _encode_length(length: int) -> bytes:
    if length < 0x80:
        return bytes([length])
    raw = length.to_bytes((length.bit_length() + 7) // 8, "big")
    return bytes([0x80 | len(raw)]) + raw


def _tlv(tag: int, content: bytes) -> bytes:
    return bytes([tag]) + _encode_length(len(content)) + content


def _explicit(number: int, inner: bytes) -> bytes:
    return _tlv(_context(number), inner)


def _encode_integer(value: int) -> bytes:
    bits = value.bit_length() if value >= 0 else (~value).bit_length()
    return _tlv(_TAG_INTEGER, value.to_bytes(bits // 8 + 1, "big", signed=True))


def _encode_boolean(value: bool) -> bytes:
    return _tlv(_TAG_BOOLEAN, b"\xff" if value else b"\x00")


def _encode_oid(oid: str) -> bytes:
    try:
        arcs = [int(arc) for arc in oid.split(".")]
    except ValueError as exc:
        raise Tpm2KeyError(f"invalid object identifier {oid!r}") from exc
    if len(arcs) < 2 or arcs[0] > 2 or any(arc < 0 for arc in arcs):
        raise Tpm2KeyError(f"invalid object identifier {oid!r}")
    out = bytearray()
    for arc in [40 * arcs[0] + arcs[1], *arcs[2:]]:
        chunk = [arc & 0x7F]
        arc >>= 7
        while arc:
            chunk.append(0x80 | (arc & 0x7F))
            arc >>= 7
        out += bytes(reversed(chunk))
    return _tlv(_TAG_OID, bytes(out))


def _encode_policy(cmd: PolicyCommand) -> bytes:
    return _tlv(
        _TAG_SEQUENCE,
        _explicit(0, _encode_integer(cmd.command_code))
        + _explicit(1, _tlv(_TAG_OCTET_STRING, bytes(cmd.command_policy))),
    )


def _encode_policy_seq(commands: list[PolicyCommand]) -> bytes:
    return _tlv(_TAG_SEQUENCE, b"".join(_encode_policy(cmd) for cmd in commands))


def _encode_auth_policy(ap: AuthPolicy) -> bytes:
    content = b""
    if ap.name is not None:
        content += _explicit(0, _tlv(_TAG_UTF8STRING, ap.name.encode("utf-8")))
    content += _explicit(1, _encode_policy_seq(ap.policy))
    return _tlv(_TAG_SEQUENCE, content)


# DER decoding

class _DerReader:
    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def peek(self) -> int | None:
        return self._data[self._pos] if self._pos < len(self._data) else None

    def read(self, tag: int) -> bytes:
        if self.peek() != tag:
            raise Tpm2KeyError(f"expected DER tag 0x{tag:02x}, found {self.peek()!r}")
        pos = self._pos + 1
        if pos >= len(self._data):
            raise Tpm2KeyError("truncated DER length")
        first = self._data[pos]
        pos += 1
        if first < 0x80:
            length = first
        elif first == 0x80:
            raise Tpm2KeyError("indefinite DER length not allowed")
        else:
            count = first & 0x7F
            if pos + count > len(self._data):
                raise Tpm2KeyError("truncated DER length")
            length = int.from_bytes(self._data[pos:pos + count], "big")
            pos += count
        if pos + length > len(self._data):
            raise Tpm2KeyError("truncated DER content")
        self._pos = pos + length
        return self._data[pos:pos + length]

    def expect_end(self) -> None:
        if self._pos != len(self._data):
            raise Tpm2KeyError("unexpected data in DER structure")


def _single(content: bytes, tag: int) -> bytes:
    reader = _DerReader(content)
    value = reader.read(tag)
    reader.expect_end()
    return value


def _decode_integer(content: bytes) -> int:
    if not content:
        raise Tpm2KeyError("empty DER integer")
    return int.from_bytes(content, "big", signed=True)


def _decode_boolean(content: bytes) -> bool:
    if len(content) != 1:
        raise Tpm2KeyError("invalid DER boolean")
    return content[0] != 0


def _decode_utf8(content: bytes) -> str:
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise Tpm2KeyError("invalid UTF-8 string") from exc


def _decode_oid(content: bytes) -> str:
    if not content or content[-1] & 0x80:
        raise Tpm2KeyError("invalid object identifier")
    values = []
    value = 0
    for octet in content:
        value = (value << 7) | (octet & 0x7F)
        if not octet & 0x80:
            values.append(value)
            value = 0
    first = values[0]
    head = [0, first] if first < 40 else [1, first - 40] if first < 80 else [2, first - 80]
    return ".".join(str(arc) for arc in head + values[1:])


def _decode_policy(content: bytes) -> PolicyCommand:
    reader = _DerReader(content)
    code = _decode_integer(_single(reader.read(_context(0)), _TAG_INTEGER))
    data = _single(reader.read(_context(1)), _TAG_OCTET_STRING)
    reader.expect_end()
    return PolicyCommand(code, data)


def _decode_policy_seq(content: bytes) -> list[PolicyCommand]:
    reader = _DerReader(content)
    commands = []
    while reader.peek() is not None:
        commands.append(_decode_policy(reader.read(_TAG_SEQUENCE)))
    return commands


def _decode_auth_policy(content: bytes) -> AuthPolicy:
    reader = _DerReader(content)
    name = None
    if reader.peek() == _context(0):
        name = _decode_utf8(_single(reader.read(_context(0)), _TAG_UTF8STRING))
    policy = _decode_policy_seq(_single(reader.read(_context(1)), _TAG_SEQUENCE))
    reader.expect_end()
    return AuthPolicy(name, policy)


@dataclass
class TpmKey:
    """A key in the TPM 2.0 Key File format."""

    parent: int
    pubkey: bytes
    privkey: bytes
    key_type: str = OID_SEALED_DATA
    empty_auth: bool | None = True
    policy: list[PolicyCommand] | None = None
    secret: bytes | None = None
    auth_policy: list[AuthPolicy] | None = None
    description: str | None = None
    rsa_parent: bool | None = None

    def add_policy_pcr(self, pcr_sel: PcrSelection) -> None:
        """Append a TPM2_PolicyPCR command to the key's policy."""
        if self.policy is None:
            self.policy = []
        self.policy.append(_policy_pcr(pcr_sel))

    def add_authpolicy_authorize(
        self,
        name: str,
        pcr_sel: PcrSelection,
        pub_key: _Blob,
        signature: _Blob,
        append: bool = True,
    ) -> None:
        """Add a PolicyPCR + PolicyAuthorize alternative, at the end or the front."""
        ap = AuthPolicy(name, [_policy_pcr(pcr_sel), _policy_authorize(pub_key, signature)])
        if self.auth_policy is None:
            self.auth_policy = []
        if append:
            self.auth_policy.append(ap)
        else:
            self.auth_policy.insert(0, ap)

    def to_der(self) -> bytes:
        """Encode the key as DER."""
        content = _encode_oid(self.key_type)
        if self.empty_auth is not None:
            content += _explicit(0, _encode_boolean(self.empty_auth))
        if self.policy is not None:
            content += _explicit(1, _encode_policy_seq(self.policy))
        if self.secret is not None:
            content += _explicit(2, _tlv(_TAG_OCTET_STRING, bytes(self.secret)))
        if self.auth_policy is not None:
            seq = b"".join(_encode_auth_policy(ap) for ap in self.auth_policy)
            content += _explicit(3, _tlv(_TAG_SEQUENCE, seq))
        if self.description is not None:
            content += _explicit(4, _tlv(_TAG_UTF8STRING, self.description.encode("utf-8")))
        if self.rsa_parent is not None:
            content += _explicit(5, _encode_boolean(self.rsa_parent))
        content += _encode_integer(self.parent)
        content += _tlv(_TAG_OCTET_STRING, bytes(self.pubkey))
        content += _tlv(_TAG_OCTET_STRING, bytes(self.privkey))
        return _tlv(_TAG_SEQUENCE, content)


def make_basekey(parent: int, sealed_pub: _Blob, sealed_priv: _Blob) -> TpmKey:
    """Build a sealed-data key from the marshaled TPM2B_PUBLIC and TPM2B_PRIVATE."""
    return TpmKey(
        parent=parent,
        pubkey=_marshaled(sealed_pub),
        privkey=_marshaled(sealed_priv),
        key_type=OID_SEALED_DATA,
        empty_auth=True,
    )


def parse_der(data: bytes) -> TpmKey:
    """Decode a DER encoded TPM 2.0 key; data after the key is ignored."""
    seq = _DerReader(data).read(_TAG_SEQUENCE)
    reader = _DerReader(seq)

    key_type = _decode_oid(reader.read(_TAG_OID))
    fields: dict = {}
    if reader.peek() == _context(0):
        fields["empty_auth"] = _decode_boolean(_single(reader.read(_context(0)), _TAG_BOOLEAN))
    else:
        fields["empty_auth"] = None
    if reader.peek() == _context(1):
        fields["policy"] = _decode_policy_seq(_single(reader.read(_context(1)), _TAG_SEQUENCE))
    if reader.peek() == _context(2):
        fields["secret"] = _single(reader.read(_context(2)), _TAG_OCTET_STRING)
    if reader.peek() == _context(3):
        ap_reader = _DerReader(_single(reader.read(_context(3)), _TAG_SEQUENCE))
        policies = []
        while ap_reader.peek() is not None:
            policies.append(_decode_auth_policy(ap_reader.read(_TAG_SEQUENCE)))
        fields["auth_policy"] = policies
    if reader.peek() == _context(4):
        fields["description"] = _decode_utf8(_single(reader.read(_context(4)), _TAG_UTF8STRING))
    if reader.peek() == _context(5):
        fields["rsa_parent"] = _decode_boolean(_single(reader.read(_context(5)), _TAG_BOOLEAN))

    parent = _decode_integer(reader.read(_TAG_INTEGER))
    pubkey = reader.read(_TAG_OCTET_STRING)
    privkey = reader.read(_TAG_OCTET_STRING)
    reader.expect_end()
    return TpmKey(parent=parent, pubkey=pubkey, privkey=privkey, key_type=key_type, **fields)


def read_key_file(path: str | os.PathLike) -> TpmKey:
    """Read a sealed key in TPM 2.0 Key Format and check that it is usable."""
    try:
        data = read_file(path)
    except OSError as exc:
        raise Tpm2KeyError(f"Cannot read {path}: {exc}") from exc
    try:
        key = parse_der(data)
    except Tpm2KeyError as exc:
        raise Tpm2KeyError(f"{path} does not seem to contain a valid TPM 2.0 Key") from exc

    if key.key_type != OID_SEALED_DATA:
        raise Tpm2KeyError(f"{path} is not a sealed key in TPM 2.0 Key Format")
    if key.empty_auth is not True:
        raise Tpm2KeyError("emptyAuth is not TRUE")
    return key


def write_key_file(path: str | os.PathLike, key: TpmKey) -> None:
    """Write a key to ``path`` in DER."""
    der = key.to_der()
    try:
        write_file(path, der)
    except OSError as exc:
        raise Tpm2KeyError(f"Cannot write {path}: {exc}") from exc