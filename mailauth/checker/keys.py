"""
DKIM public key decoding.

Walks the DER encoding of the ``p=`` tag of a DKIM record to recover the
key algorithm and strength without trusting the input: every read is
bounds-checked and any structural problem yields None instead of an
exception.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import textwrap

from mailauth.models import KeyInfo

logger = logging.getLogger(__name__)

TAG_INTEGER = 0x02
TAG_BIT_STRING = 0x03
TAG_NULL = 0x05
TAG_OID = 0x06
TAG_SEQUENCE = 0x30

# DER body of OID 1.2.840.113549.1.1.1 (rsaEncryption)
RSA_ENCRYPTION_OID = bytes.fromhex("2a864886f70d010101")

_ED25519_KEY_LENGTH = 32
_WHITESPACE_RE = re.compile(r"\s+")


class DecodeError(ValueError):
    """Raised by DerReader when the input is truncated or malformed."""


class DerReader:
    """Bounds-checked cursor over a DER byte string."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def read_byte(self) -> int:
        if self.remaining < 1:
            raise DecodeError("unexpected end of data")
        value = self._data[self._pos]
        self._pos += 1
        return value

    def read_bytes(self, count: int) -> bytes:
        if count < 0 or self.remaining < count:
            raise DecodeError(f"need {count} bytes, {self.remaining} left")
        chunk = self._data[self._pos:self._pos + count]
        self._pos += count
        return chunk

    def read_uint16(self) -> int:
        return int.from_bytes(self.read_bytes(2), "big")

    def read_length(self) -> int:
        """Read a DER length in short form or 1-4 byte long form."""
        first = self.read_byte()
        if first < 0x80:
            return first
        size = first & 0x7F
        if size == 0 or size > 4:
            raise DecodeError(f"unsupported length encoding 0x{first:02x}")
        if size == 2:
            return self.read_uint16()
        return int.from_bytes(self.read_bytes(size), "big")

    def peek_tag(self) -> int | None:
        return self._data[self._pos] if self.remaining else None

    def expect(self, tag: int) -> int:
        """Consume a tag byte, which must equal *tag*, and return the length."""
        found = self.read_byte()
        if found != tag:
            raise DecodeError(f"expected tag 0x{tag:02x}, found 0x{found:02x}")
        length = self.read_length()
        if length > self.remaining:
            raise DecodeError(f"length {length} exceeds remaining {self.remaining} bytes")
        return length

    def read_element(self, tag: int) -> DerReader:
        """Consume a whole TLV element and return a reader over its body."""
        return DerReader(self.read_bytes(self.expect(tag)))

    def read_integer(self) -> bytes:
        """Read an INTEGER body with a leading zero padding byte removed."""
        body = self.read_bytes(self.expect(TAG_INTEGER))
        if not body:
            raise DecodeError("empty INTEGER")
        if len(body) > 1 and body[0] == 0x00:
            body = body[1:]
        return body


def to_pem(b64_key: str) -> str:
    """Wrap a base64 key payload in PUBLIC KEY PEM armour."""
    body = _WHITESPACE_RE.sub("", b64_key)
    lines = "\n".join(textwrap.wrap(body, 64))
    return f"-----BEGIN PUBLIC KEY-----\n{lines}\n-----END PUBLIC KEY-----\n"


def _read_rsa_public_key(reader: DerReader) -> KeyInfo:
    """Parse a PKCS#1 RSAPublicKey ``SEQUENCE { modulus, publicExponent }``."""
    key = reader.read_element(TAG_SEQUENCE)
    modulus = key.read_integer()
    exponent = key.read_integer()
    if key.remaining:
        raise DecodeError("trailing data after RSA exponent")
    return KeyInfo(
        algorithm="RSA",
        key_size_bits=len(modulus) * 8,
        exponent=int.from_bytes(exponent, "big"),
    )


def _read_subject_public_key_info(der: bytes) -> KeyInfo:
    outer = DerReader(der).read_element(TAG_SEQUENCE)

    # Bare PKCS#1 RSAPublicKey: the outer SEQUENCE starts with the modulus
    if outer.peek_tag() == TAG_INTEGER:
        return _read_rsa_public_key(DerReader(der))

    algorithm = outer.read_element(TAG_SEQUENCE)
    oid = algorithm.read_bytes(algorithm.expect(TAG_OID))
    if oid != RSA_ENCRYPTION_OID:
        raise DecodeError(f"unsupported algorithm OID {oid.hex()}")
    if algorithm.peek_tag() == TAG_NULL:
        algorithm.read_element(TAG_NULL)
    if algorithm.remaining:
        raise DecodeError("unexpected algorithm parameters")

    bit_string = outer.read_element(TAG_BIT_STRING)
    if bit_string.read_byte() != 0x00:
        raise DecodeError("BIT STRING has unused bits")
    info = _read_rsa_public_key(bit_string)
    if bit_string.remaining:
        raise DecodeError("trailing data after RSAPublicKey")
    return info


def decode_public_key(b64_key: str) -> KeyInfo | None:
    """Decode a DKIM ``p=`` value into its algorithm and key size.

    The format is taken from the payload, not from the record's ``k=`` tag,
    so callers can compare the two. A payload opening with a DER SEQUENCE
    is read as an RSA SubjectPublicKeyInfo or PKCS#1 key; any other 32-byte
    payload is a raw Ed25519 key (RFC 8463).

    Args:
        b64_key: Base64 key payload; embedded whitespace is ignored.

    Returns:
        KeyInfo, or None when the payload cannot be decoded.
    """
    body = _WHITESPACE_RE.sub("", b64_key)
    try:
        raw = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as exc:
        logger.debug("DKIM key is not valid base64: %s", exc)
        return None

    if raw[:1] == bytes([TAG_SEQUENCE]):
        try:
            return _read_subject_public_key_info(raw)
        except DecodeError as exc:
            logger.debug("DKIM key could not be decoded as DER: %s", exc)

    if len(raw) == _ED25519_KEY_LENGTH:
        return KeyInfo(algorithm="ED25519", key_size_bits=_ED25519_KEY_LENGTH * 8)

    logger.debug("DKIM key of %d bytes is neither DER nor a raw Ed25519 key", len(raw))
    return None
