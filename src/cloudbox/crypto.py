"""Cryptographic helpers for CloudBox.

This module provides:
- mix256: 32-byte mixing hash built from 32-bit XOR/shift rounds
- transform: self-inverse keyed XOR stream cipher driven by mix256
- secp256k1 public key validation for QR credentials
- Storage path hashing for instance ids

Security notes:
- mix256/transform compact and obscure short secrets inside QR codes and
  share links. They are NOT vetted primitives: no authentication, no
  collision resistance. Anything sensitive rides on the transport.
- All mix256 arithmetic is signed 32-bit with wraparound so the output is
  bit-exact with the other CloudBox clients.
"""

import hashlib
import secrets
import struct

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from cloudbox.errors import FormatError

__all__ = [
    "BLOCK_SIZE",
    "HASH_SIZE",
    "PUBLIC_KEY_LENGTH",
    "mix256",
    "transform",
    "encrypt",
    "decrypt",
    "validate_public_key",
    "generate_key_material",
    "derive_instance_id",
    "public_key_from_private",
]

BLOCK_SIZE = 8
HASH_SIZE = 32
PUBLIC_KEY_LENGTH = 33  # compressed secp256k1 point

_MASK32 = 0xFFFFFFFF
_SEED = 0x55555555
_CONSTANTS = (
    0b01010101_01010101_01010101_01010101,
    0b00110011_00110011_00110011_00110011,
    0b00100100_10010010_00100100_10010010,
    0b00011100_01110001_11000111_00011100,
)


def _int32(value: int) -> int:
    """Wrap to a signed 32-bit integer."""
    value &= _MASK32
    return value - 0x100000000 if value & 0x80000000 else value


def _shl(value: int, count: int) -> int:
    # Shift counts are masked to 5 bits like a 32-bit int shift
    return _int32(value << (count & 31))


def _sar(value: int, count: int) -> int:
    return value >> (count & 31)


def _rem(value: int, divisor: int) -> int:
    """Remainder truncated toward zero (sign follows the dividend)."""
    remainder = abs(value) % divisor
    return -remainder if value < 0 else remainder


def mix256(data: bytes) -> bytes:
    """Hash data into 32 bytes.

    Input is zero-padded to a multiple of 32 bytes. Eight accumulators start
    from alternating-bit masks and their complements; a mixing scalar seeded
    from the input length is folded with every 32-byte chunk.

    Args:
        data: Input bytes (any length, including 0).

    Returns:
        32-byte digest (eight little-endian 32-bit words).
    """
    length = len(data)
    padded_length = -(-length // HASH_SIZE) * HASH_SIZE
    padded = bytes(data) + b"\x00" * (padded_length - length)

    acc = [_int32(c) for c in _CONSTANTS]
    acc += [~c for c in acc]

    x = _int32(length ^ _SEED)
    x ^= _shl(x, 1 + length % 30)
    x ^= _SEED
    x ^= _sar(x, 1 + length % 29)

    for offset in range(0, padded_length, HASH_SIZE):
        words = struct.unpack_from("<8i", padded, offset)
        for word in words:
            x ^= word
        x ^= _SEED
        x ^= _shl(x, 1 + _rem(x, 28))
        x ^= _SEED
        x ^= _sar(x, 1 + _rem(x, 29))
        x ^= _SEED
        x ^= _shl(x, 1 + _rem(x, 30))
        acc = [a ^ word ^ x for a, word in zip(acc, words)]

    return struct.pack("<8i", *acc)


def transform(key: bytes, data: bytes) -> bytes:
    """Encrypt or decrypt data with key (the operation is its own inverse).

    The first 4 key bytes are replaced by (len(data) XOR key[0:4] as a
    little-endian u32), zero-extending short keys. Data is processed in
    8-byte blocks XORed with slices of a 32-byte keystream block that is
    re-derived with mix256 each time the block position wraps to 0.

    Args:
        key: Key bytes (any length, including 0).
        data: Plaintext or ciphertext (any length, including 0).

    Returns:
        Output with the same length as data.
    """
    k = bytes(key).ljust(4, b"\x00")
    length = len(data)
    (head,) = struct.unpack_from("<I", k, 0)
    k = struct.pack("<I", (length ^ head) & _MASK32) + k[4:]

    padded_length = -(-length // BLOCK_SIZE) * BLOCK_SIZE
    padded = bytes(data) + b"\x00" * (padded_length - length)

    out = bytearray(padded_length)
    for i in range(0, padded_length, BLOCK_SIZE):
        position = i % len(k) // BLOCK_SIZE
        if position == 0:
            k = mix256(k)
        (block,) = struct.unpack_from("<Q", padded, i)
        (stream,) = struct.unpack_from("<Q", k, position * BLOCK_SIZE)
        struct.pack_into("<Q", out, i, block ^ stream)

    return bytes(out[:length])


encrypt = transform
decrypt = transform


def validate_public_key(data: bytes) -> bytes:
    """Check that data is a valid compressed secp256k1 point.

    Args:
        data: 33 candidate key bytes.

    Returns:
        The same bytes, for chaining.

    Raises:
        FormatError: If the bytes are not a point on the curve.
    """
    if len(data) != PUBLIC_KEY_LENGTH:
        raise FormatError(
            f"Public key must be {PUBLIC_KEY_LENGTH} bytes, got {len(data)}"
        )
    try:
        ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), data)
    except ValueError as e:
        raise FormatError(f"Invalid public key: {e}") from e
    return bytes(data)


def public_key_from_private(private_key: ec.EllipticCurvePrivateKey) -> bytes:
    """Return the compressed public key bytes of a secp256k1 private key."""
    return private_key.public_key().public_bytes(
        Encoding.X962, PublicFormat.CompressedPoint
    )


def generate_key_material(length: int = 24) -> bytes:
    """Generate random key material for indirect QR credentials."""
    return secrets.token_bytes(length)


def derive_instance_id(storage_path: str) -> int:
    """Derive a u64 instance id from a storage path.

    Takes the first 8 bytes (little-endian) of SHA-256 of the UTF-8 path.
    """
    digest = hashlib.sha256(storage_path.encode("utf-8")).digest()
    return struct.unpack_from("<Q", digest, 0)[0]
