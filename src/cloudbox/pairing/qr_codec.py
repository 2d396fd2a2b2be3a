"""Binary QR credential codec.

The QR code carries base64 text of this blob:

    [0]      type tag
    type 0:  33-byte compressed public key | ASCII entry point suffix
    type 1:  256 + 3 opaque bytes | 33-byte public key | suffix (legacy)
    type 2:  24-byte key material | u64 LE server id | suffix

The suffix is not null-terminated and runs to the end of the blob. A type-2
credential carries no public key: the client fetches it from the server
(GetEncryptedQR) once connected and unmasks it with the key material.
"""

import base64
import binascii
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional
from urllib.parse import urlsplit

from cloudbox.crypto import PUBLIC_KEY_LENGTH, validate_public_key
from cloudbox.errors import FormatError

DEFAULT_DOMAIN = "cloudbox.net"
KEY_MATERIAL_LENGTH = 24
LEGACY_BLOCK_LENGTH = 256 + 3  # opaque modulus + exponent

# Entry point prefix used when the QR code carries no suffix
_DEFAULT_HOSTS = {
    "release": "server",
    "debug": "test",
}


class FormatType(IntEnum):
    """QR credential type tag."""

    DIRECT = 0
    LEGACY = 1
    INDIRECT = 2


@dataclass(frozen=True)
class QrCredential:
    """Decoded pairing credential.

    Attributes:
        format_type: Type tag.
        entry_point_suffix: Raw ASCII suffix (may be empty).
        server_public_key: 33-byte compressed key (DIRECT).
        server_id: Server user id (INDIRECT).
        key_material: 24 bytes masking the server key (INDIRECT).
    """

    format_type: FormatType
    entry_point_suffix: str = ""
    server_public_key: Optional[bytes] = None
    server_id: Optional[int] = None
    key_material: Optional[bytes] = None

    @classmethod
    def direct(
        cls, server_public_key: bytes, entry_point_suffix: str = ""
    ) -> "QrCredential":
        """Create a type-0 credential."""
        return cls(
            format_type=FormatType.DIRECT,
            entry_point_suffix=entry_point_suffix,
            server_public_key=bytes(server_public_key),
        )

    @classmethod
    def indirect(
        cls, server_id: int, key_material: bytes, entry_point_suffix: str = ""
    ) -> "QrCredential":
        """Create a type-2 credential."""
        return cls(
            format_type=FormatType.INDIRECT,
            entry_point_suffix=entry_point_suffix,
            server_id=server_id,
            key_material=bytes(key_material),
        )

    @property
    def is_indirect(self) -> bool:
        return self.format_type == FormatType.INDIRECT

    def entry_point(
        self, build_mode: str = "release", default_domain: str = DEFAULT_DOMAIN
    ) -> str:
        """Resolved entry point for this credential."""
        return resolve_entry_point(self.entry_point_suffix, build_mode, default_domain)


def default_entry_point(
    build_mode: str = "release", default_domain: str = DEFAULT_DOMAIN
) -> str:
    """Entry point used when a credential carries no suffix."""
    host = _DEFAULT_HOSTS.get(build_mode, _DEFAULT_HOSTS["release"])
    return f"{host}.{default_domain}"


def resolve_entry_point(
    suffix: str,
    build_mode: str = "release",
    default_domain: str = DEFAULT_DOMAIN,
) -> str:
    """Resolve a QR entry point suffix.

    An empty suffix gives the build-mode default host, a suffix without a dot
    gets the default domain appended, anything else is used unchanged.

    Raises:
        FormatError: If the result is not a relative or absolute URI.
    """
    if not suffix:
        entry_point = default_entry_point(build_mode, default_domain)
    elif "." not in suffix:
        entry_point = f"{suffix}.{default_domain}"
    else:
        entry_point = suffix

    if not _is_uri(entry_point):
        raise FormatError(f"Entry point is not a valid URI: {entry_point!r}")
    return entry_point


def _is_uri(text: str) -> bool:
    if not text or any(not 0x21 <= ord(c) <= 0x7E for c in text):
        return False
    try:
        urlsplit(text)
    except ValueError:
        return False
    return True


def _b64decode(text: str) -> bytes:
    try:
        return base64.b64decode(text.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise FormatError(f"QR code is not valid base64: {e}") from e


def _ascii(data: bytes) -> str:
    try:
        return data.decode("ascii")
    except UnicodeDecodeError as e:
        raise FormatError("Entry point suffix is not ASCII") from e


def decode(
    qr_code: str,
    build_mode: str = "release",
    default_domain: str = DEFAULT_DOMAIN,
) -> QrCredential:
    """Decode QR code text into a credential.

    Pure: nothing is persisted.

    Args:
        qr_code: Base64 text read from the QR code.
        build_mode: "release" or "debug" (selects the default entry point).
        default_domain: Domain appended to dotless suffixes.

    Returns:
        The decoded credential.

    Raises:
        FormatError: On any malformed or unsupported input.
    """
    if not qr_code or not qr_code.strip():
        raise FormatError("QR code is empty")

    blob = _b64decode(qr_code)
    if not blob:
        raise FormatError("QR code is empty")

    type_tag = blob[0]
    if type_tag > FormatType.INDIRECT:
        raise FormatError(f"Unsupported QR type: {type_tag}")

    offset = 1
    if type_tag == FormatType.LEGACY:
        # modulus + exponent are read past but never interpreted
        offset += LEGACY_BLOCK_LENGTH
        if len(blob) < offset + PUBLIC_KEY_LENGTH:
            raise FormatError("QR code too short")
        raise FormatError("Legacy QR type 1 is not supported")

    if type_tag == FormatType.DIRECT:
        if len(blob) < offset + PUBLIC_KEY_LENGTH:
            raise FormatError("QR code too short")
        public_key = validate_public_key(blob[offset : offset + PUBLIC_KEY_LENGTH])
        offset += PUBLIC_KEY_LENGTH
        credential = QrCredential.direct(public_key, _ascii(blob[offset:]))
    else:
        if len(blob) < offset + KEY_MATERIAL_LENGTH + 8:
            raise FormatError("QR code too short")
        key_material = blob[offset : offset + KEY_MATERIAL_LENGTH]
        offset += KEY_MATERIAL_LENGTH
        (server_id,) = struct.unpack_from("<Q", blob, offset)
        offset += 8
        credential = QrCredential.indirect(
            server_id, key_material, _ascii(blob[offset:])
        )

    # Raises FormatError for unparseable entry points
    credential.entry_point(build_mode, default_domain)
    return credential


def try_decode(
    qr_code: str,
    build_mode: str = "release",
    default_domain: str = DEFAULT_DOMAIN,
) -> Optional[QrCredential]:
    """Like decode, but returns None instead of raising FormatError."""
    try:
        return decode(qr_code, build_mode, default_domain)
    except FormatError:
        return None


def encode(credential: QrCredential) -> str:
    """Encode a credential as base64 QR text (inverse of decode).

    Raises:
        FormatError: For legacy credentials or missing/invalid fields.
    """
    try:
        suffix = credential.entry_point_suffix.encode("ascii")
    except UnicodeEncodeError as e:
        raise FormatError(f"Entry point suffix must be ASCII: {e}") from e

    if credential.format_type == FormatType.DIRECT:
        if credential.server_public_key is None:
            raise FormatError("Direct credential needs a server public key")
        body = validate_public_key(credential.server_public_key)
    elif credential.format_type == FormatType.INDIRECT:
        if credential.server_id is None or credential.key_material is None:
            raise FormatError("Indirect credential needs server id and key material")
        if len(credential.key_material) != KEY_MATERIAL_LENGTH:
            raise FormatError(
                f"Key material must be {KEY_MATERIAL_LENGTH} bytes, "
                f"got {len(credential.key_material)}"
            )
        if not 0 <= credential.server_id < 2**64:
            raise FormatError(f"Server id out of u64 range: {credential.server_id}")
        body = credential.key_material + struct.pack("<Q", credential.server_id)
    else:
        raise FormatError(f"Cannot encode QR type {int(credential.format_type)}")

    blob = bytes([credential.format_type]) + body + suffix
    return base64.b64encode(blob).decode("ascii")
