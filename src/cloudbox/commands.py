"""Command codes and sub-application ids shared with the transport."""

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Union

from cloudbox.errors import UnknownCommandError


def app_id(tag: str) -> int:
    """Compute a 16-bit sub-application id from an ASCII tag.

    The id is the first two ASCII bytes read as a little-endian u16.

    Args:
        tag: Short ASCII identifier (at least 2 characters).

    Returns:
        16-bit sub-application id.
    """
    raw = tag.encode("ascii")
    if len(raw) < 2:
        raise ValueError(f"Tag must have at least 2 characters: {tag!r}")
    return struct.unpack_from("<H", raw, 0)[0]


ADMIN_APP_ID = app_id("cloud")  # Pairing/admin commands
SYNC_APP_ID = app_id("sync")  # Owned by the sync engine


class Command(IntEnum):
    """Admin commands exchanged between client and server (u16 wire values)."""

    SAVE_DATA = 0
    LOAD_DATA = 1
    LOAD_ALL_DATA = 2
    DELETE_DATA = 3
    PUSH_NOTIFICATION = 4
    GET_ENCRYPTED_QR = 5  # Completes a type-2 QR credential
    GET_SSH_ACCESS = 6
    GET_SUPPORTED_APPS = 7

    @classmethod
    def from_wire(cls, code: int) -> "Command":
        """Decode a wire value.

        Raises:
            UnknownCommandError: If code is not a known command.
        """
        try:
            return cls(code)
        except ValueError:
            raise UnknownCommandError(code) from None


Target = Union[int, Any]  # user id or transport Contact


@dataclass(frozen=True)
class CommandEnvelope:
    """One command datagram handed to the transport."""

    target: Target
    app_id: int
    command: int
    parameters: tuple[bytes, ...] = field(default_factory=tuple)

    @property
    def to_user_id(self) -> bool:
        """True if the target is a bare user id rather than a contact."""
        return isinstance(self.target, int)
