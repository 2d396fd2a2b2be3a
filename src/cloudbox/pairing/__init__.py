"""Pairing: QR credentials, login sessions and the pairing manager."""

from cloudbox.pairing.pairing_manager import PairingManager
from cloudbox.pairing.qr_codec import FormatType, QrCredential, decode, encode
from cloudbox.pairing.session import LoginResult, LoginSession, PairingState

__all__ = [
    "FormatType",
    "LoginResult",
    "LoginSession",
    "PairingManager",
    "PairingState",
    "QrCredential",
    "decode",
    "encode",
]
