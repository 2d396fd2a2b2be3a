"""Protocols and value types for the external collaborators.

The encrypted transport, its contact directory, the secret vault and the
sync engine live outside this package. CloudBox only talks to them through
the interfaces below.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from cloudbox.commands import CommandEnvelope


class Contact(Protocol):
    """Identity handle supplied by the transport."""

    user_id: Optional[int]
    public_key: bytes


@dataclass(frozen=True)
class InboundMessage:
    """Sub-application command delivered by the transport."""

    contact: Any  # Contact
    app_id: int
    command: int
    parameters: tuple[bytes, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class FileTransfer:
    """Progress of one file upload or download reported by the sync engine.

    hash identifies the file across updates; part counts up to total.
    """

    is_upload: bool
    hash: int
    part: int
    total: int
    name: Optional[str] = None
    length: Optional[int] = None

    @property
    def completed(self) -> bool:
        return self.part == self.total


@dataclass(frozen=True)
class LoginCredential:
    """Credential a client presents to the server's sync engine."""

    pin: str
    public_key: bytes


class SecretVault(Protocol):
    """String-keyed secret storage. Setting None clears a key."""

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Return the stored value or default."""
        ...

    def set(self, key: str, value: Optional[str]) -> None:
        """Store value, or delete the key when value is None."""
        ...


class TransportContext(Protocol):
    """An open encrypted transport bound to one entry point."""

    entry_point: str
    is_connected: bool
    public_key: bytes
    user_id: int
    keep_alive_failures: int
    license_expired: bool

    # Callbacks installed by the pairing manager
    on_connection_change: Optional[Callable[[bool], None]]
    on_communication_error: Optional[Callable[[str, str], None]]
    on_message: Optional[Callable[[InboundMessage], None]]

    def is_host_reachable(self) -> bool:
        """True if the entry point host answers at the network level."""
        ...

    def add_contact(self, public_key: bytes, name: str) -> Contact:
        """Register a contact for public_key and return its handle."""
        ...

    def send(self, envelope: CommandEnvelope) -> None:
        """Send one command datagram."""
        ...

    def dispose(self) -> None:
        """Close the transport."""
        ...


class TransportFactory(Protocol):
    """Opens transport contexts."""

    def __call__(
        self,
        entry_point: str,
        *,
        network_name: str,
        passphrase: Optional[str],
        instance_id: int,
        license_oem: Optional[str],
    ) -> TransportContext:
        ...


SendSyncCommand = Callable[[Optional[int], int, list[bytes]], bool]


class SyncEngine(Protocol):
    """Data-sync session running on top of an authenticated transport."""

    is_logged: bool
    login_error: bool
    last_communication_received: Optional[float]
    pending_operations: int

    # Installed by the pairing manager; may be called from sync threads
    on_file_transfer: Optional[Callable[[FileTransfer], None]]

    def on_command(
        self, user_id: int, command: int, parameters: list[bytes]
    ) -> None:
        """Handle an inbound sync command."""
        ...

    def dispose(self) -> None:
        """Stop syncing and release resources."""
        ...


class SyncEngineFactory(Protocol):
    """Creates sync engine sessions."""

    def __call__(
        self,
        send_command: SendSyncCommand,
        context: TransportContext,
        cloud_path: Path,
        credential: Optional[LoginCredential],
    ) -> SyncEngine:
        ...
