"""A cloud endpoint: identity, storage, pairing and command routing.

Server and client share this class; the role only changes how the pairing
manager connects and which default storage path is used.
"""

import hmac
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from cloudbox import vault as keys
from cloudbox.admin import AdminDispatcher, Handler
from cloudbox.commands import Command, Target
from cloudbox.config import Config
from cloudbox.crypto import derive_instance_id
from cloudbox.formatting import ReportBuilder, format_seconds_ago
from cloudbox.history import CommandLog, ErrorLog, ErrorLogEntry, TransferLog
from cloudbox.multiplexer import CommandMultiplexer
from cloudbox.pairing.pairing_manager import PairingManager
from cloudbox.pairing.qr_codec import QrCredential
from cloudbox.pairing.session import LoginResult, PairingState
from cloudbox.protocols import SecretVault, SyncEngineFactory, TransportFactory
from cloudbox.vault import JsonSecretVault

logger = logging.getLogger(__name__)

CLOUD_DIR_NAME = "Cloud"
STATE_DIR_NAME = ".cloudbox"
SECRETS_FILE = "secrets.json"


class Role(Enum):
    """Endpoint role."""

    SERVER = "server"
    CLIENT = "client"


def get_cloud_path(
    default_path: Optional[Path] = None,
    is_server: bool = True,
    instance_id: Optional[int] = None,
) -> Path:
    """Return the storage root of a cloud unless another path is given.

    Servers live under ~/.local/share/CloudBox (one Cloud<id> subdirectory
    per instance when an id is given); clients use ~/Cloud.
    """
    if default_path:
        return Path(default_path)
    if is_server:
        path = Path.home() / ".local" / "share" / "CloudBox"
        if instance_id is not None:
            path = path / f"{CLOUD_DIR_NAME}{instance_id}"
        return path
    return Path.home() / CLOUD_DIR_NAME


def get_cloud_ids(root: Path) -> list[int]:
    """Ids of the Cloud<id> directories found directly under root."""
    root = Path(root)
    if not root.is_dir():
        return []
    ids = []
    for child in root.iterdir():
        if not child.is_dir() or not child.name.startswith(CLOUD_DIR_NAME):
            continue
        suffix = child.name[len(CLOUD_DIR_NAME) :]
        if suffix.isdigit():
            ids.append(int(suffix))
    return sorted(ids)


def next_id_available(root: Path) -> int:
    """Smallest id above every existing Cloud<id> under root (0 if none)."""
    ids = get_cloud_ids(root)
    return max(ids) + 1 if ids else 0


class CloudInstance:
    """One server or client cloud endpoint."""

    def __init__(
        self,
        transport_factory: TransportFactory,
        sync_factory: SyncEngineFactory,
        storage_path: Optional[Path] = None,
        role: Role = Role.CLIENT,
        instance_id: Optional[int] = None,
        license_oem: Optional[str] = None,
        name: Optional[str] = None,
        config: Optional[Config] = None,
        vault: Optional[SecretVault] = None,
        pin_source: Optional[Callable[[], Iterable[str]]] = None,
    ):
        """Initialize a cloud instance.

        Args:
            transport_factory: Opens transport contexts.
            sync_factory: Creates sync engine sessions.
            storage_path: Cloud root; a role-specific default if None.
            role: SERVER or CLIENT.
            instance_id: Numeric id; derived from the storage path if None.
            license_oem: License blob for the transport.
            name: Label stored in the vault (does not affect behaviour).
            config: CloudBox configuration.
            vault: Secret storage; a JSON vault in the state dir if None.
            pin_source: Returns the PINs clients may log in with (servers).
                The sync engine owns them, so servers cannot verify a PIN
                without it.
        """
        self.role = role
        self.config = config or Config()
        self.license_oem = license_oem
        self._pin_source = pin_source

        is_server = role == Role.SERVER
        if instance_id is None:
            instance_id = derive_instance_id(
                str(storage_path or get_cloud_path(None, is_server))
            )
        self.instance_id = instance_id
        self.storage_path = get_cloud_path(storage_path, is_server, instance_id)
        self.state_dir = self.storage_path / STATE_DIR_NAME

        self.vault = vault or JsonSecretVault(self.state_dir / SECRETS_FILE)
        self.error_log = ErrorLog(self.config.error_log_size)
        self.command_log = CommandLog(self.config.command_log_size)
        self.transfer_log = TransferLog(self.config.transfer_log_size)
        self.dispatcher = AdminDispatcher()
        self.multiplexer = CommandMultiplexer(self.dispatcher, self.command_log)
        self.pairing = PairingManager(
            transport_factory=transport_factory,
            sync_factory=sync_factory,
            vault=self.vault,
            multiplexer=self.multiplexer,
            cloud_path=self.storage_path,
            state_dir=self.state_dir,
            instance_id=instance_id,
            is_server=is_server,
            license_oem=license_oem,
            config=self.config.pairing,
            on_communication_error=self._on_communication_error,
            transfer_log=self.transfer_log,
        )

        if name:
            self.name = name

    def __repr__(self) -> str:
        return f"CloudInstance(id={self.instance_id}, role={self.role.value})"

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def is_server(self) -> bool:
        return self.role == Role.SERVER

    @property
    def name(self) -> Optional[str]:
        """Label for this instance (stored in the vault)."""
        return self.vault.get(keys.NAME)

    @name.setter
    def name(self, value: Optional[str]) -> None:
        self.vault.set(keys.NAME, value)

    @property
    def state(self) -> PairingState:
        return self.pairing.state

    @property
    def is_logged(self) -> bool:
        return self.pairing.is_logged

    @property
    def reachable(self) -> bool:
        """True if the transport reports the entry point host reachable."""
        context = self.pairing.context
        return context is not None and bool(context.is_host_reachable())

    @property
    def on_communication_error(self) -> Optional[Callable[[ErrorLogEntry], None]]:
        """Observer called for every transport error."""
        return self.error_log.observer

    @on_communication_error.setter
    def on_communication_error(
        self, observer: Optional[Callable[[ErrorLogEntry], None]]
    ) -> None:
        self.error_log.observer = observer

    def _on_communication_error(self, kind: str, description: str) -> None:
        self.error_log.add(kind, description)

    # ========================================================================
    # Pairing
    # ========================================================================

    async def create_context(
        self, entry_point: str, passphrase: Optional[str] = None
    ) -> None:
        await self.pairing.create_context(entry_point, passphrase)

    async def connect_to_server(
        self, server_public_key: Optional[bytes] = None, pin: Optional[str] = None
    ) -> None:
        await self.pairing.connect_to_server(server_public_key, pin)

    async def login(
        self, qr_code: str, pin: str, entry_point: Optional[str] = None
    ) -> LoginResult:
        return await self.pairing.login(qr_code, pin, entry_point)

    async def logout(self) -> bool:
        return await self.pairing.logout()

    def generate_credential(
        self, indirect: bool = False, entry_point_suffix: str = ""
    ) -> QrCredential:
        return self.pairing.generate_credential(indirect, entry_point_suffix)

    def verify_pin(self, pin: str) -> bool:
        """Check pin before a destructive operation such as destroy.

        A client compares against the PIN saved by login, which logout
        erases. A server compares against the PINs from pin_source. With
        nothing to compare against the check fails.
        """
        if not pin:
            return False
        if self.is_server:
            candidates = list(self._pin_source()) if self._pin_source else []
        else:
            stored = self.vault.get(keys.PIN)
            candidates = [stored] if stored else []
        matched = False
        for candidate in candidates:
            if hmac.compare_digest(candidate.encode(), pin.encode()):
                matched = True
        return matched

    # ========================================================================
    # Commands
    # ========================================================================

    def register_handler(self, command: Command, handler: Handler) -> None:
        """Handle inbound admin command with handler."""
        self.dispatcher.register(command, handler)

    def send_command(
        self,
        target: Optional[Target],
        command: Command,
        parameters: Optional[Iterable[bytes]] = None,
    ) -> bool:
        return self.multiplexer.send_command(target, command, parameters)

    def dispose(self) -> None:
        """Close the session and the transport. Data stays on disk."""
        self.pairing.close()

    # ========================================================================
    # Status
    # ========================================================================

    def status(self) -> str:
        """Human-readable diagnostic report."""
        report = ReportBuilder()
        context: Any = self.pairing.context
        sync: Any = self.pairing.sync

        if not self.is_server:
            server = self.multiplexer.server_contact
            report.add("[CloudBox Client]")
            report.add(
                "Paired to server",
                "None" if server is None else f"{server.user_id} UserId",
            )
            report.add("Logged with server", self.is_logged)
        else:
            report.add("[CloudBox Server]")
        if not self.license_oem:
            report.add("WARNING!", "Missing license")
        if self.config.pairing.build_mode == "debug":
            report.add("WARNING!", "debug build mode")
        report.add("Instance id", self.instance_id)
        report.add("Name", self.name)
        report.add("Cloud path", self.storage_path)
        report.add("State", self.state.name)

        if context is not None:
            report.add("Entry point", context.entry_point)
            report.add("Connected to the router", context.is_connected)
            report.add("PubKey", context.public_key.hex())
            report.add("UserId", context.user_id)
            report.add("Keep Alive Failures", context.keep_alive_failures)

        if sync is not None:
            if sync.last_communication_received is not None:
                last = format_seconds_ago(sync.last_communication_received)
            elif self.is_server:
                last = "No client connected"
            else:
                last = "ERROR! cloud unreachable"
            report.add("Last Communication", last)
            report.add("Pending operations", sync.pending_operations)

        transfers = self.transfer_log.entries()
        report.add("File transfers", len(transfers))
        for entry in self.transfer_log.in_progress():
            report.add(f"  {entry.label}", f"{entry.name} {entry.part}/{entry.total}")

        errors = self.error_log.entries()
        report.add("Communication errors", len(errors))
        for entry in errors:
            report.add(f"  {entry.kind}", entry.description)
        return str(report)
