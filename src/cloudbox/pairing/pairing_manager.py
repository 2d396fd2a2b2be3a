"""Pairing manager orchestrates login, logout and the sync lifecycle.

Turns a QR credential + PIN into an authenticated session:

1. logout() resets any previous session
2. The QR code is decoded (fails fast, no network wait)
3. A transport context is opened toward the credential's entry point
4. Once the transport is connected, the server contact is registered and
   the sync engine starts with a LoginCredential (pin + our public key)
5. login() waits, bounded, for the sync engine to report the outcome

Transport callbacks may arrive on transport-owned threads; they are
marshalled onto the event loop that opened the context.
"""

import asyncio
import base64
import functools
import logging
from pathlib import Path
from typing import Any, Callable, Coroutine, Optional

from cloudbox import vault as keys
from cloudbox.commands import Command
from cloudbox.config import PairingConfig
from cloudbox.crypto import generate_key_material, transform, validate_public_key
from cloudbox.errors import ContextExistsError, FormatError, NoContextError
from cloudbox.history import TransferLog
from cloudbox.multiplexer import CommandMultiplexer
from cloudbox.pairing.qr_codec import QrCredential, decode, try_decode
from cloudbox.pairing.session import LoginResult, LoginSession, PairingState
from cloudbox.protocols import (
    LoginCredential,
    SecretVault,
    SyncEngineFactory,
    TransportFactory,
)

logger = logging.getLogger(__name__)

LAST_ENTRY_POINT_FILE = "LastEntryPoint"
SERVER_CONTACT_NAME = "Server cloud"


class PairingManager:
    """Login/logout state machine for one cloud endpoint.

    login, logout and connect_to_server are serialized by an asyncio lock.
    The bounded wait inside login runs outside the lock; logout bumps a
    generation counter so a superseded wait returns CANCELLED instead of
    reporting on a session it no longer owns.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        sync_factory: SyncEngineFactory,
        vault: SecretVault,
        multiplexer: CommandMultiplexer,
        cloud_path: Path,
        state_dir: Path,
        instance_id: int,
        is_server: bool = False,
        license_oem: Optional[str] = None,
        config: Optional[PairingConfig] = None,
        on_communication_error: Optional[Callable[[str, str], None]] = None,
        transfer_log: Optional[TransferLog] = None,
    ):
        """Initialize pairing manager.

        Args:
            transport_factory: Opens transport contexts.
            sync_factory: Creates sync engine sessions.
            vault: Secret storage for pin and server key.
            multiplexer: Command router shared with the sync engine.
            cloud_path: Root directory synced by the engine.
            state_dir: Directory for the last-entry-point file.
            instance_id: Numeric id of the owning instance.
            is_server: True for the server role.
            license_oem: License blob handed to the transport.
            config: Timeouts and entry point defaults.
            on_communication_error: Called with (kind, description).
            transfer_log: Receives file transfer progress from the sync engine.
        """
        self._transport_factory = transport_factory
        self._sync_factory = sync_factory
        self.vault = vault
        self.multiplexer = multiplexer
        self.cloud_path = Path(cloud_path)
        self.state_dir = Path(state_dir)
        self.instance_id = instance_id
        self.is_server = is_server
        self.license_oem = license_oem
        self.config = config or PairingConfig()
        self._on_communication_error = on_communication_error
        self.transfer_log = transfer_log

        self.context: Optional[Any] = None  # TransportContext
        self.sync: Optional[Any] = None  # SyncEngine
        self._generation = 0
        self._session = LoginSession(generation=0)
        self._pending_indirect: Optional[QrCredential] = None
        self._failed_generation: Optional[int] = None

        self._lock = asyncio.Lock()
        self._state_changed = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: set[asyncio.Task] = set()

        multiplexer.dispatcher.register(
            Command.GET_ENCRYPTED_QR, self._on_get_encrypted_qr
        )

    # ========================================================================
    # State
    # ========================================================================

    @property
    def session(self) -> LoginSession:
        return self._session

    @property
    def state(self) -> PairingState:
        self._refresh_state()
        return self._session.state

    @property
    def is_logged(self) -> bool:
        """True once the sync engine reports an authenticated session."""
        return self.state == PairingState.AUTHENTICATED

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def last_entry_point_path(self) -> Path:
        return self.state_dir / LAST_ENTRY_POINT_FILE

    def last_entry_point(self) -> Optional[str]:
        """Entry point of the last login, if still persisted."""
        path = self.last_entry_point_path
        if not path.exists():
            return None
        return path.read_text().strip() or None

    def _refresh_state(self) -> None:
        if (
            self._session.state == PairingState.CREDENTIAL_EXCHANGE
            and self.sync is not None
            and self.sync.is_logged
        ):
            self._session.transition_to(PairingState.AUTHENTICATED)
            logger.info("Session authenticated")

    # ========================================================================
    # Context
    # ========================================================================

    async def create_context(
        self,
        entry_point: str,
        passphrase: Optional[str] = None,
        on_connection_change: Optional[Callable[[bool], None]] = None,
    ) -> None:
        """Open the transport context bound to entry_point.

        Args:
            entry_point: Rendezvous address for the transport.
            passphrase: Override for the identity passphrase.
            on_connection_change: Replaces the default connectivity callback.

        Raises:
            ContextExistsError: If a context is already open.
        """
        async with self._lock:
            self._create_context(entry_point, passphrase, on_connection_change)

    def _create_context(
        self,
        entry_point: str,
        passphrase: Optional[str] = None,
        on_connection_change: Optional[Callable[[bool], None]] = None,
    ) -> None:
        if self.context is not None:
            raise ContextExistsError(
                f"Transport context already open for instance {self.instance_id}"
            )

        self._loop = asyncio.get_running_loop()
        context = self._transport_factory(
            entry_point,
            network_name=self.config.network_name,
            passphrase=passphrase,
            instance_id=self.instance_id,
            license_oem=self.license_oem,
        )
        context.on_connection_change = on_connection_change or self._on_connection_change
        context.on_communication_error = self._on_transport_error
        context.on_message = self.multiplexer.on_inbound_message

        self.context = context
        self.multiplexer.attach(context)
        self._session = LoginSession(
            generation=self._generation,
            client_public_key=context.public_key,
        )
        self._session.transition_to(PairingState.CONTEXT_CREATED)
        self._session.transition_to(PairingState.AWAITING_TRANSPORT_CONNECT)
        logger.info(f"Transport context created for {entry_point}")

        if context.is_connected:
            context.on_connection_change(True)

    def _on_connection_change(self, connected: bool) -> None:
        logger.debug(f"Transport connectivity: {connected}")
        self._notify()
        if connected and self.sync is None:
            self._schedule(self.connect_to_server())

    def _on_transport_error(self, kind: str, description: str) -> None:
        logger.warning(f"Transport error ({kind}): {description}")
        if self._on_communication_error is not None:
            self._on_communication_error(kind, description)

    # ========================================================================
    # Connect / sync lifecycle
    # ========================================================================

    async def connect_to_server(
        self,
        server_public_key: Optional[bytes] = None,
        pin: Optional[str] = None,
    ) -> None:
        """Register the server contact and start the sync session.

        A client without a pin does nothing. A client holding a pending
        indirect credential first asks the server for its public key and
        continues when the answer arrives.

        Args:
            server_public_key: 33-byte key; read from the vault if None.
            pin: Server PIN; read from the vault if None.
        """
        async with self._lock:
            self._connect_to_server(server_public_key, pin)

    def _connect_to_server(
        self,
        server_public_key: Optional[bytes] = None,
        pin: Optional[str] = None,
    ) -> None:
        if self.context is None:
            logger.debug("No transport context, not connecting")
            return
        if self.sync is not None:
            return

        credential = None
        if not self.is_server:
            pin = pin or self.vault.get(keys.PIN)
            if not pin:
                logger.debug("No PIN stored, not connecting")
                return
            self.vault.set(keys.PIN, pin)

            if server_public_key is None:
                stored = self.vault.get(keys.SERVER_PUBLIC_KEY)
                if stored:
                    server_public_key = base64.b64decode(stored)
            if server_public_key is None:
                pending = self._pending_credential()
                if pending is not None:
                    self._request_server_key(pending)
                else:
                    logger.warning("No server public key, cannot connect")
                return

            self.vault.set(
                keys.SERVER_PUBLIC_KEY,
                base64.b64encode(server_public_key).decode("ascii"),
            )
            contact = self.context.add_contact(server_public_key, SERVER_CONTACT_NAME)
            self.multiplexer.server_contact = contact
            self._session.server_contact = contact
            self._session.pin = pin
            credential = LoginCredential(pin=pin, public_key=self.context.public_key)

        self.start_sync(credential)

    def start_sync(self, credential: Optional[LoginCredential] = None) -> None:
        """Start the sync engine on the open context.

        Args:
            credential: Client login credential; None for servers.

        Raises:
            NoContextError: If no transport context is open.
        """
        if self.context is None:
            raise NoContextError("Start sync requires a transport context")
        if self.sync is not None:
            self.stop_sync()

        self.sync = self._sync_factory(
            self.multiplexer.send_sync_command,
            self.context,
            self.cloud_path,
            credential,
        )
        self.multiplexer.set_sync_engine(self.sync)
        if self.transfer_log is not None:
            self.sync.on_file_transfer = self.transfer_log.update

        if self._session.state != PairingState.CREDENTIAL_EXCHANGE:
            self._session.transition_to(PairingState.CREDENTIAL_EXCHANGE)
        if self.is_server:
            self._session.transition_to(PairingState.AUTHENTICATED)
        logger.info("Sync session started")
        self._notify()

    def stop_sync(self) -> None:
        """Stop the sync engine. The transport stays open."""
        if self.sync is None:
            return
        sync, self.sync = self.sync, None
        self.multiplexer.set_sync_engine(None)
        sync.on_file_transfer = None
        sync.dispose()
        logger.info("Sync session stopped")

    # ========================================================================
    # Login / logout
    # ========================================================================

    async def login(
        self,
        qr_code: str,
        pin: str,
        entry_point: Optional[str] = None,
    ) -> LoginResult:
        """Log this client in to the server described by qr_code.

        Invalid QR codes and empty pins fail immediately. Everything else
        goes through a single bounded wait (config.login_timeout), after
        which the outcome is classified. There is no retry: call login
        again, which starts over from logout.

        Cancelling the calling task aborts the wait.

        Args:
            qr_code: Base64 QR text generated by the server.
            pin: Server PIN.
            entry_point: Used only when the QR code carries no entry point.

        Returns:
            The classified LoginResult.
        """
        if self.is_server:
            raise RuntimeError("Login is only meaningful for a client")

        async with self._lock:
            self._logout()

            try:
                credential = decode(
                    qr_code, self.config.build_mode, self.config.default_domain
                )
            except FormatError as e:
                logger.warning(f"Invalid QR code: {e}")
                return LoginResult.WRONG_QR
            if credential.is_indirect and not self.config.indirect_qr:
                logger.warning("Indirect QR codes are disabled")
                return LoginResult.WRONG_QR
            if not pin:
                return LoginResult.WRONG_PASSWORD

            if credential.entry_point_suffix or not entry_point:
                entry_point = credential.entry_point(
                    self.config.build_mode, self.config.default_domain
                )

            self._create_context(entry_point)
            self.vault.set(keys.PIN, pin)
            if credential.is_indirect:
                self.vault.set(keys.SERVER_PUBLIC_KEY, None)
                self.vault.set(keys.PENDING_QR, qr_code.strip())
            else:
                self.vault.set(keys.PENDING_QR, None)
                self.vault.set(
                    keys.SERVER_PUBLIC_KEY,
                    base64.b64encode(credential.server_public_key).decode("ascii"),
                )
            self._write_last_entry_point(entry_point)
            self._session.pin = pin
            generation = self._generation

        await self._wait_for_outcome(generation)

        async with self._lock:
            if generation != self._generation:
                logger.info("Login superseded by logout")
                return LoginResult.CANCELLED
            result = self._classify()
            step_failed = self._failed_generation == generation
            if result != LoginResult.SUCCESSFUL and not step_failed:
                self._session.last_error = result.value

        logger.info(f"Login result: {result.value}")
        return result

    async def login_ok(
        self, qr_code: str, pin: str, entry_point: Optional[str] = None
    ) -> bool:
        """Boolean form of login: True only for SUCCESSFUL."""
        return await self.login(qr_code, pin, entry_point) == LoginResult.SUCCESSFUL

    async def _wait_for_outcome(self, generation: int) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.login_timeout

        while generation == self._generation:
            self._state_changed.clear()
            if self._outcome_known():
                return
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            try:
                await asyncio.wait_for(
                    self._state_changed.wait(),
                    timeout=min(self.config.poll_interval, remaining),
                )
            except asyncio.TimeoutError:
                pass

    def _outcome_known(self) -> bool:
        if self._failed_generation == self._generation:
            return True
        self._refresh_state()
        if self.sync is not None and (self.sync.is_logged or self.sync.login_error):
            return True
        return self.context is not None and bool(self.context.license_expired)

    def _classify(self) -> LoginResult:
        # Priority order matters: first match wins
        self._refresh_state()
        sync = self.sync
        context = self.context

        if sync is not None and self._session.state == PairingState.AUTHENTICATED:
            return LoginResult.SUCCESSFUL
        if sync is not None and sync.login_error:
            return LoginResult.WRONG_PASSWORD
        if context is not None and context.license_expired:
            return LoginResult.LICENSE_EXPIRED
        if sync is None:
            return LoginResult.REMOTE_HOST_NOT_REACHABLE
        if context is not None and context.is_host_reachable():
            return LoginResult.CLOUD_NOT_RESPONDING
        return LoginResult.REMOTE_HOST_NOT_REACHABLE

    async def logout(self) -> bool:
        """Stop syncing, forget the server and close the transport.

        Returns:
            False if already logged out, True otherwise.
        """
        async with self._lock:
            return self._logout()

    def _logout(self) -> bool:
        self._generation += 1
        self._pending_indirect = None
        self.stop_sync()
        self._session.reset()
        self._session.generation = self._generation
        self._notify()

        if self.context is None:
            return False

        self.vault.set(keys.PIN, None)
        self.vault.set(keys.SERVER_PUBLIC_KEY, None)
        self.vault.set(keys.PENDING_QR, None)
        self._delete_last_entry_point()
        self._dispose_context()
        logger.info("Logged out")
        return True

    def close(self) -> None:
        """Stop syncing and dispose the transport, keeping all secrets."""
        self._generation += 1
        self._pending_indirect = None
        self.stop_sync()
        self._session.reset()
        self._notify()
        if self.context is not None:
            self._dispose_context()

    def _dispose_context(self) -> None:
        context, self.context = self.context, None
        self.multiplexer.detach()
        context.on_connection_change = None
        context.on_message = None
        context.dispose()

    def _write_last_entry_point(self, entry_point: str) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.last_entry_point_path.write_text(entry_point)

    def _delete_last_entry_point(self) -> None:
        path = self.last_entry_point_path
        if path.exists():
            path.unlink()

    # ========================================================================
    # Indirect (type-2) credentials
    # ========================================================================

    def generate_credential(
        self, indirect: bool = False, entry_point_suffix: str = ""
    ) -> QrCredential:
        """Create the credential a client needs to pair with this server.

        An indirect credential stores fresh key material in the vault so
        GetEncryptedQR requests can be answered.

        Raises:
            NoContextError: If no transport context is open.
        """
        if self.context is None:
            raise NoContextError("Generating a QR credential requires a context")
        if not indirect:
            return QrCredential.direct(self.context.public_key, entry_point_suffix)

        key_material = generate_key_material()
        self.vault.set(
            keys.QR_KEY_MATERIAL, base64.b64encode(key_material).decode("ascii")
        )
        return QrCredential.indirect(
            self.context.user_id, key_material, entry_point_suffix
        )

    def _pending_credential(self) -> Optional[QrCredential]:
        qr_code = self.vault.get(keys.PENDING_QR)
        if not qr_code:
            return None
        credential = try_decode(
            qr_code, self.config.build_mode, self.config.default_domain
        )
        if credential is None or not credential.is_indirect:
            return None
        return credential

    def _request_server_key(self, credential: QrCredential) -> None:
        self._pending_indirect = credential
        if self.multiplexer.send_to_user(credential.server_id, Command.GET_ENCRYPTED_QR):
            logger.info(f"Requested public key from server {credential.server_id}")
        else:
            logger.warning("Transport not connected, server key request not sent")

    def _on_get_encrypted_qr(
        self, contact: Any, command: Command, parameters: list[bytes]
    ) -> None:
        if self.is_server:
            self._answer_key_request(contact)
        else:
            self._complete_indirect(contact, parameters)

    def _answer_key_request(self, contact: Any) -> None:
        encoded = self.vault.get(keys.QR_KEY_MATERIAL)
        if encoded is None or self.context is None:
            logger.warning("Public key requested but no indirect QR was issued")
            return
        masked = transform(base64.b64decode(encoded), self.context.public_key)
        self.multiplexer.send_command(contact, Command.GET_ENCRYPTED_QR, [masked])
        logger.info(f"Sent public key to user {getattr(contact, 'user_id', None)}")

    def _complete_indirect(self, contact: Any, parameters: list[bytes]) -> None:
        pending = self._pending_indirect
        if pending is None or not parameters:
            logger.debug("Unexpected GetEncryptedQR answer ignored")
            return

        try:
            server_public_key = validate_public_key(
                transform(pending.key_material, parameters[0])
            )
        except FormatError as e:
            logger.warning(f"Server key from indirect QR rejected: {e}")
            self._session.last_error = str(e)
            return

        sender_key = getattr(contact, "public_key", None)
        if sender_key is not None and bytes(sender_key) != server_public_key:
            logger.warning("Indirect QR answer came from a different key, ignored")
            return

        self._pending_indirect = None
        self._schedule(self.connect_to_server(server_public_key=server_public_key))

    # ========================================================================
    # Event loop plumbing
    # ========================================================================

    def _on_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def _notify(self) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        if self._on_loop_thread():
            self._state_changed.set()
        else:
            loop.call_soon_threadsafe(self._state_changed.set)

    def _schedule(self, coro: Coroutine[Any, Any, None]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            coro.close()
            logger.warning("No event loop, dropping scheduled pairing step")
            return
        on_done = functools.partial(self._on_step_done, self._generation)
        if self._on_loop_thread():
            task = loop.create_task(coro)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            task.add_done_callback(on_done)
        else:
            future = asyncio.run_coroutine_threadsafe(coro, loop)
            future.add_done_callback(on_done)

    def _on_step_done(self, generation: int, future: Any) -> None:
        """Surface the failure of a scheduled pairing step.

        The login waiting on this generation stops waiting and keeps the
        error as the session's last_error.
        """
        if future.cancelled():
            return
        error = future.exception()
        if error is None:
            return
        logger.error(f"Pairing step failed: {error!r}", exc_info=error)
        if generation != self._generation:
            return
        self._failed_generation = generation
        self._session.last_error = f"{type(error).__name__}: {error}"
        self._notify()
