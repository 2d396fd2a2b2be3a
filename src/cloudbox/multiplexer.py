"""Multiplex admin and sync commands over one transport.

Outbound commands are resolved to a transport contact and wrapped in a
CommandEnvelope. Inbound messages are demultiplexed by sub-application id:
the admin id goes to the AdminDispatcher, the sync id to the sync engine,
anything else is ignored.
"""

import logging
from threading import Lock
from typing import Any, Iterable, Optional

from cloudbox.admin import AdminDispatcher
from cloudbox.commands import (
    ADMIN_APP_ID,
    SYNC_APP_ID,
    Command,
    CommandEnvelope,
    Target,
)
from cloudbox.errors import UnknownCommandError
from cloudbox.history import CommandLog
from cloudbox.protocols import InboundMessage

logger = logging.getLogger(__name__)


class CommandMultiplexer:
    """Route command datagrams between the transport and local handlers.

    Inbound dispatch runs on transport callback threads while sends come
    from application code, so shared state is guarded by a lock.
    """

    def __init__(
        self,
        dispatcher: AdminDispatcher,
        command_log: Optional[CommandLog] = None,
    ):
        """Initialize multiplexer.

        Args:
            dispatcher: Handler table for admin commands.
            command_log: Optional log of commands in both directions.
        """
        self.dispatcher = dispatcher
        self._command_log = command_log
        self._lock = Lock()
        self._context: Optional[Any] = None
        self._server_contact: Optional[Any] = None
        self._sync_engine: Optional[Any] = None
        self._contacts: dict[int, Any] = {}

    # ========================================================================
    # Wiring
    # ========================================================================

    def attach(self, context: Any) -> None:
        """Use context (a TransportContext) for outbound commands."""
        with self._lock:
            self._context = context

    def detach(self) -> None:
        """Forget the transport and every contact learned through it."""
        with self._lock:
            self._context = None
            self._server_contact = None
            self._contacts.clear()

    @property
    def server_contact(self) -> Optional[Any]:
        with self._lock:
            return self._server_contact

    @server_contact.setter
    def server_contact(self, contact: Optional[Any]) -> None:
        with self._lock:
            self._server_contact = contact

    def set_sync_engine(self, engine: Optional[Any]) -> None:
        """Set the sync engine receiving sync-channel commands."""
        with self._lock:
            self._sync_engine = engine

    @property
    def is_connected(self) -> bool:
        with self._lock:
            return self._context is not None and bool(self._context.is_connected)

    # ========================================================================
    # Contact registry
    # ========================================================================

    def register_contact(self, contact: Any) -> bool:
        """Record contact under its user id. First seen wins.

        Returns:
            True if the contact was added.
        """
        user_id = getattr(contact, "user_id", None)
        if user_id is None:
            return False
        with self._lock:
            if user_id in self._contacts:
                return False
            self._contacts[user_id] = contact
        logger.debug(f"Registered contact for user {user_id}")
        return True

    def get_contact(self, user_id: int) -> Optional[Any]:
        with self._lock:
            return self._contacts.get(user_id)

    def known_user_ids(self) -> list[int]:
        with self._lock:
            return list(self._contacts.keys())

    def _resolve(self, target: Optional[Target]) -> Optional[Any]:
        # Caller holds the lock
        if self._server_contact is not None:
            return self._server_contact
        if target is None:
            return None
        if isinstance(target, int):
            return self._contacts.get(target)
        return target

    # ========================================================================
    # Outbound
    # ========================================================================

    def send_command(
        self,
        target: Optional[Target],
        command: Command,
        parameters: Optional[Iterable[bytes]] = None,
    ) -> bool:
        """Send an admin command.

        Args:
            target: User id or contact. Ignored in favour of the server
                contact once one is registered.
            command: Command to send.
            parameters: Binary parameters.

        Returns:
            True if exactly one datagram was handed to the transport, False if
            no contact resolved or the transport is not connected.
        """
        return self._send(target, ADMIN_APP_ID, int(command), parameters)

    def send_sync_command(
        self,
        user_id: Optional[int],
        command: int,
        parameters: Optional[Iterable[bytes]] = None,
    ) -> bool:
        """Send callback handed to the sync engine (sync sub-application)."""
        return self._send(user_id, SYNC_APP_ID, command, parameters)

    def send_to_user(
        self,
        user_id: int,
        command: Command,
        parameters: Optional[Iterable[bytes]] = None,
    ) -> bool:
        """Send an admin command to a bare user id, without a contact.

        Used before the server contact is known (indirect QR credentials).
        """
        with self._lock:
            context = self._context
            if context is None or not context.is_connected:
                return False
        envelope = CommandEnvelope(
            target=user_id,
            app_id=ADMIN_APP_ID,
            command=int(command),
            parameters=tuple(parameters or ()),
        )
        context.send(envelope)
        self._log(user_id, envelope, is_output=True)
        return True

    def _send(
        self,
        target: Optional[Target],
        app_id: int,
        command: int,
        parameters: Optional[Iterable[bytes]],
    ) -> bool:
        with self._lock:
            context = self._context
            if context is None or not context.is_connected:
                logger.debug(f"Not connected, dropping command {command}")
                return False
            contact = self._resolve(target)
        if contact is None:
            logger.debug(f"No contact for {target}, dropping command {command}")
            return False

        envelope = CommandEnvelope(
            target=contact,
            app_id=app_id,
            command=command,
            parameters=tuple(parameters or ()),
        )
        context.send(envelope)
        self._log(getattr(contact, "user_id", None), envelope, is_output=True)
        return True

    # ========================================================================
    # Inbound
    # ========================================================================

    def on_inbound_message(self, message: InboundMessage) -> None:
        """Demultiplex one inbound message by sub-application id."""
        if message.app_id == ADMIN_APP_ID:
            self._on_admin_message(message)
        elif message.app_id == SYNC_APP_ID:
            self._on_sync_message(message)
        else:
            logger.debug(f"Ignoring message for sub-application {message.app_id}")

    def _on_admin_message(self, message: InboundMessage) -> None:
        user_id = getattr(message.contact, "user_id", None)
        try:
            command = Command.from_wire(message.command)
        except UnknownCommandError as e:
            logger.warning(f"{e} (user={user_id}), dropped")
            return
        self._log_inbound(user_id, message)
        self.dispatcher.dispatch(message.contact, command, list(message.parameters))

    def _on_sync_message(self, message: InboundMessage) -> None:
        user_id = getattr(message.contact, "user_id", None)
        if user_id is None:
            logger.debug("Ignoring sync command from contact without user id")
            return
        self.register_contact(message.contact)
        self._log_inbound(user_id, message)
        with self._lock:
            engine = self._sync_engine
        if engine is None:
            logger.debug(f"No sync session, dropping sync command {message.command}")
            return
        engine.on_command(user_id, message.command, list(message.parameters))

    def _log_inbound(self, user_id: Optional[int], message: InboundMessage) -> None:
        if self._command_log is not None:
            self._command_log.add(user_id, message.app_id, message.command, False)

    def _log(
        self, user_id: Optional[int], envelope: CommandEnvelope, is_output: bool
    ) -> None:
        if self._command_log is not None:
            self._command_log.add(
                user_id, envelope.app_id, envelope.command, is_output
            )
