"""Route pairing/admin commands to registered handlers."""

import logging
from typing import Any, Callable

from cloudbox.commands import Command

logger = logging.getLogger(__name__)

# Handler: function taking (contact, command, parameters)
Handler = Callable[[Any, Command, list[bytes]], None]


class AdminDispatcher:
    """Route admin commands to handlers registered per Command.

    Handlers run on the transport's callback thread and must not block.
    """

    def __init__(self) -> None:
        self._handlers: dict[Command, Handler] = {}

    def register(self, command: Command, handler: Handler) -> None:
        """Register (or replace) the handler for a command."""
        self._handlers[command] = handler
        logger.debug(f"Registered handler for: {command.name}")

    def unregister(self, command: Command) -> bool:
        """Unregister a handler.

        Returns:
            True if handler was removed, False if not found.
        """
        if command in self._handlers:
            del self._handlers[command]
            logger.debug(f"Unregistered handler for: {command.name}")
            return True
        return False

    def has_handler(self, command: Command) -> bool:
        """Check if handler exists for command."""
        return command in self._handlers

    def get_registered_commands(self) -> list[Command]:
        """Get list of commands with a handler."""
        return list(self._handlers.keys())

    def dispatch(self, contact: Any, command: Command, parameters: list[bytes]) -> None:
        """Dispatch a command to its handler.

        Handler exceptions are logged, never propagated to the transport.

        Args:
            contact: Sender contact.
            command: Decoded command.
            parameters: Binary parameters.
        """
        handler = self._handlers.get(command)

        if handler is None:
            logger.warning(f"No handler for command: {command.name}")
            return

        try:
            handler(contact, command, parameters)
        except Exception as e:
            user_id = getattr(contact, "user_id", None)
            logger.error(f"Handler error for {command.name} (user={user_id}): {e}")
