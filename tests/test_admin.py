"""Tests for the admin command dispatcher."""

from unittest.mock import MagicMock

import pytest

from cloudbox.admin import AdminDispatcher
from cloudbox.commands import Command
from cloudbox.errors import UnknownCommandError
from fakes import FakeContact


class TestCommand:
    """Tests for wire decoding of commands."""

    def test_known_codes(self):
        """Every wire value 0-7 decodes."""
        assert [Command.from_wire(i) for i in range(8)] == list(Command)

    def test_get_encrypted_qr_code(self):
        assert Command.from_wire(5) is Command.GET_ENCRYPTED_QR

    @pytest.mark.parametrize("code", [8, 255, 65535, -1])
    def test_unknown_code(self, code):
        """Out-of-range values raise UnknownCommandError."""
        with pytest.raises(UnknownCommandError) as exc_info:
            Command.from_wire(code)
        assert exc_info.value.code == code


class TestAdminDispatcher:
    """Tests for AdminDispatcher."""

    @pytest.fixture
    def dispatcher(self):
        return AdminDispatcher()

    def test_register_and_dispatch(self, dispatcher):
        """Registered handler receives contact, command and parameters."""
        handler = MagicMock()
        contact = FakeContact(user_id=1)
        dispatcher.register(Command.SAVE_DATA, handler)

        dispatcher.dispatch(contact, Command.SAVE_DATA, [b"k", b"v"])

        handler.assert_called_once_with(contact, Command.SAVE_DATA, [b"k", b"v"])

    def test_register_replaces(self, dispatcher):
        """Registering twice keeps the latest handler."""
        first, second = MagicMock(), MagicMock()
        dispatcher.register(Command.LOAD_DATA, first)
        dispatcher.register(Command.LOAD_DATA, second)

        dispatcher.dispatch(FakeContact(user_id=1), Command.LOAD_DATA, [])

        first.assert_not_called()
        second.assert_called_once()

    def test_no_handler_logged(self, dispatcher, caplog):
        """Commands without a handler are logged and dropped."""
        dispatcher.dispatch(FakeContact(user_id=1), Command.GET_SSH_ACCESS, [])
        assert "No handler for command: GET_SSH_ACCESS" in caplog.text

    def test_handler_error_contained(self, dispatcher, caplog):
        """Handler exceptions are logged, not raised."""
        dispatcher.register(
            Command.DELETE_DATA, MagicMock(side_effect=RuntimeError("boom"))
        )

        dispatcher.dispatch(FakeContact(user_id=8), Command.DELETE_DATA, [])

        assert "Handler error for DELETE_DATA (user=8): boom" in caplog.text

    def test_unregister(self, dispatcher):
        dispatcher.register(Command.SAVE_DATA, MagicMock())

        assert dispatcher.unregister(Command.SAVE_DATA) is True
        assert dispatcher.unregister(Command.SAVE_DATA) is False
        assert not dispatcher.has_handler(Command.SAVE_DATA)

    def test_get_registered_commands(self, dispatcher):
        dispatcher.register(Command.SAVE_DATA, MagicMock())
        dispatcher.register(Command.LOAD_DATA, MagicMock())

        assert set(dispatcher.get_registered_commands()) == {
            Command.SAVE_DATA,
            Command.LOAD_DATA,
        }
