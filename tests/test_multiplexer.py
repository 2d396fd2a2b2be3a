"""Tests for the command multiplexer."""

from unittest.mock import MagicMock

import pytest

from cloudbox.admin import AdminDispatcher
from cloudbox.commands import ADMIN_APP_ID, SYNC_APP_ID, Command, app_id
from cloudbox.history import CommandLog
from cloudbox.multiplexer import CommandMultiplexer
from cloudbox.protocols import InboundMessage
from fakes import FakeContact


@pytest.fixture
def context():
    """Connected transport context."""
    context = MagicMock()
    context.is_connected = True
    return context


@pytest.fixture
def dispatcher():
    return AdminDispatcher()


@pytest.fixture
def command_log():
    return CommandLog()


@pytest.fixture
def mux(dispatcher, command_log, context):
    """Multiplexer attached to a connected context."""
    mux = CommandMultiplexer(dispatcher, command_log)
    mux.attach(context)
    return mux


class TestAppIds:
    """Tests for sub-application ids."""

    def test_first_two_bytes_little_endian(self):
        """Ids are the first two ASCII bytes as a little-endian u16."""
        assert app_id("cloud") == 0x6C63
        assert app_id("sync") == 0x7973

    def test_admin_and_sync_differ(self):
        assert ADMIN_APP_ID != SYNC_APP_ID

    def test_short_tag_rejected(self):
        with pytest.raises(ValueError):
            app_id("x")


class TestSendCommand:
    """Tests for outbound admin commands."""

    def test_unknown_user_returns_false(self, mux, context):
        """An unregistered user id resolves to nothing."""
        assert mux.send_command(12345, Command.SAVE_DATA, [b"x"]) is False
        context.send.assert_not_called()

    def test_none_target_returns_false(self, mux, context):
        """No target and no server contact sends nothing."""
        assert mux.send_command(None, Command.LOAD_DATA) is False
        context.send.assert_not_called()

    def test_not_connected_returns_false(self, mux, context):
        """A disconnected transport sends nothing."""
        contact = FakeContact(user_id=7)
        mux.register_contact(contact)
        context.is_connected = False

        assert mux.send_command(7, Command.SAVE_DATA) is False
        context.send.assert_not_called()

    def test_detached_returns_false(self, mux, context):
        """After detach nothing is sent."""
        mux.detach()
        assert mux.send_command(FakeContact(user_id=1), Command.SAVE_DATA) is False

    def test_detach_forgets_contacts(self, mux, context):
        """Users seen on a previous transport do not resolve after reattach."""
        mux.register_contact(FakeContact(user_id=7))
        mux.detach()
        mux.attach(context)

        assert mux.get_contact(7) is None
        assert mux.known_user_ids() == []
        assert mux.send_command(7, Command.SAVE_DATA) is False
        context.send.assert_not_called()

    def test_registered_user_sends_one_datagram(self, mux, context):
        """A known user id gets exactly one admin datagram."""
        contact = FakeContact(user_id=7)
        mux.register_contact(contact)

        assert mux.send_command(7, Command.DELETE_DATA, [b"key"]) is True

        context.send.assert_called_once()
        envelope = context.send.call_args[0][0]
        assert envelope.target is contact
        assert envelope.app_id == ADMIN_APP_ID
        assert envelope.command == int(Command.DELETE_DATA)
        assert envelope.parameters == (b"key",)
        assert envelope.to_user_id is False

    def test_contact_target_used_directly(self, mux, context):
        """A contact object needs no registration."""
        contact = FakeContact(user_id=3)
        assert mux.send_command(contact, Command.PUSH_NOTIFICATION) is True
        assert context.send.call_args[0][0].target is contact

    def test_server_contact_takes_precedence(self, mux, context):
        """Clients always talk to their server."""
        server = FakeContact(user_id=1)
        other = FakeContact(user_id=2)
        mux.register_contact(other)
        mux.server_contact = server

        assert mux.send_command(2, Command.LOAD_ALL_DATA) is True
        assert context.send.call_args[0][0].target is server

    def test_sync_command_uses_sync_app_id(self, mux, context):
        """Sync engine sends go out on the sync channel."""
        mux.register_contact(FakeContact(user_id=9))

        assert mux.send_sync_command(9, 42, [b"p"]) is True
        envelope = context.send.call_args[0][0]
        assert envelope.app_id == SYNC_APP_ID
        assert envelope.command == 42

    def test_send_to_user_targets_bare_id(self, mux, context):
        """send_to_user needs no contact."""
        assert mux.send_to_user(55, Command.GET_ENCRYPTED_QR) is True
        envelope = context.send.call_args[0][0]
        assert envelope.target == 55
        assert envelope.to_user_id is True

    def test_outbound_logged(self, mux, command_log):
        """Sent commands are recorded as output."""
        mux.register_contact(FakeContact(user_id=7))
        mux.send_command(7, Command.SAVE_DATA)

        entry = command_log.latest()
        assert entry.user_id == 7
        assert entry.command == int(Command.SAVE_DATA)
        assert entry.is_output


class TestContacts:
    """Tests for the user id to contact registry."""

    def test_first_seen_wins(self, mux):
        """A second contact for the same user id is ignored."""
        first = FakeContact(user_id=5)
        second = FakeContact(user_id=5)

        assert mux.register_contact(first) is True
        assert mux.register_contact(second) is False
        assert mux.get_contact(5) is first

    def test_contact_without_user_id_ignored(self, mux):
        assert mux.register_contact(FakeContact(user_id=None)) is False
        assert mux.known_user_ids() == []


class TestInbound:
    """Tests for inbound demultiplexing."""

    def test_admin_command_dispatched(self, mux, dispatcher):
        """Admin messages reach the registered handler."""
        handler = MagicMock()
        dispatcher.register(Command.GET_SUPPORTED_APPS, handler)
        sender = FakeContact(user_id=4)

        mux.on_inbound_message(
            InboundMessage(sender, ADMIN_APP_ID, 7, (b"a", b"b"))
        )

        handler.assert_called_once_with(
            sender, Command.GET_SUPPORTED_APPS, [b"a", b"b"]
        )

    def test_unknown_admin_code_dropped(self, mux, dispatcher, command_log):
        """Codes outside the command set never reach a handler."""
        handler = MagicMock()
        for command in Command:
            dispatcher.register(command, handler)

        mux.on_inbound_message(InboundMessage(FakeContact(user_id=4), ADMIN_APP_ID, 99))

        handler.assert_not_called()
        assert len(command_log) == 0

    def test_sync_command_forwarded(self, mux):
        """Sync messages go to the engine and register the sender."""
        engine = MagicMock()
        mux.set_sync_engine(engine)
        sender = FakeContact(user_id=11)

        mux.on_inbound_message(InboundMessage(sender, SYNC_APP_ID, 3, (b"x",)))

        engine.on_command.assert_called_once_with(11, 3, [b"x"])
        assert mux.get_contact(11) is sender

    def test_sync_without_engine(self, mux):
        """The contact is still registered with no engine running."""
        sender = FakeContact(user_id=12)
        mux.on_inbound_message(InboundMessage(sender, SYNC_APP_ID, 1))
        assert mux.get_contact(12) is sender

    def test_other_app_id_ignored(self, mux, dispatcher, command_log):
        """Messages for other sub-applications are dropped."""
        handler = MagicMock()
        dispatcher.register(Command.SAVE_DATA, handler)
        engine = MagicMock()
        mux.set_sync_engine(engine)

        mux.on_inbound_message(
            InboundMessage(FakeContact(user_id=1), app_id("zz"), 0)
        )

        handler.assert_not_called()
        engine.on_command.assert_not_called()
        assert len(command_log) == 0

    def test_inbound_logged_as_input(self, mux, dispatcher, command_log):
        dispatcher.register(Command.SAVE_DATA, MagicMock())
        mux.on_inbound_message(InboundMessage(FakeContact(user_id=2), ADMIN_APP_ID, 0))

        assert command_log.latest().is_input
