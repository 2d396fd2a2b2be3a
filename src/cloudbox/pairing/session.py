"""Login session state machine.

Tracks one attempt to turn a PIN + QR credential into an authenticated
session, with validated state transitions.
"""

import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Optional


class PairingState(Enum):
    """Pairing/login states."""

    DISCONNECTED = auto()
    CONTEXT_CREATED = auto()
    AWAITING_TRANSPORT_CONNECT = auto()
    CREDENTIAL_EXCHANGE = auto()
    AUTHENTICATED = auto()


class LoginResult(Enum):
    """Outcome of a login attempt."""

    SUCCESSFUL = "successful"
    WRONG_QR = "wrong_qr"
    WRONG_PASSWORD = "wrong_password"
    LICENSE_EXPIRED = "license_expired"
    REMOTE_HOST_NOT_REACHABLE = "remote_host_not_reachable"
    CLOUD_NOT_RESPONDING = "cloud_not_responding"
    CANCELLED = "cancelled"  # superseded by logout


_VALID_TRANSITIONS = {
    PairingState.DISCONNECTED: {PairingState.CONTEXT_CREATED},
    PairingState.CONTEXT_CREATED: {
        PairingState.AWAITING_TRANSPORT_CONNECT,
        PairingState.CREDENTIAL_EXCHANGE,
    },
    PairingState.AWAITING_TRANSPORT_CONNECT: {PairingState.CREDENTIAL_EXCHANGE},
    PairingState.CREDENTIAL_EXCHANGE: {PairingState.AUTHENTICATED},
    PairingState.AUTHENTICATED: {PairingState.CREDENTIAL_EXCHANGE},
}


@dataclass
class LoginSession:
    """State of one login, from create_context until logout.

    Attributes:
        generation: Incremented by logout; a stale wait compares against it.
        pin: PIN presented to the server (clients only).
        client_public_key: Our transport public key.
        server_contact: Transport contact of the server, once registered.
        state: Current pairing state.
        last_error: Last failure description, if any.
        created_at: Unix timestamp of creation.
    """

    generation: int
    pin: Optional[str] = None
    client_public_key: Optional[bytes] = None
    server_contact: Optional[Any] = None
    state: PairingState = PairingState.DISCONNECTED
    last_error: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    def transition_to(self, new_state: PairingState) -> None:
        """Transition to a new state with validation.

        Raises:
            ValueError: If transition is not valid from current state.
        """
        if new_state not in _VALID_TRANSITIONS.get(self.state, set()):
            raise ValueError(f"Invalid transition: {self.state} -> {new_state}")
        self.state = new_state

    def reset(self) -> None:
        """Return to DISCONNECTED (valid from any state)."""
        self.state = PairingState.DISCONNECTED
        self.server_contact = None
        self.pin = None
