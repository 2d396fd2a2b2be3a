"""Base exceptions for CloudBox."""


class CloudBoxError(Exception):
    """Base exception for all CloudBox errors."""

    pass


class FormatError(CloudBoxError):
    """Malformed QR credential (base64, type tag, public key or entry point)."""

    pass


class AuthError(CloudBoxError):
    """Wrong PIN or explicit server-side rejection."""

    pass


class ConnectivityError(CloudBoxError):
    """Transport unreachable or host not responding."""

    pass


class LicenseError(CloudBoxError):
    """License activation expired."""

    pass


class TransportError(CloudBoxError):
    """Lower-layer communication fault."""

    pass


class UnknownCommandError(CloudBoxError):
    """Inbound command code outside the known command set."""

    def __init__(self, code: int):
        super().__init__(f"Unknown command code: {code}")
        self.code = code


class StorageError(CloudBoxError):
    """Storage operation error."""

    pass


class ContextExistsError(CloudBoxError):
    """A transport context is already open for this instance."""

    pass


class NoContextError(CloudBoxError):
    """Operation requires an open transport context."""

    pass
