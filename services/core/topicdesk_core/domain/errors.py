"""Error taxonomy shared by the relay services."""

from typing import Optional


class RelayError(Exception):
    """Base exception for relay operations."""
    pass


class TransportError(RelayError):
    """A remote messaging call failed or returned malformed data.

    ``description`` is the remote platform's human-readable reason.
    """

    def __init__(
        self,
        description: str,
        method: Optional[str] = None,
        error_code: Optional[int] = None,
    ):
        super().__init__(f"{method} failed: {description}" if method else description)
        self.description = description
        self.method = method
        self.error_code = error_code


class ValidationError(RelayError):
    """Malformed admin input or callback payload."""
    pass


class NotFoundError(RelayError):
    """A thread, user or ledger lookup came back empty."""
    pass


class PermissionDeniedError(RelayError):
    """A non-admin tried to use an admin-only control."""
    pass
