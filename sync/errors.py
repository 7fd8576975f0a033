"""Exceptions raised by sync collaborators and handled by the sync engine."""


class SyncError(Exception):
    """Base class for recoverable sync failures."""


class TransportError(SyncError):
    """A feed request failed after all retry attempts."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class TokenExpiredError(TransportError):
    """The feed rejected the access token as expired or invalid."""


class FeedParseError(SyncError):
    """A feed page or document could not be decoded."""


class EventParseError(SyncError):
    """A single feed entry could not yield an identity and start time."""


class StoreError(SyncError):
    """The local store could not be reached or rejected an operation."""


class AuthCancelledError(SyncError):
    """The user cancelled or revoked access for the account."""


class AuthenticatorUnavailableError(SyncError):
    """The credential store could not be used."""


class AuthIOError(SyncError):
    """Transport failure while talking to the credential store."""
