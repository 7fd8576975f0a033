"""Credential acquisition for a sync pass."""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from services.credentials import TokenKind
from sync.errors import AuthCancelledError, AuthenticatorUnavailableError, AuthIOError

logger = logging.getLogger(__name__)


class AuthFailureKind(Enum):
    CANCELLED = "cancelled"
    UNAVAILABLE = "unavailable"
    IO = "io"


@dataclass(frozen=True)
class Credential:
    account: str
    access_token: str


@dataclass(frozen=True)
class NeedsReauth:
    account: str


@dataclass(frozen=True)
class AuthFailure:
    kind: AuthFailureKind
    message: str


@dataclass(frozen=True)
class FeedTokens:
    uid: str
    key: str


_FAILURE_KINDS = (
    (AuthCancelledError, AuthFailureKind.CANCELLED),
    (AuthenticatorUnavailableError, AuthFailureKind.UNAVAILABLE),
    (AuthIOError, AuthFailureKind.IO),
)


class AuthGate:
    """Decides whether a pass holds a usable credential."""

    def __init__(self, credential_store):
        self.credential_store = credential_store

    def acquire_credential(self, account: str) -> Union[Credential, NeedsReauth, AuthFailure]:
        """
        Request the access token without prompting the user.

        Args:
            account: Account name

        Returns:
            Credential, NeedsReauth when no token is stored, or AuthFailure
        """
        try:
            token = self.credential_store.get_token(account, TokenKind.ACCESS_TOKEN)
        except (AuthCancelledError, AuthenticatorUnavailableError, AuthIOError) as e:
            logger.error(f"Failed to obtain auth token: {e}")
            return AuthFailure(kind=self._failure_kind(e), message=str(e))

        if not token:
            logger.debug("Needs to reauthenticate, will wait for user")
            return NeedsReauth(account=account)

        logger.debug("Access token received")
        return Credential(account=account, access_token=token)

    def acquire_feed_tokens(self, account: str, credential: Credential) -> Optional[FeedTokens]:
        """
        Fetch the uid/key pair authorizing the iCal feeds.

        Missing tokens invalidate the access token, so the next pass asks
        the user to re-authenticate.

        Args:
            account: Account name
            credential: Credential of the running pass

        Returns:
            FeedTokens, or None if the iCal feeds cannot be used this pass
        """
        try:
            uid = self.credential_store.get_token(account, TokenKind.FEED_UID)
            key = self.credential_store.get_token(account, TokenKind.FEED_KEY)
        except (AuthCancelledError, AuthenticatorUnavailableError, AuthIOError) as e:
            logger.error(f"Failed to obtain UID/KEY tokens: {e}")
            return None

        if not uid or not key:
            logger.error("Failed to obtain UID/KEY tokens from credential store")
            self.invalidate(credential)
            return None
        return FeedTokens(uid=uid, key=key)

    def invalidate(self, credential: Credential) -> None:
        try:
            self.credential_store.invalidate_token(credential.account, credential.access_token)
        except (AuthCancelledError, AuthenticatorUnavailableError, AuthIOError) as e:
            logger.error(f"Failed to invalidate access token: {e}")

    @staticmethod
    def _failure_kind(error: Exception) -> AuthFailureKind:
        for error_type, kind in _FAILURE_KINDS:
            if isinstance(error, error_type):
                return kind
        return AuthFailureKind.UNAVAILABLE
