"""AWS Secrets Manager credential store."""
import json
import logging
from enum import Enum
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from sync.errors import AuthCancelledError, AuthenticatorUnavailableError, AuthIOError

logger = logging.getLogger(__name__)


class TokenKind(Enum):
    """Credentials kept per account."""
    ACCESS_TOKEN = "access_token"
    FEED_UID = "feed_uid"
    FEED_KEY = "feed_key"


class SecretsManagerCredentialStore:
    """
    Credential store with one JSON secret per account.

    The secret ``{prefix}/{account}`` holds the OAuth access token and the
    uid/key pair that authorizes the iCal export URLs.
    """

    def __init__(self, prefix: str, region_name: str = None):
        self.prefix = prefix
        self.client = boto3.client('secretsmanager', region_name=region_name)

    def secret_id(self, account: str) -> str:
        return f"{self.prefix}/{account}"

    def get_token(self, account: str, kind: TokenKind) -> Optional[str]:
        """
        Read one token without prompting anybody.

        Args:
            account: Account name
            kind: Token to read

        Returns:
            Token value, None if the account has none stored

        Raises:
            AuthCancelledError: Access for the account was revoked
            AuthenticatorUnavailableError: Secrets Manager rejected the request
            AuthIOError: Secrets Manager could not be reached
        """
        secret = self._read_secret(account)
        if secret is None:
            return None
        value = secret.get(kind.value)
        return str(value) if value else None

    def invalidate_token(self, account: str, token: str) -> None:
        """Drop the access token so the next pass requires re-authentication."""
        secret = self._read_secret(account)
        if not secret or secret.get(TokenKind.ACCESS_TOKEN.value) != token:
            return

        secret.pop(TokenKind.ACCESS_TOKEN.value, None)
        try:
            self.client.put_secret_value(
                SecretId=self.secret_id(account),
                SecretString=json.dumps(secret),
            )
        except ClientError as e:
            raise AuthenticatorUnavailableError(f"Failed to invalidate token: {e}") from e
        except BotoCoreError as e:
            raise AuthIOError(f"Failed to invalidate token: {e}") from e
        logger.info(f"Invalidated access token for account {account}")

    def _read_secret(self, account: str) -> Optional[dict]:
        try:
            response = self.client.get_secret_value(SecretId=self.secret_id(account))
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code')
            if code == 'ResourceNotFoundException':
                return None
            if code == 'InvalidRequestException':
                # Secret scheduled for deletion: access was revoked
                raise AuthCancelledError(f"Credentials for {account} were revoked") from e
            raise AuthenticatorUnavailableError(f"Secrets Manager error ({code})") from e
        except BotoCoreError as e:
            raise AuthIOError(f"Secrets Manager unreachable: {e}") from e

        try:
            secret = json.loads(response.get('SecretString') or '{}')
        except ValueError as e:
            raise AuthenticatorUnavailableError(f"Secret for {account} is not valid JSON") from e
        return secret if isinstance(secret, dict) else None
