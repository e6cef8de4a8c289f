"""
Token Manager for storing and retrieving OAuth credentials.
Holds the access/refresh token pair in memory and persists it to disk.
"""
import json
import os
import stat
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import (
    MalformedTokenError,
    MissingAccessTokenError,
    MissingCredentialError,
    MissingExpirationTimeError,
    MissingRefreshTokenError,
    NoRefreshTokenError,
)
from utils import setup_logger


logger = setup_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Credential:
    """
    Provider-issued grant.

    ``expires_at`` is always an absolute, timezone-aware instant so the
    value survives load/save cycles without clock-drift ambiguity.
    """
    access_token: str
    expires_at: datetime
    token_type: str = 'Bearer'
    refresh_token: Optional[str] = None
    scope: str = ''

    @classmethod
    def from_response(
        cls,
        data: Any,
        require_refresh_token: bool,
        now: Optional[datetime] = None
    ) -> 'Credential':
        """
        Build a credential from a token endpoint response.

        Args:
            data: Decoded JSON body
            require_refresh_token: True for the initial authorization-code grant
            now: Receipt time used to turn expires_in into an instant

        Raises:
            MalformedTokenError: If the payload is not an object or has bad types
            MissingAccessTokenError, MissingExpirationTimeError,
            MissingRefreshTokenError: If a required field is absent
        """
        if not isinstance(data, dict):
            raise MalformedTokenError(f"Token payload is not an object: {type(data).__name__}")
        if not data.get('access_token'):
            raise MissingAccessTokenError("Token payload has no access_token")
        if data.get('expires_in') is None:
            raise MissingExpirationTimeError("Token payload has no expires_in")
        if require_refresh_token and not data.get('refresh_token'):
            raise MissingRefreshTokenError("Initial grant has no refresh_token")

        expires_in = data['expires_in']
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
            raise MalformedTokenError(f"expires_in is not a number: {expires_in!r}")

        received_at = now or _utcnow()
        return cls(
            access_token=_as_str(data, 'access_token'),
            expires_at=received_at + timedelta(seconds=expires_in),
            token_type=_as_str(data, 'token_type', 'Bearer'),
            refresh_token=data.get('refresh_token') and _as_str(data, 'refresh_token'),
            scope=_as_str(data, 'scope', '')
        )

    @classmethod
    def from_dict(cls, data: Any) -> 'Credential':
        """
        Build a credential from its persisted form.

        Raises:
            MalformedTokenError, MissingAccessTokenError,
            MissingExpirationTimeError, MissingRefreshTokenError
        """
        if not isinstance(data, dict):
            raise MalformedTokenError("Stored credential is not an object")
        if not data.get('access_token'):
            raise MissingAccessTokenError("Stored credential has no access_token")
        if not data.get('expires_at'):
            raise MissingExpirationTimeError("Stored credential has no expires_at")
        if not data.get('refresh_token'):
            raise MissingRefreshTokenError("Stored credential has no refresh_token")

        try:
            expires_at = datetime.fromisoformat(data['expires_at'])
        except (TypeError, ValueError) as e:
            raise MalformedTokenError(f"Invalid expires_at: {e}") from e
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)

        return cls(
            access_token=_as_str(data, 'access_token'),
            expires_at=expires_at,
            token_type=_as_str(data, 'token_type', 'Bearer'),
            refresh_token=_as_str(data, 'refresh_token'),
            scope=_as_str(data, 'scope', '')
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'access_token': self.access_token,
            'token_type': self.token_type,
            'expires_at': self.expires_at.isoformat(),
            'refresh_token': self.refresh_token,
            'scope': self.scope
        }

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """True iff an access token is present and now is strictly before expiry."""
        return bool(self.access_token) and (now or _utcnow()) < self.expires_at


def _as_str(data: Dict[str, Any], key: str, default: Optional[str] = None) -> str:
    value = data.get(key, default)
    if value is None:
        value = default
    if not isinstance(value, str):
        raise MalformedTokenError(f"{key} is not a string: {value!r}")
    return value


class TokenManager:
    """
    Manages OAuth credential storage and retrieval.

    The only component that mutates the held credential. Every change
    is written back to a JSON file readable by the owner only.
    """

    def __init__(self, storage_path: Path):
        """
        Initialize token manager.

        Args:
            storage_path: Path to token storage file
        """
        self.storage_path = Path(storage_path)
        self._credential: Optional[Credential] = None
        self._lock = threading.RLock()

    @property
    def credential(self) -> Optional[Credential]:
        with self._lock:
            return self._credential

    @property
    def access_token(self) -> Optional[str]:
        with self._lock:
            return self._credential.access_token if self._credential else None

    @property
    def refresh_token(self) -> str:
        """
        Current refresh token.

        Raises:
            NoRefreshTokenError: If no refresh token was ever held
        """
        with self._lock:
            if not self._credential or not self._credential.refresh_token:
                raise NoRefreshTokenError("No refresh token available, login required")
            return self._credential.refresh_token

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """Check whether the held access token is present and unexpired."""
        with self._lock:
            return self._credential is not None and self._credential.is_valid(now)

    def set(self, credential: Credential) -> Credential:
        """
        Replace the held credential and persist it.

        A credential without a refresh token (typical for refresh
        responses) keeps the previously held refresh token.

        Returns:
            The credential now held
        """
        with self._lock:
            if not credential.refresh_token and self._credential:
                credential = replace(credential, refresh_token=self._credential.refresh_token)
            self._credential = credential
            self.save()
            return credential

    def load(self) -> Credential:
        """
        Load the credential from storage.

        Returns:
            Loaded credential

        Raises:
            MissingCredentialError: If nothing is stored yet
            TokenParseError: If the stored file cannot be read or parsed
                (subclass names the missing field)
        """
        if not self.storage_path.exists():
            logger.debug(f"No stored tokens at {self.storage_path}")
            raise MissingCredentialError(f"No stored credential at {self.storage_path}")

        try:
            with open(self.storage_path, 'r') as f:
                data = json.load(f)
        except ValueError as e:
            raise MalformedTokenError(f"Stored credential is not valid JSON: {e}") from e
        except OSError as e:
            raise MalformedTokenError(f"Stored credential is unreadable: {e}") from e

        credential = Credential.from_dict(data)
        with self._lock:
            self._credential = credential

        logger.debug("Tokens loaded from storage")
        return credential

    def save(self) -> None:
        """Write the held credential to storage. Does nothing when empty."""
        with self._lock:
            if self._credential is None:
                logger.debug("No tokens to save")
                return
            token_data = self._credential.to_dict()

            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            try:
                with open(self.storage_path, 'w') as f:
                    json.dump(token_data, f, indent=2)
                os.chmod(self.storage_path, stat.S_IRUSR | stat.S_IWUSR)
            except OSError as e:
                logger.error(f"Failed to save tokens: {e}")
                raise

        logger.debug(f"Tokens saved to {self.storage_path}")

    def clear_tokens(self) -> None:
        """Forget the held credential and delete stored tokens."""
        with self._lock:
            self._credential = None
            if self.storage_path.exists():
                self.storage_path.unlink()
                logger.info("Tokens cleared")
