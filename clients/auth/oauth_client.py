"""
OAuth Client wrapper.
Blocking interface over the asynchronous login flow, for scripts.
"""
from typing import Optional

from config import SpotifyConfig
from .errors import MissingCredentialError, NoRefreshTokenError, TokenFetchError
from .spotify_auth import SpotifyAuthClient
from .token_manager import Credential
from utils import setup_logger


logger = setup_logger(__name__)


class OAuthClient:
    """
    Simple OAuth client wrapper.
    Waits on the login result instead of registering callbacks.
    """

    def __init__(self, config: SpotifyConfig, auth_client: Optional[SpotifyAuthClient] = None):
        """
        Initialize OAuth client.

        Args:
            config: Spotify configuration
            auth_client: Orchestrator to wrap (created from config if omitted)
        """
        self.config = config
        self.auth_client = auth_client or SpotifyAuthClient(config)

    def authenticate(self, timeout: Optional[float] = None) -> Credential:
        """
        Perform OAuth authentication flow and wait for it.

        Args:
            timeout: Seconds to wait; the attempt is cancelled when exceeded.
                Defaults to waiting for the login's own timeout.

        Returns:
            Stored credential

        Raises:
            TimeoutError: If timeout elapsed first
            SpotifyError: Whatever the login failed with
        """
        result = self.auth_client.login()
        try:
            return result.result(timeout)
        except TimeoutError:
            result.cancel()
            raise

    def get_token(self) -> str:
        """
        Get a valid access token, logging in when no usable credential exists.

        Returns:
            Access token
        """
        try:
            return self.auth_client.get_valid_token()
        except (MissingCredentialError, NoRefreshTokenError, TokenFetchError) as e:
            logger.warning(f"No usable token ({type(e).__name__}), re-authenticating...")
            return self.authenticate().access_token

    def is_authenticated(self) -> bool:
        """
        Check if we have a valid token.

        Returns:
            True if authenticated, False otherwise
        """
        if self.auth_client.token_manager.credential is None:
            self.auth_client.load_tokens()
        return self.auth_client.token_manager.is_valid()

    def clear_tokens(self) -> None:
        """Clear stored tokens."""
        self.auth_client.token_manager.clear_tokens()
        logger.info("Tokens cleared - re-authentication required")


__all__ = ['OAuthClient']
