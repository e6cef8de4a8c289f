"""
Consent prompt.
Sends the user to Spotify's authorize page in their browser.
"""
import urllib.parse
import webbrowser

from config import SpotifyConfig
from .errors import OpenPromptError
from utils import setup_logger


logger = setup_logger(__name__)


class BrowserPrompt:
    """Opens the authorization URL for a login attempt in the default browser."""

    def __init__(self, config: SpotifyConfig):
        self.config = config

    def authorization_url(self, state: str) -> str:
        """
        Build Spotify authorization URL.

        Args:
            state: Nonce the redirect must echo back

        Returns:
            Authorization URL for user to visit
        """
        params = {
            'client_id': self.config.client_id,
            'response_type': 'code',
            'redirect_uri': self.config.redirect_uri,
            'state': state,
            'scope': self.config.scopes
        }

        return f"{self.config.AUTH_URL}?{urllib.parse.urlencode(params)}"

    def open(self, state: str) -> None:
        """
        Open the authorization page.

        Raises:
            OpenPromptError: If no browser could be launched
        """
        url = self.authorization_url(state)

        logger.info("Opening browser for authorization...")
        logger.info(f"If browser doesn't open, visit: {url}")

        try:
            opened = webbrowser.open(url)
        except webbrowser.Error as e:
            raise OpenPromptError(url, str(e)) from e

        if not opened:
            raise OpenPromptError(url, "no runnable browser found")
