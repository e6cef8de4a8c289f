"""
Centralized configuration from environment variables.
Loads client credentials and auth settings without hardcoding.
"""
import os
import urllib.parse
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv


@dataclass
class SpotifyConfig:
    """Spotify OAuth configuration."""
    client_id: str
    client_secret: str
    redirect_uri: str
    token_storage_path: Path
    scopes: str = "user-read-playback-state user-modify-playback-state"
    login_timeout: float = 300.0

    AUTH_URL = "https://accounts.spotify.com/authorize/"
    TOKEN_URL = "https://accounts.spotify.com/api/token/"

    @classmethod
    def from_env(cls) -> 'SpotifyConfig':
        """Load from environment variables."""
        return cls(
            client_id=os.getenv('CLIENT_ID', ''),
            client_secret=os.getenv('CLIENT_SECRET', ''),
            redirect_uri=os.getenv('REDIRECT_URI', 'http://localhost:8888/callback/'),
            token_storage_path=Path(os.getenv('TOKEN_PATH', 'data/.spotify_tokens.json')),
            scopes=os.getenv('SPOTIFY_SCOPES', cls.scopes),
            login_timeout=float(os.getenv('LOGIN_TIMEOUT', '300'))
        )

    def validate(self) -> None:
        """Validate required fields are present."""
        if not self.client_id:
            raise ValueError("CLIENT_ID environment variable is required")
        if not self.client_secret:
            raise ValueError("CLIENT_SECRET environment variable is required")

        parsed = urllib.parse.urlparse(self.redirect_uri)
        if parsed.scheme != 'http' or not parsed.hostname:
            raise ValueError(
                f"REDIRECT_URI must be a plain http URL, got {self.redirect_uri!r}"
            )
        if self.login_timeout <= 0:
            raise ValueError("LOGIN_TIMEOUT must be positive")


@dataclass
class AppConfig:
    """Application-wide configuration."""
    spotify: SpotifyConfig
    log_level: str = "INFO"
    request_timeout: float = 15.0

    @classmethod
    def load(cls, env_file: Optional[str] = None) -> 'AppConfig':
        """
        Load all configuration.

        Args:
            env_file: Path to .env file (optional, will search parent dirs)
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        config = cls(
            spotify=SpotifyConfig.from_env(),
            log_level=os.getenv('LOG_LEVEL', 'INFO'),
            request_timeout=float(os.getenv('REQUEST_TIMEOUT', '15'))
        )

        config.spotify.validate()

        return config


# Singleton instance
_config: Optional[AppConfig] = None


def get_config(env_file: Optional[str] = None) -> AppConfig:
    """Get or create configuration singleton."""
    global _config
    if _config is None:
        _config = AppConfig.load(env_file)
    return _config


def reset_config() -> None:
    """Reset configuration (useful for testing)."""
    global _config
    _config = None
