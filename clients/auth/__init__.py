"""
Authentication module for Spotify OAuth.
Handles the login flow, token exchange, and credential persistence.
"""
from .async_result import AsyncResult
from .errors import (
    SpotifyError,
    OpenServerError,
    OpenPromptError,
    BadStateError,
    CodeDeniedError,
    TokenFetchError,
    TransportError,
    ParseError,
    TokenDeniedError,
    TokenParseError,
    MalformedTokenError,
    MissingAccessTokenError,
    MissingExpirationTimeError,
    MissingRefreshTokenError,
    MissingCredentialError,
    NoRefreshTokenError,
    LoginTimeoutError,
    CancelledError
)
from .token_manager import Credential, TokenManager
from .oauth_server import OAuthCallbackServer
from .token_fetcher import TokenFetcher
from .prompt import BrowserPrompt
from .spotify_auth import SpotifyAuthClient
from .oauth_client import OAuthClient

__all__ = [
    'AsyncResult',
    'SpotifyError',
    'OpenServerError',
    'OpenPromptError',
    'BadStateError',
    'CodeDeniedError',
    'TokenFetchError',
    'TransportError',
    'ParseError',
    'TokenDeniedError',
    'TokenParseError',
    'MalformedTokenError',
    'MissingAccessTokenError',
    'MissingExpirationTimeError',
    'MissingRefreshTokenError',
    'MissingCredentialError',
    'NoRefreshTokenError',
    'LoginTimeoutError',
    'CancelledError',
    'Credential',
    'TokenManager',
    'OAuthCallbackServer',
    'TokenFetcher',
    'BrowserPrompt',
    'SpotifyAuthClient',
    'OAuthClient'
]
