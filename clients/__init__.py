"""
API clients package.
Handles authentication against the Spotify accounts service.
"""
from .auth import SpotifyAuthClient, OAuthClient

__all__ = [
    'SpotifyAuthClient',
    'OAuthClient'
]
