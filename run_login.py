"""
Spotify login entry point.
Loads stored tokens, refreshes or logs in as needed, and always saves
tokens before exiting.
"""
import argparse
import sys
from typing import List, Optional

from config import get_config
from clients.auth import (
    NoRefreshTokenError,
    SpotifyAuthClient,
    SpotifyError,
    TokenFetchError,
)
from utils import setup_logger


logger = setup_logger('login')


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='Authorize this client against your Spotify account'
    )
    parser.add_argument(
        '--env-file',
        type=str,
        default=None,
        help='Path to .env file (default: search parent directories)'
    )
    parser.add_argument(
        '--logout',
        action='store_true',
        help='Delete stored tokens and exit'
    )
    parser.add_argument(
        '--force',
        action='store_true',
        help='Run the browser login even if stored tokens are usable'
    )
    return parser.parse_args(argv)


def ensure_authorized(auth_client: SpotifyAuthClient, force: bool = False) -> None:
    """
    Make sure the client holds a valid access token.

    Tries stored tokens first, then a refresh, then the browser login.

    Raises:
        SpotifyError: If the login fails
    """
    if not force and auth_client.load_tokens():
        if auth_client.token_manager.is_valid():
            logger.info("✅ Stored access token is still valid")
            return
        try:
            auth_client.refresh_access_token()
            return
        except (NoRefreshTokenError, TokenFetchError) as e:
            logger.warning(f"Token refresh failed ({type(e).__name__}), logging in again...")

    result = auth_client.login()
    try:
        result.result()
    except KeyboardInterrupt:
        logger.info("Login cancelled")
        result.cancel()
        raise


def run_login(argv: Optional[List[str]] = None) -> int:
    """Main login execution."""
    args = parse_args(argv)

    try:
        config = get_config(args.env_file)
    except ValueError as e:
        logger.error(f"❌ Invalid configuration: {e}")
        return 2

    auth_client = SpotifyAuthClient(config.spotify, request_timeout=config.request_timeout)

    if args.logout:
        auth_client.token_manager.clear_tokens()
        return 0

    try:
        ensure_authorized(auth_client, force=args.force)
        credential = auth_client.token_manager.credential
        logger.info(f"✅ Authorized, token valid until {credential.expires_at.isoformat()}")
        return 0
    except SpotifyError as e:
        logger.error(f"❌ Login failed: {e}")
        return 1
    except KeyboardInterrupt:
        return 130
    finally:
        auth_client.save_tokens()


if __name__ == "__main__":
    sys.exit(run_login())
