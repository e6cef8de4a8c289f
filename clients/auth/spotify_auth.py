"""
Spotify OAuth Authentication Client.
Drives one login attempt end to end and keeps the credential fresh.
"""
import secrets
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from config import SpotifyConfig
from .async_result import AsyncResult
from .errors import (
    CancelledError,
    LoginTimeoutError,
    MissingCredentialError,
    OpenPromptError,
    OpenServerError,
    TokenParseError,
)
from .oauth_server import OAuthCallbackServer
from .prompt import BrowserPrompt
from .token_fetcher import TokenFetcher
from .token_manager import Credential, TokenManager
from utils import setup_logger


logger = setup_logger(__name__)


@dataclass
class LoginAttempt:
    """Correlation state of the one in-flight login."""
    state: str
    result: AsyncResult
    timer: threading.Timer


class SpotifyAuthClient:
    """
    Manages Spotify OAuth authentication.

    Responsibilities:
    - Run the login flow: consent prompt, callback server, timeout
    - Exchange the authorization code for a credential
    - Refresh expired access tokens
    - Load and save the credential through the TokenManager

    At most one login attempt exists per client. Construct one client
    per process and pass it to whoever needs to log in.
    """

    def __init__(
        self,
        config: SpotifyConfig,
        token_manager: Optional[TokenManager] = None,
        token_fetcher: Optional[TokenFetcher] = None,
        callback_server: Optional[OAuthCallbackServer] = None,
        prompt: Optional[Any] = None,
        request_timeout: float = 15.0
    ):
        """
        Initialize auth client.

        Args:
            config: Spotify configuration
            token_manager: Credential store (default: file at config.token_storage_path)
            token_fetcher: Token endpoint client
            callback_server: Listener for the OAuth redirect
            prompt: Consent prompt, any object with open(state)
            request_timeout: Token request timeout in seconds
        """
        self.config = config
        self.token_manager = token_manager or TokenManager(config.token_storage_path)
        self.token_fetcher = token_fetcher or TokenFetcher(
            config, self.token_manager, timeout=request_timeout
        )
        self.callback_server = callback_server or OAuthCallbackServer(config.redirect_uri)
        self.prompt = prompt or BrowserPrompt(config)

        self._lock = threading.Lock()
        self._attempt: Optional[LoginAttempt] = None

    @property
    def login_in_progress(self) -> bool:
        with self._lock:
            return self._attempt is not None

    # Login flow

    def login(self, on_success: Optional[Callable[[Credential], None]] = None) -> AsyncResult:
        """
        Start a login attempt.

        Returns immediately; the attempt runs on the timer, listener and
        worker threads. If an attempt is already running its result is
        returned unchanged and on_success is not registered.

        Args:
            on_success: Optional callback receiving the stored Credential

        Returns:
            AsyncResult resolved with the Credential, failed with
            OpenServerError, OpenPromptError, BadStateError,
            CodeDeniedError, TokenFetchError, TokenParseError or
            LoginTimeoutError. Cancelling it stops the timer and the
            listener.
        """
        with self._lock:
            if self._attempt is not None:
                logger.info("Login already in progress")
                return self._attempt.result

            result = AsyncResult()
            timer = threading.Timer(self.config.login_timeout, self._on_timeout)
            timer.name = 'login/timeout'
            timer.daemon = True
            attempt = LoginAttempt(state=secrets.token_hex(16), result=result, timer=timer)
            timer.args = (attempt,)

            # Storing and teardown run before any caller callback on every outcome
            result.on_success(self._store_credential)
            result.on_success(lambda _credential: self._release(attempt))
            result.on_error(lambda _error: self._release(attempt))
            result.on_cancel(lambda: self._release(attempt))
            if on_success is not None:
                result.on_success(on_success)

            self._attempt = attempt

        logger.info("🔐 Starting Spotify authorization...")
        timer.start()

        try:
            self.callback_server.start(
                attempt.state,
                on_code=lambda code: self._on_code(attempt, code),
                on_error=lambda error: self._on_error(attempt, error)
            )
        except OpenServerError as e:
            result.fail(e)
            return result
        except Exception as e:
            logger.exception("Callback server failed to start")
            result.fail(OpenServerError(e))
            return result

        if result.done():
            # Cancelled through a concurrent login() caller while starting
            self.callback_server.stop()
            return result

        try:
            self.prompt.open(attempt.state)
        except OpenPromptError as e:
            logger.error(str(e))
            result.fail(e)
        except Exception as e:
            logger.exception("Authorization prompt failed")
            result.fail(OpenPromptError(None, f"{type(e).__name__}: {e}"))

        return result

    def _on_code(self, attempt: LoginAttempt, code: str) -> None:
        attempt.timer.cancel()
        # Raising makes the callback page report the failure instead of success
        if attempt.result.done():
            raise CancelledError(f"Login already {attempt.result.state}")

        logger.info("Exchanging code for tokens...")
        credential = self.token_fetcher.exchange(code)

        # Stored by the success callback only if this resolve wins
        if not attempt.result.resolve(credential):
            raise CancelledError(f"Login {attempt.result.state} during exchange, token discarded")
        logger.info("✅ Authorization complete!")

    def _store_credential(self, credential: Credential) -> None:
        self.token_manager.set(credential)

    def _on_error(self, attempt: LoginAttempt, error: Exception) -> None:
        attempt.timer.cancel()
        logger.error(f"Authorization failed: {error}")
        attempt.result.fail(error)

    def _on_timeout(self, attempt: LoginAttempt) -> None:
        if attempt.result.done():
            return
        logger.warning(f"No authorization callback within {self.config.login_timeout:g}s")
        with self._lock:
            current = self._attempt is attempt
        if current:
            self.callback_server.stop()
        attempt.result.fail(LoginTimeoutError(self.config.login_timeout))

    def _release(self, attempt: LoginAttempt) -> None:
        attempt.timer.cancel()
        with self._lock:
            if self._attempt is not attempt:
                return
            self._attempt = None
        self.callback_server.stop()
        logger.debug(f"Login attempt ended ({attempt.result.state})")

    # Token lifecycle

    def load_tokens(self) -> bool:
        """
        Load stored tokens.

        Returns:
            True if a credential was loaded, False if a login is needed
        """
        try:
            self.token_manager.load()
        except MissingCredentialError:
            logger.info("No stored tokens found, login required")
            return False
        except TokenParseError as e:
            logger.warning(f"Stored tokens unusable ({type(e).__name__}): {e}")
            return False
        return True

    def save_tokens(self) -> None:
        """Persist the current credential."""
        self.token_manager.save()

    def refresh_access_token(self) -> Credential:
        """
        Refresh the access token using the refresh token (blocking).

        Raises:
            NoRefreshTokenError: If no refresh token is held
            TokenFetchError: Transport, parse or denial failures
        """
        logger.info("Refreshing access token...")
        credential = self.token_fetcher.refresh()
        credential = self.token_manager.set(credential)
        logger.info("✅ Access token refreshed")
        return credential

    def refresh_access_token_async(
        self,
        on_success: Optional[Callable[[Credential], None]] = None
    ) -> AsyncResult:
        """
        Refresh the access token on a background thread.

        Cancelling the returned result aborts the token request.

        Raises:
            NoRefreshTokenError: Immediately, if no refresh token is held
        """
        fetch = self.token_fetcher.fetch_async()
        result = AsyncResult(on_success)
        result.on_cancel(fetch.cancel)

        def _store(credential: Credential) -> None:
            try:
                stored = self.token_manager.set(credential)
            except OSError as e:
                result.fail(e)
                return
            logger.info("✅ Access token refreshed")
            result.resolve(stored)

        fetch.on_success(_store)
        fetch.on_error(result.fail)
        return result

    def get_valid_token(self) -> str:
        """
        Get a valid access token, refreshing if necessary.

        Returns:
            Valid access token

        Raises:
            MissingCredentialError: If not authorized yet
            NoRefreshTokenError, TokenFetchError: If the refresh fails
        """
        if self.token_manager.is_valid():
            return self.token_manager.access_token

        if self.token_manager.credential is None:
            raise MissingCredentialError("Not authorized. Run login first.")

        logger.debug("Token expired, refreshing...")
        return self.refresh_access_token().access_token
