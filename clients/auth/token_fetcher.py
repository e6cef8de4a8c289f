"""
Token endpoint client.
Exchanges authorization codes and refresh tokens for credentials.
"""
import base64
import functools
import socket
import threading
import weakref
from typing import Any, Callable, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool

from config import SpotifyConfig
from .async_result import AsyncResult
from .errors import ParseError, TokenDeniedError, TransportError
from .token_manager import Credential, TokenManager
from utils import setup_logger


logger = setup_logger(__name__)


class _TrackingPoolMixin:
    """Connection pool reporting every connection it opens to an AbortableAdapter."""

    def __init__(self, *args, adapter: 'AbortableAdapter', **kwargs):
        self._adapter = adapter
        super().__init__(*args, **kwargs)

    def _new_conn(self):
        conn = super()._new_conn()
        self._adapter.track(conn)
        return conn


class _TrackingHTTPConnectionPool(_TrackingPoolMixin, HTTPConnectionPool):
    pass


class _TrackingHTTPSConnectionPool(_TrackingPoolMixin, HTTPSConnectionPool):
    pass


class AbortableAdapter(HTTPAdapter):
    """
    HTTPAdapter whose in-flight requests can be aborted from another thread.

    Session.close() only drains idle pooled connections; a request that
    is waiting for its response holds its connection checked out. abort()
    shuts down the sockets of every connection this adapter opened, which
    wakes the blocked reader with a connection error.
    """

    def __init__(self, *args, **kwargs):
        self._track_lock = threading.Lock()
        self._connections = weakref.WeakSet()
        self._aborted = False
        super().__init__(*args, **kwargs)

    def init_poolmanager(self, *args, **kwargs):
        super().init_poolmanager(*args, **kwargs)
        self.poolmanager.pool_classes_by_scheme = {
            'http': functools.partial(_TrackingHTTPConnectionPool, adapter=self),
            'https': functools.partial(_TrackingHTTPSConnectionPool, adapter=self),
        }

    def track(self, conn) -> None:
        with self._track_lock:
            if self._aborted:
                # urllib3 maps OSError from _new_conn to a connection failure
                raise ConnectionAbortedError("Token request aborted")
            self._connections.add(conn)

    def abort(self) -> None:
        """Shut down every socket opened through this adapter. Idempotent."""
        with self._track_lock:
            self._aborted = True
            connections = list(self._connections)

        for conn in connections:
            sock = getattr(conn, 'sock', None)
            if sock is None:
                continue
            try:
                # Plain socket shutdown; SSLSocket.shutdown would unwrap TLS under the blocked reader
                socket.socket.shutdown(sock, socket.SHUT_RDWR)
            except OSError as e:
                logger.debug(f"Socket already closed while aborting token request: {e}")
        logger.debug(f"Aborted {len(connections)} token endpoint connection(s)")


class TokenFetcher:
    """
    Client for the OAuth2 token endpoint.

    Responsibilities:
    - Authorization-code grant (initial login)
    - Refresh-token grant
    - Map provider responses to a Credential or a specific error

    Nothing is retried here; retry policy belongs to the caller.
    """

    def __init__(
        self,
        config: SpotifyConfig,
        token_manager: TokenManager,
        timeout: float = 15.0,
        session_factory: Callable[[], requests.Session] = requests.Session
    ):
        """
        Initialize token fetcher.

        Args:
            config: Spotify configuration (client credentials, redirect URI)
            token_manager: Source of the refresh token
            timeout: Request timeout in seconds
            session_factory: Creates the HTTP session for each request
        """
        self.config = config
        self.token_manager = token_manager
        self.timeout = timeout
        self.session_factory = session_factory

        credentials = f"{config.client_id}:{config.client_secret}".encode('utf-8')
        self.headers = {
            'Authorization': f"Basic {base64.b64encode(credentials).decode('ascii')}",
            'Content-Type': 'application/x-www-form-urlencoded'
        }

    def exchange(self, code: str) -> Credential:
        """
        Exchange an authorization code for a credential (blocking).

        Raises:
            TransportError, ParseError, TokenDeniedError: Token fetch failures
            TokenParseError: If the response lacks a required field
        """
        return self.fetch(code=code)

    def refresh(self) -> Credential:
        """
        Fetch a new access token with the stored refresh token (blocking).

        Raises:
            NoRefreshTokenError: If no refresh token is held
            TransportError, ParseError, TokenDeniedError: Token fetch failures
        """
        return self.fetch()

    def fetch(self, code: Optional[str] = None) -> Credential:
        """
        Fetch a credential, using the code when given or the refresh token otherwise.

        Args:
            code: Authorization code from the callback (optional)

        Returns:
            Credential lifted from the response
        """
        body = self._request_body(code)
        session, _ = self._open_session()
        try:
            return self._request(session, body, initial=code is not None)
        finally:
            session.close()

    def fetch_async(
        self,
        code: Optional[str] = None,
        on_success: Optional[Callable[[Credential], None]] = None
    ) -> AsyncResult:
        """
        Fetch a credential on a background thread.

        Cancelling the returned result shuts down the request's socket,
        aborting the in-flight request; no late settlement follows.

        Args:
            code: Authorization code (optional, refresh otherwise)
            on_success: Optional success callback

        Returns:
            AsyncResult settled with a Credential or a fetch error

        Raises:
            NoRefreshTokenError: Immediately, if a refresh is requested without a refresh token
        """
        body = self._request_body(code)
        session, adapter = self._open_session()
        result = AsyncResult(on_success)

        def _abort():
            adapter.abort()
            session.close()

        result.on_cancel(_abort)

        def _worker():
            try:
                credential = self._request(session, body, initial=code is not None)
            except Exception as e:
                if result.cancelled():
                    logger.debug(f"Token request aborted: {e}")
                else:
                    result.fail(e)
            else:
                result.resolve(credential)
            finally:
                session.close()

        threading.Thread(target=_worker, name='token-fetcher/request', daemon=True).start()
        return result

    def _open_session(self):
        session = self.session_factory()
        adapter = AbortableAdapter()
        session.mount('https://', adapter)
        session.mount('http://', adapter)
        return session, adapter

    def _request_body(self, code: Optional[str]) -> Dict[str, str]:
        if code is None:
            return {
                'grant_type': 'refresh_token',
                'refresh_token': self.token_manager.refresh_token
            }
        return {
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': self.config.redirect_uri
        }

    def _request(self, session: requests.Session, body: Dict[str, str], initial: bool) -> Credential:
        grant = body['grant_type']
        logger.debug(f"Requesting token ({grant})")
        try:
            response = session.post(
                self.config.TOKEN_URL,
                headers=self.headers,
                data=body,
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Token request failed ({grant}): {e}")
            raise TransportError(e) from e

        token_data = self._receive(response)
        credential = Credential.from_response(token_data, require_refresh_token=initial)
        logger.info(f"✅ Token received ({grant}), expires at {credential.expires_at.isoformat()}")
        return credential

    @staticmethod
    def _receive(response: requests.Response) -> Dict[str, Any]:
        try:
            token_data = response.json()
        except ValueError as e:
            raise ParseError(f"Token endpoint returned non-JSON body (HTTP {response.status_code})") from e

        if not isinstance(token_data, dict):
            raise ParseError(f"Token endpoint returned {type(token_data).__name__}, expected object")

        if 'error' in token_data:
            error = token_data['error']
            description = token_data.get('error_description')
            logger.warning(f"Token denied: {error} ({description})")
            raise TokenDeniedError(error, description)

        return token_data
