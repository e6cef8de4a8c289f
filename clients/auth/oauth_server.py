"""
OAuth Callback Server.
Ephemeral HTTP listener that catches exactly one Spotify redirect per
login attempt, validates it and shuts itself down.
"""
import socketserver
import threading
import urllib.parse
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Callable, Dict, List, Optional, Tuple

from .errors import BadStateError, CodeDeniedError, OpenServerError, TokenDeniedError
from utils import setup_logger, mask_secret


logger = setup_logger(__name__)


class OAuthCallbackHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the OAuth redirect."""

    # Unparsable request lines still get a status line
    default_request_version = 'HTTP/1.0'
    # Seconds a client may stall before its worker is released
    timeout = 10

    def do_GET(self):
        """Handle GET request (OAuth callback or stray traffic)."""
        status, body = self.server.owner.handle_callback(self.path)
        self.send_plain(status, body)

    def send_error(self, code, message=None, explain=None):
        """Answer requests the base class could not parse."""
        logger.debug(f"Rejecting request with {code}: {message}")
        if code == HTTPStatus.BAD_REQUEST:
            body = 'malformed request'
        else:
            body = HTTPStatus(code).phrase.lower()
        self.send_plain(code, body)

    def send_response(self, code, message=None):
        # Base class behaviour minus the Server header
        self.log_request(code)
        self.send_response_only(code, message)
        self.send_header('Date', self.date_time_string())

    def send_plain(self, status: int, body: str) -> None:
        """Send a plain-text response and close. Send failures are dropped."""
        payload = body.encode('utf-8')
        self.close_connection = True
        try:
            self.send_response(status)
            self.send_header('Connection', 'close')
            if status != HTTPStatus.NO_CONTENT:
                self.send_header('Content-Type', 'text/plain; charset=utf-8')
                self.send_header('Content-Length', str(len(payload)))
            self.end_headers()
            if status != HTTPStatus.NO_CONTENT and self.command != 'HEAD':
                self.wfile.write(payload)
        except OSError as e:
            logger.debug(f"Could not send callback response: {e}")

    def log_message(self, format, *args):
        """Route default server logging to debug."""
        logger.debug(f"{self.address_string()} - {format % args}")


class _CallbackHTTPServer(HTTPServer):
    """HTTPServer handing each accepted connection to a bounded worker pool."""

    def __init__(self, server_address, owner: 'OAuthCallbackServer', max_workers: int):
        self.owner = owner
        # Created before binding, a failed bind calls server_close()
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='code-server/client')
        super().__init__(server_address, OAuthCallbackHandler)

    def server_bind(self):
        # Skip the reverse DNS lookup HTTPServer does on the bound host
        socketserver.TCPServer.server_bind(self)
        self.server_name, self.server_port = self.server_address[:2]

    def process_request(self, request, client_address):
        try:
            self._pool.submit(self._process_request_worker, request, client_address)
        except RuntimeError:
            # Pool is gone, listener is shutting down
            self.shutdown_request(request)

    def _process_request_worker(self, request, client_address):
        threading.current_thread().name = f"code-server/client({client_address[0]}:{client_address[1]})"
        try:
            self.finish_request(request, client_address)
        except Exception:
            self.handle_error(request, client_address)
        finally:
            self.shutdown_request(request)

    def handle_error(self, request, client_address):
        logger.exception(f"Error handling connection from {client_address[0]}:{client_address[1]}")

    def server_close(self):
        super().server_close()
        self._pool.shutdown(wait=False)


@dataclass
class _Attempt:
    state: str
    on_code: Callable[[str], None]
    on_error: Callable[[Exception], None]


def _first(query: Dict[str, List[str]], key: str) -> Optional[str]:
    values = query.get(key)
    return values[0] if values else None


class OAuthCallbackServer:
    """
    Temporary HTTP server to catch the OAuth redirect.

    Listens on the host, port and path of the configured redirect URI.
    The first request on the callback path while an attempt is active
    ends the attempt: the listener is stopped and the outcome handed to
    on_code or on_error. Everything else gets 204 and is ignored.
    """

    def __init__(self, redirect_uri: str, max_workers: int = 4, poll_interval: float = 0.1):
        """
        Initialize callback server.

        Args:
            redirect_uri: Expected redirect URI (e.g., http://localhost:8888/callback/)
            max_workers: Connections handled concurrently
            poll_interval: Seconds between shutdown checks of the accept loop
        """
        self.redirect_uri = redirect_uri

        parsed = urllib.parse.urlparse(redirect_uri)
        self.host = parsed.hostname or '127.0.0.1'
        self.path = parsed.path or '/'
        self._configured_port = parsed.port if parsed.port is not None else 80

        self.max_workers = max_workers
        self.poll_interval = poll_interval

        self._lock = threading.Lock()
        self._httpd: Optional[_CallbackHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._attempt: Optional[_Attempt] = None

    @property
    def port(self) -> int:
        """Bound port while running, configured port otherwise."""
        with self._lock:
            if self._httpd is not None:
                return self._httpd.server_address[1]
            return self._configured_port

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._httpd is not None

    @property
    def attempt_active(self) -> bool:
        with self._lock:
            return self._attempt is not None

    def start(
        self,
        state: str,
        on_code: Callable[[str], None],
        on_error: Callable[[Exception], None]
    ) -> None:
        """
        Start listening for the callback of one login attempt.

        Calling start while already running replaces the active attempt.

        Args:
            state: Nonce the callback must echo back
            on_code: Called with the authorization code; raising turns
                the response into an error page and is passed to on_error
            on_error: Called with BadStateError, CodeDeniedError or the
                error raised by on_code

        Raises:
            OpenServerError: If the listener cannot be opened
        """
        with self._lock:
            self._attempt = _Attempt(state, on_code, on_error)
            if self._httpd is not None:
                logger.debug("Callback server already running, attempt replaced")
                return

            try:
                httpd = _CallbackHTTPServer(
                    (self.host, self._configured_port), self, self.max_workers
                )
            except OSError as e:
                self._attempt = None
                logger.error(f"Could not open callback server on {self.host}:{self._configured_port}: {e}")
                raise OpenServerError(e) from e

            self._httpd = httpd
            self._thread = threading.Thread(
                target=httpd.serve_forever,
                kwargs={'poll_interval': self.poll_interval},
                name='code-server/loop',
                daemon=True
            )
            self._thread.start()
            port = httpd.server_address[1]

        logger.info(f"Callback server listening on http://{self.host}:{port}{self.path}")

    def stop(self) -> None:
        """
        Close the listener and drop the active attempt.

        Safe to call repeatedly and from any thread, including a worker
        handling a request and a timer racing it.
        """
        with self._lock:
            httpd = self._httpd
            self._httpd = None
            self._thread = None
            self._attempt = None

        if httpd is None:
            return

        httpd.shutdown()
        httpd.server_close()
        logger.debug("Callback server stopped")

    def handle_callback(self, request_path: str) -> Tuple[int, str]:
        """
        Decide the outcome of one request.

        Args:
            request_path: Raw request target, path plus query

        Returns:
            Tuple of (HTTP status, plain-text body)
        """
        parsed = urllib.parse.urlparse(request_path)

        with self._lock:
            attempt = self._attempt
            if attempt is None or parsed.path != self.path:
                return HTTPStatus.NO_CONTENT, ''

            query = urllib.parse.parse_qs(parsed.query, keep_blank_values=True)
            state = _first(query, 'state')
            if state != attempt.state:
                error: Optional[Exception] = BadStateError(state)
            elif 'code' not in query:
                error = CodeDeniedError(_first(query, 'error'))
            else:
                error = None

            # Single use: concurrent requests from here on see no attempt
            self._attempt = None

        self.stop()

        if error is not None:
            logger.warning(f"Callback rejected: {error}")
            attempt.on_error(error)
            return self._error_response(error)

        code = _first(query, 'code')
        logger.info(f"Authorization code received ({mask_secret(code)})")
        try:
            attempt.on_code(code)
        except Exception as e:
            logger.error(f"Handling authorization code failed: {e}")
            attempt.on_error(e)
            return self._error_response(e)

        return HTTPStatus.OK, 'success'

    @staticmethod
    def _error_response(error: Exception) -> Tuple[int, str]:
        if isinstance(error, BadStateError):
            body = f"wrong state '{error.state}'" if error.has_state else 'missing state'
            return HTTPStatus.BAD_REQUEST, body
        if isinstance(error, CodeDeniedError):
            return HTTPStatus.BAD_REQUEST, f"access denied. {error.error_str or ''}"
        if isinstance(error, TokenDeniedError):
            return HTTPStatus.BAD_REQUEST, f"token denied. {error.error_str}"
        return HTTPStatus.INTERNAL_SERVER_ERROR, f"internal error. ({type(error).__name__})"
