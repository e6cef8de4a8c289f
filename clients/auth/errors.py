"""
Error taxonomy for the authentication subsystem.

Every error settles a login AsyncResult as a failure carrying its
specific kind, so callers can tell a network blip from a provider-side
rejection from a broken credentials file.
"""
from typing import Optional


class SpotifyError(Exception):
    """Base class for all authentication errors."""
    pass


class OpenServerError(SpotifyError):
    """Raised when the callback listener cannot bind or listen."""

    def __init__(self, system_error: Exception):
        super().__init__(f"Could not open callback server: {system_error}")
        self.system_error = system_error


class OpenPromptError(SpotifyError):
    """Raised when the external consent prompt cannot be launched."""

    def __init__(self, url: Optional[str], reason: Optional[str] = None):
        message = "Could not open authorization prompt"
        if url:
            message = f"{message}: {url}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.url = url
        self.reason = reason


class BadStateError(SpotifyError):
    """
    Raised when a callback carries a missing or wrong state nonce.

    ``state`` is the value received, None when it was absent.
    """

    def __init__(self, state: Optional[str]):
        if state is None:
            super().__init__("Callback is missing the state parameter")
        else:
            super().__init__(f"Callback state mismatch: {state!r}")
        self.state = state

    @property
    def has_state(self) -> bool:
        return self.state is not None


class CodeDeniedError(SpotifyError):
    """
    Raised when the authorize endpoint denies the authorization code.

    See https://www.rfc-editor.org/rfc/rfc6749#section-4.1.2.1
    """

    def __init__(self, error_str: Optional[str]):
        super().__init__(f"Authorization denied: {error_str}")
        self.error_str = error_str


class TokenFetchError(SpotifyError):
    """Base class for token endpoint failures."""
    pass


class TransportError(TokenFetchError):
    """Raised when the token request fails below HTTP (connection, TLS, timeout)."""

    def __init__(self, cause: Exception):
        super().__init__(f"Token request failed: {cause}")
        self.cause = cause


class ParseError(TokenFetchError):
    """Raised when the token endpoint returns a body that is not a JSON object."""
    pass


class TokenDeniedError(TokenFetchError):
    """
    Raised when the token endpoint refuses to issue or refresh a token.

    See https://www.rfc-editor.org/rfc/rfc6749#section-5.2
    """

    def __init__(self, error_str: str, error_description: Optional[str] = None):
        message = f"Token denied: {error_str}"
        if error_description:
            message = f"{message} ({error_description})"
        super().__init__(message)
        self.error_str = error_str
        self.error_description = error_description


class TokenParseError(SpotifyError):
    """Base class for credentials that cannot be built from a payload."""
    pass


class MalformedTokenError(TokenParseError):
    """Raised when a token payload is not parsable at all."""
    pass


class MissingAccessTokenError(TokenParseError):
    """Raised when a token payload has no access token."""
    pass


class MissingExpirationTimeError(TokenParseError):
    """Raised when a token payload has no expiry."""
    pass


class MissingRefreshTokenError(TokenParseError):
    """Raised when an initial grant or stored credential lacks a refresh token."""
    pass


class MissingCredentialError(SpotifyError):
    """Raised when no persisted credential exists. Callers fall back to login."""
    pass


class NoRefreshTokenError(SpotifyError):
    """Raised when a refresh token is requested but none was ever held."""
    pass


class LoginTimeoutError(SpotifyError):
    """Raised when no callback arrived within the login window."""

    def __init__(self, timeout: float):
        super().__init__(f"Login timed out after {timeout:g}s")
        self.timeout = timeout


class CancelledError(SpotifyError):
    """
    Raised by AsyncResult.result() when the result was cancelled, and
    by work that finds its result already settled by someone else.
    """
    pass
