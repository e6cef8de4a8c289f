"""
Single-assignment result shared between the login threads.

The first of resolve/fail/cancel wins; later calls are ignored and
never reach observers a second time.
"""
import threading
from typing import Any, Callable, Optional, Tuple

from .errors import CancelledError
from utils import setup_logger


logger = setup_logger(__name__)


PENDING = 'pending'
RESOLVED = 'resolved'
FAILED = 'failed'
CANCELLED = 'cancelled'


class AsyncResult:
    """
    Thread-safe future with success, error and cancel callbacks.

    Callbacks run on whichever thread settles the result, outside the
    internal lock. Registering a callback after settlement in the
    matching state runs it immediately on the registering thread.
    Each registered callback runs at most once.
    """

    def __init__(self, on_success: Optional[Callable[[Any], None]] = None):
        """
        Initialize a pending result.

        Args:
            on_success: Optional success callback, same as calling on_success()
        """
        self._lock = threading.Lock()
        self._settled = threading.Event()
        self._state = PENDING
        self._value: Any = None
        self._error: Optional[BaseException] = None
        self._callbacks: dict = {RESOLVED: [], FAILED: [], CANCELLED: []}
        self._dispatching: Optional[int] = None

        if on_success is not None:
            self.on_success(on_success)

    def __repr__(self) -> str:
        return f"<AsyncResult {self._state}>"

    @property
    def state(self) -> str:
        return self._state

    @property
    def value(self) -> Any:
        return self._value

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def done(self) -> bool:
        return self._state != PENDING

    def cancelled(self) -> bool:
        return self._state == CANCELLED

    # Settlement

    def resolve(self, value: Any = None) -> bool:
        """Settle successfully. Returns False if already settled."""
        return self._settle(RESOLVED, value=value)

    def fail(self, error: BaseException) -> bool:
        """Settle with an error. Returns False if already settled."""
        return self._settle(FAILED, error=error)

    def cancel(self) -> bool:
        """
        Cancel the result.

        Cancel callbacks run synchronously before this returns, so owners
        can release sockets and timers exactly once.

        Returns:
            False if the result was already settled
        """
        return self._settle(CANCELLED)

    def _settle(self, state: str, value: Any = None, error: Optional[BaseException] = None) -> bool:
        with self._lock:
            if self._state != PENDING:
                logger.debug(f"Ignoring {state} on already {self._state} result")
                return False
            self._state = state
            self._value = value
            self._error = error
            callbacks = self._callbacks[state]
            self._callbacks = {RESOLVED: [], FAILED: [], CANCELLED: []}
            self._dispatching = threading.get_ident()

        # Waiters wake once the callbacks registered before settlement have run
        try:
            for callback in callbacks:
                self._dispatch(state, callback)
        finally:
            self._dispatching = None
            self._settled.set()
        return True

    # Callbacks

    def on_success(self, callback: Callable[[Any], None]) -> 'AsyncResult':
        """Register a callback receiving the resolved value."""
        return self._register(RESOLVED, callback)

    def on_error(self, callback: Callable[[BaseException], None]) -> 'AsyncResult':
        """Register a callback receiving the failure."""
        return self._register(FAILED, callback)

    def on_cancel(self, callback: Callable[[], None]) -> 'AsyncResult':
        """Register a callback run when the result is cancelled."""
        return self._register(CANCELLED, callback)

    def _register(self, state: str, callback: Callable) -> 'AsyncResult':
        with self._lock:
            if self._state == PENDING:
                self._callbacks[state].append(callback)
                return self
            run_now = self._state == state
        if run_now:
            self._dispatch(state, callback)
        return self

    def _dispatch(self, state: str, callback: Callable) -> None:
        args: Tuple = ()
        if state == RESOLVED:
            args = (self._value,)
        elif state == FAILED:
            args = (self._error,)
        try:
            callback(*args)
        except Exception:
            logger.exception(f"Callback {callback!r} raised while dispatching {state}")

    # Blocking helpers

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until settled.

        Returns after the callbacks registered before settlement have
        run. Called from one of those callbacks it returns at once.

        Returns:
            True if settled, False on timeout
        """
        if self._dispatching == threading.get_ident():
            return True
        return self._settled.wait(timeout)

    def result(self, timeout: Optional[float] = None) -> Any:
        """
        Block until settled and return the value.

        Raises:
            TimeoutError: If still pending after timeout
            CancelledError: If the result was cancelled
            Exception: The error the result failed with
        """
        if not self.wait(timeout):
            raise TimeoutError(f"Result still pending after {timeout}s")
        if self._state == CANCELLED:
            raise CancelledError("Result was cancelled")
        if self._state == FAILED:
            raise self._error
        return self._value
