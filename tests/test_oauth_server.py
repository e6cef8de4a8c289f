import socket
import threading
from unittest.mock import MagicMock

import pytest

from clients.auth.errors import (
    BadStateError,
    CodeDeniedError,
    OpenServerError,
    TokenDeniedError,
)
from clients.auth.oauth_server import OAuthCallbackServer


STATE = "expected-state"


@pytest.fixture
def server():
    srv = OAuthCallbackServer("http://127.0.0.1:0/callback/")
    yield srv
    srv.stop()


@pytest.fixture
def handlers():
    return MagicMock(name="on_code"), MagicMock(name="on_error")


def _start(server, handlers):
    on_code, on_error = handlers
    server.start(STATE, on_code, on_error)
    return server.port


def _assert_closed(port):
    with pytest.raises(OSError):
        socket.create_connection(("127.0.0.1", port), timeout=1).close()


class TestLifecycle:
    def test_redirect_uri_is_parsed(self):
        srv = OAuthCallbackServer("http://localhost:8888/callback/")
        assert srv.host == "localhost"
        assert srv.port == 8888
        assert srv.path == "/callback/"

    def test_start_and_stop(self, server, handlers):
        port = _start(server, handlers)
        assert server.is_running
        assert port != 0

        server.stop()
        assert not server.is_running
        _assert_closed(port)

    def test_stop_is_idempotent(self, server, handlers):
        _start(server, handlers)
        server.stop()
        server.stop()
        assert not server.is_running

    def test_stop_without_start(self, server):
        server.stop()

    def test_concurrent_stops(self, server, handlers):
        _start(server, handlers)
        threads = [threading.Thread(target=server.stop) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)
        assert not server.is_running

    def test_bind_failure_raises_open_server_error(self, handlers):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        port = blocker.getsockname()[1]
        try:
            srv = OAuthCallbackServer(f"http://127.0.0.1:{port}/callback/")
            with pytest.raises(OpenServerError) as excinfo:
                srv.start(STATE, *handlers)
            assert isinstance(excinfo.value.system_error, OSError)
            assert not srv.is_running
            assert not srv.attempt_active
        finally:
            blocker.close()


class TestCallbackContract:
    def test_valid_code(self, server, handlers, http_get):
        on_code, on_error = handlers
        port = _start(server, handlers)

        status, body, resp = http_get(port, f"/callback/?state={STATE}&code=ABC")

        assert status == 200
        assert body == "success"
        on_code.assert_called_once_with("ABC")
        on_error.assert_not_called()
        assert not server.is_running
        _assert_closed(port)

    def test_no_server_header_and_no_keep_alive(self, server, handlers, http_get):
        port = _start(server, handlers)
        _, _, resp = http_get(port, f"/callback/?state={STATE}&code=ABC")
        assert resp.getheader("Server") is None
        assert resp.getheader("Connection") == "close"

    def test_wrong_path_is_ignored(self, server, handlers, http_get):
        on_code, on_error = handlers
        port = _start(server, handlers)

        status, body, _ = http_get(port, "/favicon.ico")

        assert status == 204
        assert body == ""
        on_code.assert_not_called()
        on_error.assert_not_called()
        assert server.is_running
        assert server.attempt_active

    def test_wrong_state(self, server, handlers, http_get):
        on_code, on_error = handlers
        port = _start(server, handlers)

        status, body, _ = http_get(port, "/callback/?state=forged&code=ABC")

        assert status == 400
        assert body == "wrong state 'forged'"
        on_code.assert_not_called()
        error = on_error.call_args[0][0]
        assert isinstance(error, BadStateError)
        assert error.state == "forged"
        assert not server.is_running

    def test_missing_state(self, server, handlers, http_get):
        on_code, on_error = handlers
        port = _start(server, handlers)

        status, body, _ = http_get(port, "/callback/?code=ABC")

        assert status == 400
        assert body == "missing state"
        error = on_error.call_args[0][0]
        assert isinstance(error, BadStateError)
        assert error.state is None
        on_code.assert_not_called()

    def test_code_denied(self, server, handlers, http_get):
        on_code, on_error = handlers
        port = _start(server, handlers)

        status, body, _ = http_get(port, f"/callback/?state={STATE}&error=access_denied")

        assert status == 400
        assert body == "access denied. access_denied"
        error = on_error.call_args[0][0]
        assert isinstance(error, CodeDeniedError)
        assert error.error_str == "access_denied"
        on_code.assert_not_called()
        assert not server.is_running

    def test_code_handler_raises(self, server, handlers, http_get):
        on_code, on_error = handlers
        failure = RuntimeError("exchange broke")
        on_code.side_effect = failure
        port = _start(server, handlers)

        status, body, _ = http_get(port, f"/callback/?state={STATE}&code=ABC")

        assert status == 500
        assert body == "internal error. (RuntimeError)"
        on_error.assert_called_once_with(failure)
        assert not server.is_running

    def test_code_handler_token_denied(self, server, handlers, http_get):
        on_code, on_error = handlers
        on_code.side_effect = TokenDeniedError("invalid_grant", "Code expired")
        port = _start(server, handlers)

        status, body, _ = http_get(port, f"/callback/?state={STATE}&code=ABC")

        assert status == 400
        assert body == "token denied. invalid_grant"
        assert isinstance(on_error.call_args[0][0], TokenDeniedError)

    def test_malformed_request(self, server, handlers, raw_request, http_get):
        on_code, on_error = handlers
        port = _start(server, handlers)

        response = raw_request(port, b"NONSENSE\r\n")

        assert response.startswith(b"HTTP/1.0 400")
        assert response.endswith(b"malformed request")
        assert b"Server:" not in response
        assert server.is_running
        on_error.assert_not_called()

        status, _, _ = http_get(port, f"/callback/?state={STATE}&code=ABC")
        assert status == 200

    def test_client_closing_early_gets_no_response(self, server, handlers, raw_request, http_get):
        port = _start(server, handlers)

        assert raw_request(port, b"") == b""

        status, _, _ = http_get(port, f"/callback/?state={STATE}&code=ABC")
        assert status == 200

    def test_single_use(self, server, handlers, http_get):
        on_code, on_error = handlers
        port = _start(server, handlers)

        http_get(port, f"/callback/?state={STATE}&code=ABC")

        _assert_closed(port)
        on_code.assert_called_once()


class TestHandleCallback:
    def test_no_active_attempt(self, server):
        assert server.handle_callback(f"/callback/?state={STATE}&code=ABC") == (204, "")

    def test_restart_replaces_attempt(self, server):
        first_code, first_error = MagicMock(), MagicMock()
        second_code, second_error = MagicMock(), MagicMock()
        server.start("first", first_code, first_error)
        server.start("second", second_code, second_error)

        status, _ = server.handle_callback("/callback/?state=second&code=ABC")

        assert status == 200
        second_code.assert_called_once_with("ABC")
        first_code.assert_not_called()

    def test_blank_state_is_wrong_not_missing(self, server, handlers):
        _start(server, handlers)
        assert server.handle_callback("/callback/?state=&code=ABC") == (400, "wrong state ''")
