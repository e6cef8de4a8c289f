import http.client
import json
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from config import SpotifyConfig


@pytest.fixture
def spotify_config(tmp_path):
    return SpotifyConfig(
        client_id="client-id",
        client_secret="client-secret",
        redirect_uri="http://127.0.0.1:0/callback/",
        token_storage_path=tmp_path / "tokens.json",
        login_timeout=5.0,
    )


@pytest.fixture
def http_get():
    """GET a path on the local callback server, returns (status, body, headers)."""

    def _get(port, path):
        conn = http.client.HTTPConnection("127.0.0.1", port, timeout=5)
        try:
            conn.request("GET", path)
            resp = conn.getresponse()
            return resp.status, resp.read().decode("utf-8"), resp
        finally:
            conn.close()

    return _get


@pytest.fixture
def raw_request():
    """Send raw bytes to the callback server and read until it closes."""

    def _send(port, payload):
        with socket.create_connection(("127.0.0.1", port), timeout=5) as sock:
            if payload:
                sock.sendall(payload)
            else:
                sock.shutdown(socket.SHUT_WR)
            chunks = []
            while True:
                chunk = sock.recv(4096)
                if not chunk:
                    break
                chunks.append(chunk)
        return b"".join(chunks)

    return _send


def make_token_response(payload, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    return response


@pytest.fixture
def token_session():
    """Mock requests.Session whose post() returns a token response."""
    session = MagicMock()
    session.post.return_value = make_token_response(
        {
            "access_token": "X",
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": "R",
            "scope": "user-read-playback-state",
        }
    )
    return session


@pytest.fixture
def token_response():
    """Factory for mock token endpoint responses."""
    return make_token_response


@pytest.fixture
def slow_token_endpoint():
    """Local token endpoint that holds every request until the test ends."""
    received = threading.Event()
    release = threading.Event()

    class _SlowHandler(BaseHTTPRequestHandler):
        def do_POST(self):
            self.rfile.read(int(self.headers.get("Content-Length", 0)))
            received.set()
            release.wait(5)
            payload = json.dumps({"access_token": "late", "expires_in": 3600, "refresh_token": "R"}).encode()
            try:
                self.send_response(200)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)
            except OSError:
                pass

        def log_message(self, format, *args):
            pass

    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _SlowHandler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()

    yield SimpleNamespace(
        url=f"http://127.0.0.1:{httpd.server_address[1]}/api/token",
        received=received,
    )

    release.set()
    httpd.shutdown()
    httpd.server_close()
