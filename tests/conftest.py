"""Pytest configuration and shared fixtures."""

import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from registrar.config import ENV_VARS
from registrar.registry import InMemoryRegistry, start_registry_server


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's EUREKA_* / PORT settings out of the tests."""
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def registry_server():
    """Local Eureka-compatible registry; yields (registry, base_url)."""
    registry = InMemoryRegistry()
    server = start_registry_server(registry, host="127.0.0.1", port=0)
    host, port = server.server_address[:2]
    yield registry, f"http://{host}:{port}/eureka"
    server.shutdown()
    server.server_close()


def _status_handler(status: int):
    class Handler(BaseHTTPRequestHandler):
        def log_message(self, format, *args):
            pass

        def do_GET(self):
            self.send_response(status)
            self.send_header("Content-Length", "0")
            self.end_headers()

    return Handler


@pytest.fixture
def http_target():
    """Factory starting a local HTTP server answering GET with a fixed status."""
    servers = []

    def _start(status: int = 200) -> int:
        server = ThreadingHTTPServer(("127.0.0.1", 0), _status_handler(status))
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return server.server_address[1]

    yield _start
    for server in servers:
        server.shutdown()
        server.server_close()


@pytest.fixture
def silent_port():
    """A port that accepts TCP connections but never answers."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(8)
    yield sock.getsockname()[1]
    sock.close()


@pytest.fixture
def closed_port():
    """A port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
