"""
Shared fixtures: a real local upstream and capture consoles.
"""

import io
import socket
import threading
from datetime import datetime
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from rpcsnoop.core.presenter import Presenter
from rpcsnoop.ui import make_console

FIXED_NOW = datetime(2026, 10, 6, 14, 3, 59, 123456)
UPSTREAM_REPLY = b'{"jsonrpc":"2.0","id":1,"result":"0x10"}'


class _UpstreamHandler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def log_message(self, format, *args):
        pass

    def _reply(self):
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length) if length else b""
        self.server.received.append({
            "method": self.command,
            "path": self.path,
            "headers": list(self.headers.items()),
            "body": body,
        })
        status, payload = self.server.reply
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("X-Upstream", "yes")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    do_GET = _reply
    do_POST = _reply
    do_PUT = _reply


@pytest.fixture
def upstream():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _UpstreamHandler)
    server.daemon_threads = True
    server.received = []
    server.reply = (200, UPSTREAM_REPLY)
    server.url = f"http://127.0.0.1:{server.server_address[1]}"
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def closed_port():
    """A local port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture(autouse=True)
def _no_color_env(monkeypatch):
    monkeypatch.delenv("NO_COLOR", raising=False)
    monkeypatch.delenv("RPCSNOOP_NO_COLOR", raising=False)
    monkeypatch.delenv("RPCSNOOP_ENDPOINT", raising=False)
    monkeypatch.delenv("RPCSNOOP_BIND_ADDRESS", raising=False)
    monkeypatch.delenv("RPCSNOOP_PORT", raising=False)
    monkeypatch.delenv("RPCSNOOP_DROP_DELAY", raising=False)


def make_presenter(color=False, log_headers=False):
    """Presenter writing to a StringIO; returns ``(presenter, buffer)``."""
    buf = io.StringIO()
    console = make_console(color=color, file=buf)
    return Presenter(console, log_headers=log_headers, clock=lambda: FIXED_NOW), buf
