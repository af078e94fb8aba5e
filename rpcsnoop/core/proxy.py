"""
rpcsnoop Proxy Server
=====================
A forwarding proxy for a single JSON-RPC endpoint that prints every
request/response pair to the terminal.

Per exchange:
  1. build the outbound request and render the request body
  2. roll the chaos dice for both directions
  3. log the request (subject to suppression rules), drop it if chosen
  4. answer ``rpc_modules`` locally or forward upstream
  5. log the response (subject to suppression rules), drop it if chosen

Architecture:
  Uses Python's ``http.server`` + ``socketserver``: one thread per
  connection, no admission limit. Dropped exchanges sleep on their own
  thread, so they never hold up other clients.
"""

from __future__ import annotations

import ipaddress
import logging
import random
import socket
import threading
import time
from http.server import BaseHTTPRequestHandler
from socketserver import ThreadingTCPServer
from typing import Any, Dict, Optional

from rpcsnoop.config import ProxyConfig
from rpcsnoop.core.chaos import ChaosGate, PacketKind, PacketType
from rpcsnoop.core.context import ProxyContext
from rpcsnoop.core.forwarder import (
    InboundRequest,
    ProxyResponse,
    RequestForwarder,
    ResponseRetriever,
)
from rpcsnoop.core.jsonrpc import (
    PHASE_REQUEST,
    PHASE_RESPONSE,
    internal_error_body,
    parse_rpc_request,
    try_parse,
)
from rpcsnoop.core.override import RpcModulesOverride
from rpcsnoop.core.presenter import Presenter
from rpcsnoop.core.suppress import SuppressionEngine
from rpcsnoop.errors import ForwardError, PacketDropped, UpstreamError

logger = logging.getLogger(__name__)

__all__ = ["ExchangeHandler", "ProxyEngine", "error_response"]


def error_response(body: str) -> ProxyResponse:
    """500 response carrying a proxy-generated JSON-RPC error."""
    data = body.encode("utf-8")
    return ProxyResponse(
        status=500,
        reason="Internal Server Error",
        headers=[
            ("content-type", "application/json"),
            ("content-length", str(len(data))),
        ],
        body=data,
    )


# ── Exchange Pipeline ────────────────────────────────────────────────────────

class ExchangeHandler:
    """Runs one inbound request through the forward/chaos/log pipeline.

    Safe to share between handler threads: the only mutable state it
    touches is the context's RNG, which has its own lock.
    """

    def __init__(
        self,
        context: ProxyContext,
        presenter: Presenter,
        retriever: Optional[ResponseRetriever] = None,
        chaos: Optional[ChaosGate] = None,
    ):
        config = context.config
        self.context = context
        self.presenter = presenter
        self.forwarder = RequestForwarder(config.endpoint)
        self.retriever = retriever or ResponseRetriever(timeout=config.timeout)
        self.chaos = chaos or ChaosGate(context)
        self.suppression = SuppressionEngine(config)
        self.override = (
            RpcModulesOverride(config.rpc_modules_override)
            if config.rpc_modules_override is not None
            else None
        )

    def handle(self, inbound: InboundRequest) -> ProxyResponse:
        """Produce the response for ``inbound``.

        Raises:
            PacketDropped: chaos testing dropped the request or response.
        """
        try:
            outbound, request_json = self.forwarder.build(inbound)
        except ForwardError as e:
            body = internal_error_body(PHASE_REQUEST, e)
            self.presenter.show_error(body)
            return error_response(body)

        _warn_if_not_rpc(request_json)
        request_headers = list(outbound.headers)

        # Both directions are decided up front: a dropped response also
        # lifts suppression of its request line.
        request_type = self.chaos.classify(PacketKind.REQUEST)
        response_type = self.chaos.classify(PacketKind.RESPONSE)

        decision = self.suppression.decide(
            PacketType.request(), request_json, inbound.path, request_type, response_type
        )
        self.presenter.show(request_json, request_headers, request_type, inbound.path, None, decision)
        self.chaos.hold(request_type)

        if self.override is not None and self.override.matches(request_json):
            response, response_json = self.override.respond()
        else:
            try:
                response, response_json = self.retriever.retrieve(outbound)
            except UpstreamError as e:
                response_json = internal_error_body(PHASE_RESPONSE, e)
                response = error_response(response_json)

        decision = self.suppression.decide(
            PacketType.response(), request_json, inbound.path, request_type, response_type
        )
        self.presenter.show(
            response_json, list(response.headers), response_type, "", response.status, decision
        )
        self.chaos.hold(response_type)
        return response


def _warn_if_not_rpc(request_json: str) -> None:
    ok, data = try_parse(request_json)
    if ok and isinstance(data, dict) and parse_rpc_request(request_json) is None:
        logger.warning("Request body is a JSON object but not a JSON-RPC call")


# ── HTTP Handler ─────────────────────────────────────────────────────────────

_HOP_BY_HOP = ("transfer-encoding", "connection", "keep-alive")


class _ProxyHandler(BaseHTTPRequestHandler):
    """HTTP handler forwarding every method to the exchange pipeline."""

    protocol_version = "HTTP/1.1"

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)

    def __getattr__(self, name: str):
        # Any method: do_GET, do_POST, do_FOO ...
        if name.startswith("do_"):
            return self._proxy_request
        raise AttributeError(name)

    def _proxy_request(self):
        exchange: ExchangeHandler = self.server._exchange  # type: ignore

        try:
            body = self._read_body()
        except (ValueError, OSError) as e:
            logger.debug(f"Cannot read request body: {e}")
            self.send_error(400, "Malformed request body")
            return

        inbound = InboundRequest.from_target(self.command, self.path, list(self.headers.items()), body)
        try:
            response = exchange.handle(inbound)
        except PacketDropped as e:
            logger.debug(f"Exchange dropped: {e}")
            self.close_connection = True
            return
        except Exception as e:
            logger.exception(f"Unhandled error proxying {self.command} {self.path}")
            response = error_response(internal_error_body(PHASE_RESPONSE, e))

        self._send(response)

    def _read_body(self) -> bytes:
        if "chunked" in self.headers.get("Transfer-Encoding", "").lower():
            return self._read_chunked()
        length = int(self.headers.get("Content-Length") or 0)
        if length < 0:
            raise ValueError(f"negative Content-Length {length}")
        return self.rfile.read(length) if length else b""

    def _read_chunked(self) -> bytes:
        chunks = []
        while True:
            line = self.rfile.readline(65537)
            size = int(line.split(b";", 1)[0].strip(), 16)
            if size == 0:
                # Discard trailers.
                while self.rfile.readline(65537) not in (b"\r\n", b"\n", b""):
                    pass
                return b"".join(chunks)
            chunks.append(self.rfile.read(size))
            self.rfile.readline(65537)

    def _send(self, response: ProxyResponse) -> None:
        try:
            if response.version in ("HTTP/1.0", "HTTP/1.1"):
                self.protocol_version = response.version
            self.send_response_only(response.status, response.reason or None)
            has_length = False
            for key, val in response.headers:
                lkey = key.lower()
                if lkey in _HOP_BY_HOP:
                    continue
                if lkey == "content-length":
                    has_length = True
                self.send_header(key, val)
            if not has_length:
                self.send_header("Content-Length", str(len(response.body)))
            self.end_headers()
            if self.command != "HEAD":
                self.wfile.write(response.body)
        except OSError as e:
            logger.debug(f"Error sending response to client: {e}")
            self.close_connection = True


# ── Proxy Server ─────────────────────────────────────────────────────────────

class _ProxyServer(ThreadingTCPServer):
    """Threaded TCP server with exchange pipeline reference."""
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, addr, handler, exchange: ExchangeHandler):
        self._exchange = exchange
        if ":" in addr[0]:
            self.address_family = socket.AF_INET6
        super().__init__(addr, handler)


# ── Proxy Engine ─────────────────────────────────────────────────────────────

class ProxyEngine:
    """
    Owns the listening server and the shared exchange pipeline.

    ``start`` serves on a background daemon thread; ``wait`` blocks on it.
    """

    def __init__(
        self,
        config: ProxyConfig,
        presenter: Presenter,
        rng: Optional[random.Random] = None,
        retriever: Optional[ResponseRetriever] = None,
    ):
        self.config = config
        self.context = ProxyContext(config, rng)
        self.exchange = ExchangeHandler(self.context, presenter, retriever=retriever)
        self._server: Optional[_ProxyServer] = None
        self._thread: Optional[threading.Thread] = None
        self.is_running: bool = False
        self._start_time: float = 0

    @property
    def address(self) -> Optional[tuple]:
        """The bound ``(host, port)``; the port is real even if 0 was asked."""
        if self._server is None:
            return None
        return self._server.server_address[:2]

    # ── Lifecycle ────────────────────────────────────────────────────────

    def _bind(self) -> Dict[str, Any]:
        if self.is_running:
            return {"ok": False, "error": f"Proxy already running on {self.address}"}

        host, port = self.config.bind_address, self.config.port
        try:
            ipaddress.ip_address(host)
        except ValueError:
            return {"ok": False, "error": f"Error parsing listen address: {host!r}"}

        try:
            self._server = _ProxyServer((host, port), _ProxyHandler, self.exchange)
        except OSError as e:
            return {"ok": False, "error": f"Unable to bind to socket {host}:{port}: {e}"}

        self.is_running = True
        self._start_time = time.time()
        bound_host, bound_port = self.address
        logger.info(f"Proxy listening on {bound_host}:{bound_port} -> {self.config.endpoint}")
        return {
            "ok": True,
            "host": bound_host,
            "port": bound_port,
            "message": f"JSON-RPC proxy listening on {bound_host}:{bound_port}",
        }

    def start(self) -> Dict[str, Any]:
        """Bind and serve on a daemon thread.

        Returns:
            Status dict with host, port, result.
        """
        result = self._bind()
        if not result["ok"]:
            return result
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            daemon=True,
            name=f"rpcsnoop-{result['port']}",
        )
        self._thread.start()
        return result

    def wait(self, poll: float = 0.5) -> None:
        """Block until the server thread exits; Ctrl-C still gets through."""
        while self._thread is not None and self._thread.is_alive():
            self._thread.join(poll)

    def stop(self) -> Dict[str, Any]:
        """Stop a server started with :meth:`start`."""
        if not self.is_running:
            return {"ok": False, "error": "Proxy is not running"}

        try:
            self._server.shutdown()
        except Exception as e:
            logger.debug(f"Error during proxy shutdown: {e}")
        self._close()

        uptime = time.time() - self._start_time
        logger.info("Proxy stopped")
        return {"ok": True, "uptime_seconds": round(uptime, 1), "message": "Proxy stopped"}

    def _close(self) -> None:
        if self._server is not None:
            self._server.server_close()
        self.is_running = False
