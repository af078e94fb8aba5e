"""
Request forwarding and response retrieval.

``RequestForwarder`` turns an inbound request into the request sent to the
configured endpoint; ``ResponseRetriever`` sends it and buffers the whole
reply so it can be both rendered and returned to the client unchanged.
"""

from __future__ import annotations

import http.client
import logging
import re
import ssl
import urllib.parse
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from rpcsnoop.core.jsonrpc import render_json
from rpcsnoop.errors import ForwardError, UpstreamError

logger = logging.getLogger(__name__)

Headers = List[Tuple[str, str]]

_HEADER_NAME = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")
_ILLEGAL_HEADER_VALUE = re.compile(r"[\r\n\x00]")
_ILLEGAL_URI_CHAR = re.compile(r"[\x00-\x20\x7f]")

_HTTP_VERSIONS = {9: "HTTP/0.9", 10: "HTTP/1.0", 11: "HTTP/1.1"}


# ── Data Models ──────────────────────────────────────────────────────────────

@dataclass
class InboundRequest:
    """A request as received from the client."""
    method: str
    path: str
    query: Optional[str] = None
    headers: Headers = field(default_factory=list)
    body: bytes = b""

    @classmethod
    def from_target(cls, method: str, target: str, headers: Headers, body: bytes) -> "InboundRequest":
        """Build from a raw request-target such as ``/foo?x=1``.

        Origin-form targets are split on the first ``?`` only, so paths such
        as ``//rpc/v1`` are kept as sent.
        """
        if target.startswith("/"):
            path, _, query = target.partition("?")
        else:
            # absolute-form, e.g. from clients configured to use a proxy
            parsed = urllib.parse.urlsplit(target)
            path, query = parsed.path, parsed.query
        return cls(
            method=method,
            path=path or "/",
            query=query or None,
            headers=list(headers),
            body=body,
        )


@dataclass
class OutboundRequest:
    """The request sent to the upstream endpoint."""
    method: str
    url: str
    headers: Headers = field(default_factory=list)
    body: bytes = b""


@dataclass
class ProxyResponse:
    """A fully buffered response handed back to the client."""
    status: int
    reason: str = ""
    headers: Headers = field(default_factory=list)
    body: bytes = b""
    version: str = "HTTP/1.1"

    def get_header(self, name: str) -> Optional[str]:
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return None


def host_port(uri: str) -> str:
    """``host[:port]`` exactly as written in ``uri``, without userinfo."""
    return urllib.parse.urlsplit(uri).netloc.rpartition("@")[2]


# ── Request side ─────────────────────────────────────────────────────────────

class RequestForwarder:
    """Builds the outbound request for a fixed destination."""

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        self._base = endpoint.rstrip("/")
        self._host = host_port(endpoint)

    def destination(self, inbound: InboundRequest) -> str:
        if inbound.path == "/" and inbound.query is None:
            return self.endpoint
        url = self._base + inbound.path
        if inbound.query is not None:
            url += "?" + inbound.query
        return url

    def build(self, inbound: InboundRequest) -> Tuple[OutboundRequest, str]:
        """Return the outbound request and the body rendered for display.

        Raises:
            ForwardError: a header or the destination URI is malformed.
        """
        url = self.destination(inbound)
        _check_uri(url)

        headers: Headers = []
        seen_host = False
        for name, value in inbound.headers:
            lname = name.lower()
            if lname == "accept-encoding":
                # we don't want fancy encoding of the response
                continue
            if lname == "host":
                value = self._host
                seen_host = True
            _check_header(name, value)
            headers.append((name, value))
        if not seen_host:
            headers.append(("Host", self._host))

        outbound = OutboundRequest(
            method=inbound.method,
            url=url,
            headers=headers,
            body=inbound.body,
        )
        return outbound, render_json(inbound.body)


def _check_header(name: str, value: str) -> None:
    if not _HEADER_NAME.fullmatch(name):
        raise ForwardError(f"invalid header name {name!r}")
    if _ILLEGAL_HEADER_VALUE.search(value):
        raise ForwardError(f"invalid value for header {name!r}")


def _check_uri(url: str) -> None:
    if _ILLEGAL_URI_CHAR.search(url):
        raise ForwardError(f"invalid character in destination URI {url!r}")
    try:
        parsed = urllib.parse.urlsplit(url)
        parsed.port
    except ValueError as e:
        raise ForwardError(f"invalid destination URI {url!r}: {e}") from None
    if not parsed.scheme or not parsed.hostname:
        raise ForwardError(f"invalid destination URI {url!r}")


# ── Response side ────────────────────────────────────────────────────────────

class ResponseRetriever:
    """Sends outbound requests over plain or TLS connections."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._ssl_context = ssl.create_default_context()

    def _connect(self, parsed: urllib.parse.SplitResult) -> http.client.HTTPConnection:
        kwargs: Dict[str, Any] = {}
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        if parsed.scheme == "https":
            return http.client.HTTPSConnection(
                parsed.hostname, parsed.port, context=self._ssl_context, **kwargs
            )
        return http.client.HTTPConnection(parsed.hostname, parsed.port, **kwargs)

    def retrieve(self, outbound: OutboundRequest) -> Tuple[ProxyResponse, str]:
        """Send ``outbound`` and return the buffered response and its display form.

        Raises:
            UpstreamError: connecting, sending or reading failed.
        """
        parsed = urllib.parse.urlsplit(outbound.url)
        target = parsed.path or "/"
        if parsed.query:
            target += "?" + parsed.query

        conn = self._connect(parsed)
        try:
            # Host and Accept-Encoding come from the outbound headers only.
            conn.putrequest(outbound.method, target, skip_host=True, skip_accept_encoding=True)
            for name, value in _wire_headers(outbound.headers, outbound.body):
                conn.putheader(name, value)
            conn.endheaders(outbound.body or None)

            resp = conn.getresponse()
            body = resp.read()
        except (OSError, http.client.HTTPException, ValueError) as e:
            logger.debug(f"Upstream request to {outbound.url} failed: {e!r}")
            raise UpstreamError(f"{type(e).__name__}: {e}") from e
        finally:
            conn.close()

        response = ProxyResponse(
            status=resp.status,
            reason=resp.reason,
            headers=list(resp.getheaders()),
            body=body,
            version=_HTTP_VERSIONS.get(resp.version, "HTTP/1.1"),
        )
        return response, render_json(body)


def _wire_headers(headers: Headers, body: bytes) -> Headers:
    """Headers as sent on the wire; the body is always sent unchunked."""
    wire = [(k, v) for k, v in headers if k.lower() != "transfer-encoding"]
    if body and not any(k.lower() == "content-length" for k, _ in wire):
        wire.append(("Content-Length", str(len(body))))
    return wire
