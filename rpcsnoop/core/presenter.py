"""
Terminal rendering of exchanges.

Each entry is a header line (timestamp, packet label, optional status and
message), an optional ``headers:`` block and the body. Every body line is
styled on its own so pagers such as ``less -R`` keep the color on every
line. One entry is written with a single ``Console.print`` call; rich
serializes those, so concurrent exchanges never interleave mid-entry.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional, Tuple

from rich.console import Console
from rich.text import Text

from rpcsnoop.core.chaos import PacketKind, PacketType
from rpcsnoop.core.jsonrpc import is_rpc_error_response, trim_json
from rpcsnoop.core.suppress import SuppressDecision


def format_timestamp(now: datetime) -> str:
    """``Oct  6 14:03:59.123 2026`` (local time, millisecond precision)."""
    return f"{now:%b} {now.day:>2} {now:%H:%M:%S}.{now.microsecond // 1000:03d} {now:%Y}"


class Presenter:
    def __init__(
        self,
        console: Console,
        log_headers: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.console = console
        self.log_headers = log_headers
        self._clock = clock

    @staticmethod
    def body_style(body: str, packet: PacketType) -> str:
        kind = packet.kind
        if kind == PacketKind.REQUEST:
            return "request"
        if kind == PacketKind.RESPONSE:
            return "error" if is_rpc_error_response(body) else "success"
        if kind in (PacketKind.REQUEST_DROPPED, PacketKind.RESPONSE_DROPPED):
            return "dropped"
        raise ValueError(f"unknown packet kind {kind!r}")

    def render(
        self,
        body: str,
        headers: List[Tuple[str, str]],
        packet: PacketType,
        message: str = "",
        status: Optional[int] = None,
        decision: Optional[SuppressDecision] = None,
    ) -> Optional[Text]:
        """Build the log entry, or ``None`` when it is fully suppressed."""
        if decision is not None and decision.silent:
            return None

        style = self.body_style(body, packet)
        if decision is not None:
            body = trim_json(body, decision.limit)
            if packet.is_request:
                message = decision.label

        parts = [format_timestamp(self._clock()), packet.label]
        if status is not None:
            parts[-1] += f" (status {status})"
        if message and message != "/":
            parts.append(message)
        text = Text(" ".join(parts))

        if self.log_headers and headers:
            text.append("\nheaders:")
            for name, value in headers:
                text.append(f"\n    ({name}, {value})")

        if decision is None or decision.limit > 0:
            for line in body.split("\n"):
                text.append("\n")
                text.append(line, style=style)
        return text

    def show(
        self,
        body: str,
        headers: List[Tuple[str, str]],
        packet: PacketType,
        message: str = "",
        status: Optional[int] = None,
        decision: Optional[SuppressDecision] = None,
    ) -> None:
        text = self.render(body, headers, packet, message, status, decision)
        if text is not None:
            self.console.print(text)

    def show_error(self, body: str) -> None:
        """Print a proxy-generated error body in the error color."""
        text = Text()
        for i, line in enumerate(body.split("\n")):
            if i:
                text.append("\n")
            text.append(line, style="error")
        self.console.print(text)
