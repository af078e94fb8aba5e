"""
Suppression of noisy traffic in the log.

Rules are looked up by JSON-RPC method first and request path second; a
rule only applies to the directions named by its scope. Dropped exchanges
are never suppressed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from rpcsnoop.config import ProxyConfig
from rpcsnoop.core.chaos import PacketType
from rpcsnoop.core.jsonrpc import parse_rpc_request


@dataclass(frozen=True)
class SuppressDecision:
    """How much of a packet to log.

    ``limit < 0`` logs nothing, ``0`` only the header line and ``n > 0`` at
    most ``n`` lines of the body. ``label`` replaces the request path in the
    header line.
    """
    limit: int
    label: str

    @property
    def silent(self) -> bool:
        return self.limit < 0


class SuppressionEngine:
    def __init__(self, config: ProxyConfig):
        self.methods = config.suppress_methods
        self.paths = config.suppress_paths

    def decide(
        self,
        message_type: PacketType,
        request_json: str,
        request_path: str,
        request_type: PacketType,
        response_type: PacketType,
    ) -> Optional[SuppressDecision]:
        """Return the rule-driven decision, or ``None`` to log in full."""
        if request_type.is_dropped or response_type.is_dropped:
            return None

        if self.methods:
            call = parse_rpc_request(request_json)
            rule = self.methods.get(call.method) if call else None
            if rule is not None and message_type.matches(rule.scope):
                return SuppressDecision(rule.lines, f"[method {call.method}]")

        rule = self.paths.get(request_path)
        if rule is not None and message_type.matches(rule.scope):
            return SuppressDecision(rule.lines, request_path)

        return None
