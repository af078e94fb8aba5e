"""
Best-effort JSON / JSON-RPC helpers used for display and rule matching.

Nothing in here is allowed to fail an exchange: bodies that are not JSON,
not UTF-8 or not JSON-RPC simply fall back to raw text or ``None``.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

INTERNAL_ERROR_CODE = -32603

PHASE_REQUEST = "processing request"
PHASE_RESPONSE = "processing response"


@dataclass
class RpcRequest:
    """A JSON-RPC call: ``{id, jsonrpc, method, params?}``."""
    id: float
    jsonrpc: str
    method: str
    params: List[Any] = field(default_factory=list)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def try_parse(text: str) -> Tuple[bool, Any]:
    """Decode JSON text, returning ``(ok, value)`` instead of raising."""
    try:
        return True, json.loads(text)
    except (ValueError, RecursionError):
        return False, None


def parse_rpc_request(text: str) -> Optional[RpcRequest]:
    """Return the JSON-RPC call in ``text`` or ``None`` if it isn't one."""
    ok, data = try_parse(text)
    if not ok or not isinstance(data, dict):
        return None
    params = data.get("params", [])
    if (
        not _is_number(data.get("id"))
        or not isinstance(data.get("jsonrpc"), str)
        or not isinstance(data.get("method"), str)
        or not isinstance(params, list)
    ):
        return None
    return RpcRequest(id=data["id"], jsonrpc=data["jsonrpc"], method=data["method"], params=params)


def is_rpc_error_response(text: str) -> bool:
    """True for ``{id, jsonrpc, error: {code, message}}`` shaped bodies."""
    ok, data = try_parse(text)
    if not ok or not isinstance(data, dict):
        return False
    error = data.get("error")
    return (
        _is_number(data.get("id"))
        and isinstance(data.get("jsonrpc"), str)
        and isinstance(error, dict)
        and _is_number(error.get("code"))
        and isinstance(error.get("message"), str)
    )


def render_json(body: bytes) -> str:
    """Render a body for display.

    Empty bodies render as ``null``; JSON is pretty-printed; anything else
    is shown as (lossily decoded) text.
    """
    if not body:
        return "null"
    text = body.decode("utf-8", errors="replace")
    ok, data = try_parse(text)
    if not ok:
        return text
    return json.dumps(data, indent=2, ensure_ascii=False)


def trim_json(text: str, limit: int) -> str:
    """Keep at most ``limit`` lines, eliding the middle with ``...``."""
    if limit <= 0:
        return ""
    lines = text.split("\n")
    if limit >= len(lines):
        return text
    head = math.ceil(limit / 2)
    tail = limit // 2
    return "\n".join(lines[:head] + ["..."] + lines[len(lines) - tail:])


def internal_error_body(phase: str, cause: object) -> str:
    """JSON-RPC error body for exchanges that failed inside the proxy."""
    return json.dumps(
        {
            "id": 1,
            "jsonrpc": "2.0",
            "error": {"code": INTERNAL_ERROR_CODE, "message": f"{phase}: {cause}"},
        },
        indent=2,
    )
