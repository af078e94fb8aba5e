"""
Local answer for ``rpc_modules``.

Some endpoints (infura, nethermind by default) don't implement
``rpc_modules``, which ``geth attach`` calls first. With an override list
configured the proxy answers that call itself.
"""

from __future__ import annotations

import json
from typing import Sequence, Tuple

from rpcsnoop.core.forwarder import ProxyResponse
from rpcsnoop.core.jsonrpc import parse_rpc_request, render_json

RPC_MODULES_METHOD = "rpc_modules"
MODULE_VERSION = "1.0"


class RpcModulesOverride:
    def __init__(self, modules: Sequence[str]):
        self.modules = tuple(modules)

    def matches(self, request_json: str) -> bool:
        call = parse_rpc_request(request_json)
        return call is not None and call.method == RPC_MODULES_METHOD

    def respond(self) -> Tuple[ProxyResponse, str]:
        body = json.dumps(
            {
                "jsonrpc": "2.0",
                "result": {module: MODULE_VERSION for module in self.modules},
                "id": 1,
            },
            separators=(",", ":"),
        ).encode("utf-8")
        response = ProxyResponse(
            status=200,
            reason="OK",
            headers=[
                ("content-type", "application/json"),
                ("content-length", str(len(body))),
            ],
            body=body,
        )
        return response, render_json(body)
