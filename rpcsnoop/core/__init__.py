"""
rpcsnoop Core Module
"""

from rpcsnoop.core.context import ProxyContext
from rpcsnoop.core.proxy import ExchangeHandler, ProxyEngine
from rpcsnoop.errors import PacketDropped

__all__ = ["ExchangeHandler", "PacketDropped", "ProxyContext", "ProxyEngine"]
