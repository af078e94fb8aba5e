"""
rpcsnoop: JSON-RPC Snooping Proxy
=================================

Forwards every request to a single JSON-RPC endpoint and dumps a
colorized rendering of each request/response pair to the terminal.

Features:
  • Method- and path-based suppression of noisy traffic
  • Random request/response dropping for client chaos testing
  • ``rpc_modules`` override for attaching geth consoles
"""

__version__ = "0.2.0"
__app_name__ = "rpcsnoop"
