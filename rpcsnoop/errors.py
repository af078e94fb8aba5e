"""
rpcsnoop exceptions.
"""

from __future__ import annotations


class SnoopError(Exception):
    """Base class for all rpcsnoop errors."""


class ConfigError(SnoopError):
    """Invalid startup configuration."""


class ForwardError(SnoopError):
    """The outbound request could not be assembled."""


class UpstreamError(SnoopError):
    """Connecting to or reading from the upstream endpoint failed."""


class PacketDropped(SnoopError):
    """An exchange was deliberately failed by the chaos gate."""

    def __init__(self, label: str, delay: float):
        self.label = label
        self.delay = delay
        super().__init__(f"{label} after {delay:.1f}s")
