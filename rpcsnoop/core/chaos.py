"""
Chaos testing: randomly drop requests or responses.

A dropped packet is still logged, then the exchange sleeps for the
configured delay and is failed without a reply. Each direction consumes
exactly one RNG draw per exchange when its drop rate is non-zero and none
when it is zero, so zero-rate runs are fully deterministic.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from rpcsnoop.config import SuppressScope
from rpcsnoop.core.context import ProxyContext
from rpcsnoop.errors import PacketDropped

logger = logging.getLogger(__name__)


class PacketKind(str, Enum):
    REQUEST = "REQUEST"
    RESPONSE = "RESPONSE"
    REQUEST_DROPPED = "DROPPED REQUEST"
    RESPONSE_DROPPED = "DROPPED RESPONSE"


@dataclass(frozen=True)
class PacketType:
    """Direction plus drop status of one half of an exchange."""
    kind: PacketKind
    delay: float = 0.0

    @classmethod
    def request(cls) -> "PacketType":
        return cls(PacketKind.REQUEST)

    @classmethod
    def response(cls) -> "PacketType":
        return cls(PacketKind.RESPONSE)

    @classmethod
    def request_dropped(cls, delay: float) -> "PacketType":
        return cls(PacketKind.REQUEST_DROPPED, delay)

    @classmethod
    def response_dropped(cls, delay: float) -> "PacketType":
        return cls(PacketKind.RESPONSE_DROPPED, delay)

    @property
    def label(self) -> str:
        return self.kind.value

    @property
    def is_request(self) -> bool:
        return self.kind in (PacketKind.REQUEST, PacketKind.REQUEST_DROPPED)

    @property
    def is_dropped(self) -> bool:
        return self.kind in (PacketKind.REQUEST_DROPPED, PacketKind.RESPONSE_DROPPED)

    def matches(self, scope: SuppressScope) -> bool:
        """Whether a suppression rule with ``scope`` applies to this packet."""
        if scope == SuppressScope.ALL:
            return True
        if scope == SuppressScope.REQUEST:
            return self.is_request
        if scope == SuppressScope.RESPONSE:
            return not self.is_request
        raise ValueError(f"unknown suppression scope {scope!r}")


class ChaosGate:
    """Decides per direction whether an exchange is dropped."""

    def __init__(self, context: ProxyContext, sleep: Callable[[float], None] = time.sleep):
        self.context = context
        self._sleep = sleep

    def classify(self, direction: PacketKind) -> PacketType:
        config = self.context.config
        if direction in (PacketKind.REQUEST, PacketKind.REQUEST_DROPPED):
            rate = config.drop_request_rate
            normal = PacketType.request()
            dropped = PacketType.request_dropped(config.drop_delay)
        elif direction in (PacketKind.RESPONSE, PacketKind.RESPONSE_DROPPED):
            rate = config.drop_response_rate
            normal = PacketType.response()
            dropped = PacketType.response_dropped(config.drop_delay)
        else:
            raise ValueError(f"unknown packet direction {direction!r}")

        if rate == 0.0:
            return normal
        if self.context.draw() <= rate:
            return dropped
        return normal

    def hold(self, packet: PacketType) -> None:
        """Delay and fail the exchange if ``packet`` was dropped.

        Runs on the exchange's own thread, so other exchanges keep going.

        Raises:
            PacketDropped: always, for dropped packets.
        """
        if not packet.is_dropped:
            return
        logger.debug(f"{packet.label}: holding exchange for {packet.delay:.1f}s")
        self._sleep(packet.delay)
        raise PacketDropped(packet.label, packet.delay)
