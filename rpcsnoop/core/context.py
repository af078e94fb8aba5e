"""
Process-wide proxy state shared by every exchange.
"""

from __future__ import annotations

import random
import threading
from typing import Optional

from rpcsnoop.config import ProxyConfig


class ProxyContext:
    """Frozen config plus the single chaos RNG.

    The config is never mutated after startup so handlers read it without
    locking. The RNG is the only shared mutable state; ``draw`` holds its
    lock for exactly one call and never across I/O or sleeps.
    """

    def __init__(self, config: ProxyConfig, rng: Optional[random.Random] = None):
        self.config = config
        self._rng = rng if rng is not None else random.Random(config.seed)
        self._rng_lock = threading.Lock()
        self.draws = 0

    def draw(self) -> float:
        """Uniform float in [0, 1) from the shared generator."""
        with self._rng_lock:
            self.draws += 1
            return self._rng.random()
