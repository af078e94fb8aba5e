"""
Tests for the chaos gate and the shared RNG context.
"""

import random
import threading
from unittest.mock import MagicMock

import pytest

from rpcsnoop.config import ProxyConfig, SuppressScope
from rpcsnoop.core.chaos import ChaosGate, PacketKind, PacketType
from rpcsnoop.core.context import ProxyContext
from rpcsnoop.errors import PacketDropped


def _config(**kwargs) -> ProxyConfig:
    return ProxyConfig(endpoint="http://localhost:8545", **kwargs)


# ── PacketType ───────────────────────────────────────────────────────────────


class TestPacketType:
    def test_labels(self):
        assert PacketType.request().label == "REQUEST"
        assert PacketType.response().label == "RESPONSE"
        assert PacketType.request_dropped(1.0).label == "DROPPED REQUEST"
        assert PacketType.response_dropped(1.0).label == "DROPPED RESPONSE"

    def test_direction_and_drop_status(self):
        combos = {
            PacketType.request(): (True, False),
            PacketType.response(): (False, False),
            PacketType.request_dropped(3.0): (True, True),
            PacketType.response_dropped(3.0): (False, True),
        }
        for packet, (is_request, is_dropped) in combos.items():
            assert packet.is_request is is_request
            assert packet.is_dropped is is_dropped

    def test_delay_payload(self):
        assert PacketType.request_dropped(4.5).delay == 4.5
        assert PacketType.request().delay == 0.0

    def test_scope_matching(self):
        req, resp = PacketType.request(), PacketType.response()
        assert req.matches(SuppressScope.ALL) and resp.matches(SuppressScope.ALL)
        assert req.matches(SuppressScope.REQUEST)
        assert not req.matches(SuppressScope.RESPONSE)
        assert resp.matches(SuppressScope.RESPONSE)
        assert not resp.matches(SuppressScope.REQUEST)


# ── ChaosGate ────────────────────────────────────────────────────────────────


class TestChaosGate:
    def test_zero_rate_never_draws(self):
        rng = MagicMock()
        context = ProxyContext(_config(), rng=rng)
        gate = ChaosGate(context)
        for _ in range(100):
            assert gate.classify(PacketKind.REQUEST) == PacketType.request()
            assert gate.classify(PacketKind.RESPONSE) == PacketType.response()
        rng.random.assert_not_called()
        assert context.draws == 0

    def test_zero_rate_deterministic_across_seeds(self):
        for seed in range(5):
            gate = ChaosGate(ProxyContext(_config(seed=seed)))
            assert [gate.classify(PacketKind.REQUEST).is_dropped for _ in range(20)] == [False] * 20

    def test_full_rate_always_drops(self):
        gate = ChaosGate(ProxyContext(_config(drop_request_rate=1.0, drop_response_rate=1.0, drop_delay=7.0)))
        for _ in range(100):
            assert gate.classify(PacketKind.REQUEST) == PacketType.request_dropped(7.0)
            assert gate.classify(PacketKind.RESPONSE) == PacketType.response_dropped(7.0)

    def test_one_draw_per_direction(self):
        context = ProxyContext(_config(drop_request_rate=0.5, drop_response_rate=0.5))
        gate = ChaosGate(context)
        gate.classify(PacketKind.REQUEST)
        assert context.draws == 1
        gate.classify(PacketKind.RESPONSE)
        assert context.draws == 2

    def test_only_nonzero_direction_draws(self):
        context = ProxyContext(_config(drop_response_rate=0.3))
        gate = ChaosGate(context)
        gate.classify(PacketKind.REQUEST)
        assert context.draws == 0
        gate.classify(PacketKind.RESPONSE)
        assert context.draws == 1

    def test_threshold_is_inclusive(self):
        rng = MagicMock()
        rng.random.return_value = 0.25
        gate = ChaosGate(ProxyContext(_config(drop_request_rate=0.25), rng=rng))
        assert gate.classify(PacketKind.REQUEST).is_dropped

    def test_above_threshold_passes(self):
        rng = MagicMock()
        rng.random.return_value = 0.26
        gate = ChaosGate(ProxyContext(_config(drop_request_rate=0.25), rng=rng))
        assert not gate.classify(PacketKind.REQUEST).is_dropped

    def test_seed_reproducible(self):
        cfg = _config(drop_request_rate=0.5, drop_response_rate=0.5, seed=1234)
        a = ChaosGate(ProxyContext(cfg))
        b = ChaosGate(ProxyContext(cfg))
        seq_a = [a.classify(PacketKind.REQUEST).is_dropped for _ in range(50)]
        seq_b = [b.classify(PacketKind.REQUEST).is_dropped for _ in range(50)]
        assert seq_a == seq_b
        assert any(seq_a) and not all(seq_a)

    def test_hold_normal_packet_returns(self):
        sleep = MagicMock()
        gate = ChaosGate(ProxyContext(_config()), sleep=sleep)
        gate.hold(PacketType.request())
        gate.hold(PacketType.response())
        sleep.assert_not_called()

    def test_hold_dropped_sleeps_then_raises(self):
        sleep = MagicMock()
        gate = ChaosGate(ProxyContext(_config()), sleep=sleep)
        with pytest.raises(PacketDropped) as exc:
            gate.hold(PacketType.response_dropped(12.0))
        sleep.assert_called_once_with(12.0)
        assert exc.value.label == "DROPPED RESPONSE"
        assert exc.value.delay == 12.0


# ── Thread Safety ────────────────────────────────────────────────────────────


class TestThreadSafety:
    def test_concurrent_draws(self):
        context = ProxyContext(_config(drop_request_rate=0.5), rng=random.Random(1))
        gate = ChaosGate(context)
        barrier = threading.Barrier(20)

        def classify():
            barrier.wait()
            for _ in range(50):
                gate.classify(PacketKind.REQUEST)

        threads = [threading.Thread(target=classify) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert context.draws == 1000
