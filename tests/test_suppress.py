"""
Tests for suppression rule precedence.
"""

from rpcsnoop.config import ProxyConfig, SuppressRule, SuppressScope
from rpcsnoop.core.chaos import PacketType
from rpcsnoop.core.suppress import SuppressDecision, SuppressionEngine

CALL = '{"id":1,"jsonrpc":"2.0","method":"eth_blockNumber","params":[]}'
REQ = PacketType.request()
RESP = PacketType.response()


def _engine(methods=None, paths=None) -> SuppressionEngine:
    return SuppressionEngine(ProxyConfig(
        endpoint="http://localhost:8545",
        suppress_methods=methods or {},
        suppress_paths=paths or {},
    ))


class TestSuppressionEngine:
    def test_no_rules(self):
        engine = _engine()
        assert engine.decide(REQ, CALL, "/", REQ, RESP) is None
        assert engine.decide(RESP, CALL, "/", REQ, RESP) is None

    def test_method_rule_all(self):
        engine = _engine(methods={"eth_blockNumber": SuppressRule(-1, SuppressScope.ALL)})
        expected = SuppressDecision(-1, "[method eth_blockNumber]")
        assert engine.decide(REQ, CALL, "/", REQ, RESP) == expected
        assert engine.decide(RESP, CALL, "/", REQ, RESP) == expected

    def test_method_rule_scoped(self):
        engine = _engine(methods={"eth_blockNumber": SuppressRule(0, SuppressScope.RESPONSE)})
        assert engine.decide(REQ, CALL, "/", REQ, RESP) is None
        assert engine.decide(RESP, CALL, "/", REQ, RESP) == SuppressDecision(0, "[method eth_blockNumber]")

    def test_method_rule_no_match(self):
        engine = _engine(methods={"eth_call": SuppressRule()})
        assert engine.decide(REQ, CALL, "/", REQ, RESP) is None

    def test_method_rule_needs_rpc_call(self):
        engine = _engine(methods={"eth_blockNumber": SuppressRule()})
        assert engine.decide(REQ, '{"method":"eth_blockNumber"}', "/", REQ, RESP) is None

    def test_path_rule(self):
        engine = _engine(paths={"/health": SuppressRule(3, SuppressScope.REQUEST)})
        assert engine.decide(REQ, "null", "/health", REQ, RESP) == SuppressDecision(3, "/health")
        assert engine.decide(RESP, "null", "/health", REQ, RESP) is None
        assert engine.decide(REQ, "null", "/other", REQ, RESP) is None

    def test_method_beats_path(self):
        engine = _engine(
            methods={"eth_blockNumber": SuppressRule(2, SuppressScope.ALL)},
            paths={"/rpc": SuppressRule(-1, SuppressScope.ALL)},
        )
        assert engine.decide(REQ, CALL, "/rpc", REQ, RESP) == SuppressDecision(2, "[method eth_blockNumber]")

    def test_path_applies_when_method_scope_misses(self):
        engine = _engine(
            methods={"eth_blockNumber": SuppressRule(2, SuppressScope.REQUEST)},
            paths={"/rpc": SuppressRule(-1, SuppressScope.ALL)},
        )
        assert engine.decide(RESP, CALL, "/rpc", REQ, RESP) == SuppressDecision(-1, "/rpc")

    def test_dropped_request_bypasses_rules(self):
        engine = _engine(
            methods={"eth_blockNumber": SuppressRule()},
            paths={"/": SuppressRule()},
        )
        dropped = PacketType.request_dropped(1.0)
        assert engine.decide(REQ, CALL, "/", dropped, RESP) is None
        assert engine.decide(RESP, CALL, "/", dropped, RESP) is None

    def test_dropped_response_bypasses_rules(self):
        engine = _engine(methods={"eth_blockNumber": SuppressRule()})
        dropped = PacketType.response_dropped(1.0)
        assert engine.decide(REQ, CALL, "/", REQ, dropped) is None
        assert engine.decide(RESP, CALL, "/", REQ, dropped) is None

    def test_decision_silent(self):
        assert SuppressDecision(-1, "").silent
        assert not SuppressDecision(0, "").silent
        assert not SuppressDecision(4, "").silent
