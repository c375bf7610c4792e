import random

import pytest

from dispatcher import PushDispatcher
from errors import NoBackendAvailable, PushExhausted


class Backend:
    def __init__(self, name, accept, network=None):
        self.name = name
        self.network = network
        self.accept = accept
        self.calls = 0

    def push_tx(self, raw_tx):
        self.calls += 1
        return self.accept


class Exploding(Backend):
    def push_tx(self, raw_tx):
        self.calls += 1
        raise RuntimeError("connection reset")


def test_no_backend():
    with pytest.raises(NoBackendAvailable):
        PushDispatcher().push("00")


def test_single_backend_is_called_once():
    ok = Backend("a", True)
    assert PushDispatcher([ok]).push("00") is True
    assert ok.calls == 1

    ko = Backend("b", False)
    with pytest.raises(PushExhausted) as e:
        PushDispatcher([ko]).push("00")
    assert ko.calls == 1
    assert e.value.attempts == 1


def test_failover_reaches_the_working_backend():
    good = Backend("b2", True)
    backends = [Backend("b1", False), good, Backend("b3", False)]
    d = PushDispatcher(backends, rng=random.Random(1))
    successes = 0
    for _ in range(200):
        try:
            successes += d.push("00")
        except PushExhausted:
            pass
    assert successes > 0
    # never more than 3 attempts per push
    assert sum(b.calls for b in backends) <= 600


def test_failover_keeps_trying_after_first_failure():
    # regression: a failed first attempt must not end the retry loop
    class Seq(random.Random):
        def __init__(self, picks):
            super().__init__()
            self.picks = list(picks)

        def choice(self, seq):
            return seq[self.picks.pop(0)]

    a, b = Backend("a", False), Backend("b", True)
    d = PushDispatcher([a, b], rng=Seq([0, 0, 1]))
    assert d.push("00") is True
    assert (a.calls, b.calls) == (2, 1)


def test_stops_at_first_success():
    backends = [Backend("a", True), Backend("b", True)]
    assert PushDispatcher(backends).push("00") is True
    assert sum(b.calls for b in backends) == 1


def test_all_failing_backends_exhaust_after_three_attempts():
    backends = [Backend(n, False) for n in "abc"]
    d = PushDispatcher(backends)
    for i in range(1, 11):
        with pytest.raises(PushExhausted) as e:
            d.push("00")
        assert e.value.attempts == 3
        assert sum(b.calls for b in backends) == 3 * i


def test_raising_backend_counts_as_failure():
    bad = Exploding("x", True)
    with pytest.raises(PushExhausted):
        PushDispatcher([bad, Exploding("y", True)]).push("00")
    assert bad.calls <= 3


def test_network_routing():
    main = Backend("main", True, network="main")
    test = Backend("test", True, network="test")
    d = PushDispatcher([main, test])
    assert d.candidates(None) == [main]
    assert d.candidates("t") == [test]
    assert d.candidates("testnet") == [test]
    d.push("00", "t")
    assert (main.calls, test.calls) == (0, 1)

    with pytest.raises(NoBackendAvailable):
        d.push("00", "signet")


def test_any_network_backend_serves_every_network():
    anyb = Backend("any", True, network=None)
    d = PushDispatcher([anyb])
    assert d.push("00", "t") and d.push("00", None)
    assert anyb.calls == 2
