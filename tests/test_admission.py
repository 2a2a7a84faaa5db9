"""Unit tests for the admission controller in api/limiter.py.

Covers:
- Requests up to the limit pass; the next one in the window is refused
- Windows open at the client's first request and reset once they expire
- X-RateLimit-Reset and Retry-After round up to whole seconds
- Clients are counted independently; unidentified clients share one bucket
- Concurrent admits never lose an increment
- Client id extraction from proxy headers

The in-memory storage reads time.time() from its own module; FakeClock is
swapped in there so windows can be stepped without sleeping.
"""

import math
import threading

import limits.storage.memory
import pytest
from starlette.requests import Request

from api.limiter import UNKNOWN_CLIENT, Admission, AdmissionController, client_id_from


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def time(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr(limits.storage.memory, "time", fake)
    return fake


def _request(headers: dict[str, str]) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in headers.items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


class TestAdmit:
    def test_limit_then_reject(self, clock):
        limiter = AdmissionController(max_requests=3)
        decisions = [limiter.admit("1.2.3.4") for _ in range(4)]
        assert [d.allowed for d in decisions] == [True, True, True, False]
        assert [d.remaining for d in decisions] == [2, 1, 0, 0]
        assert decisions[-1].reset_at == clock.now + 60

    def test_hundred_and_first_request_is_refused(self, clock):
        limiter = AdmissionController(max_requests=100, window_ms=60_000)
        decisions = [limiter.admit("c") for _ in range(101)]
        assert sum(d.allowed for d in decisions) == 100
        assert not decisions[-1].allowed

    def test_window_starts_at_first_request(self, clock):
        clock.advance(30)
        decision = AdmissionController().admit("c")
        assert decision.reset_at == 1_090.0

    def test_reset_epoch_rounds_up(self, clock):
        clock.now = 1_000.4
        decision = AdmissionController().admit("c")
        assert decision.reset_at == pytest.approx(1_060.4)
        assert decision.reset_epoch == 1_061

    def test_window_resets_after_expiry(self, clock):
        limiter = AdmissionController(max_requests=1)
        assert limiter.admit("c").allowed
        assert not limiter.admit("c").allowed
        clock.advance(59.9)
        assert not limiter.admit("c").allowed
        clock.advance(0.2)
        fresh = limiter.admit("c")
        assert fresh.allowed
        assert fresh.remaining == 0
        assert fresh.reset_at == pytest.approx(clock.now + 60)

    def test_clients_are_independent(self, clock):
        limiter = AdmissionController(max_requests=1)
        assert limiter.admit("a").allowed
        assert limiter.admit("b").allowed
        assert not limiter.admit("a").allowed

    def test_sub_second_window_rounds_up(self, clock):
        limiter = AdmissionController(max_requests=1, window_ms=1_500)
        assert limiter.admit("c").reset_at == clock.now + 2


class TestAdmission:
    def test_retry_after_rounds_up(self):
        refused = Admission(allowed=False, limit=1, remaining=0, reset_at=1_060.0)
        assert refused.retry_after(1_059.5) == 1
        assert refused.retry_after(1_000.0) == 60

    def test_retry_after_never_negative(self):
        refused = Admission(allowed=False, limit=1, remaining=0, reset_at=1_060.0)
        assert refused.retry_after(1_070.0) == 0

    def test_whole_second_reset_is_unchanged(self):
        assert Admission(allowed=True, limit=1, remaining=0, reset_at=1_060.0).reset_epoch == 1_060


class TestConcurrency:
    def test_no_lost_increments(self):
        limiter = AdmissionController(max_requests=10_000, window_ms=60_000)
        threads = [threading.Thread(target=lambda: [limiter.admit("shared") for _ in range(500)]) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert limiter.admit("shared").remaining == 10_000 - 4_001

    def test_exactly_limit_requests_admitted_under_contention(self):
        limiter = AdmissionController(max_requests=100, window_ms=60_000)
        allowed = []
        lock = threading.Lock()

        def worker():
            for _ in range(50):
                decision = limiter.admit("shared")
                with lock:
                    allowed.append(decision.allowed)

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sum(allowed) == 100

    def test_reset_header_is_a_whole_second_after_now(self):
        decision = AdmissionController(window_ms=60_000).admit("c")
        assert decision.reset_epoch == math.ceil(decision.reset_at)
        assert decision.reset_epoch >= decision.reset_at


class TestClientId:
    def test_cloudflare_header_wins(self):
        request = _request({"CF-Connecting-IP": "203.0.113.7", "X-Forwarded-For": "198.51.100.1"})
        assert client_id_from(request) == "203.0.113.7"

    def test_first_forwarded_hop(self):
        request = _request({"X-Forwarded-For": " 198.51.100.1 , 10.0.0.1"})
        assert client_id_from(request) == "198.51.100.1"

    @pytest.mark.parametrize("headers", [{}, {"X-Forwarded-For": ""}, {"CF-Connecting-IP": "  "}])
    def test_unknown_bucket(self, headers):
        assert client_id_from(_request(headers)) == UNKNOWN_CLIENT
