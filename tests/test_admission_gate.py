import threading
import time

import pytest

from app.core.config import DEFAULT_RATE_POLICIES
from app.core.errors import UpstreamUnavailableError
from app.repositories.counter_store import LocalCounterStore, RedisCounterStore
from app.services.admission_service import RateAdmissionGate, RatePolicy
from tests.fakes import FailingCounterStore, FakeClock

POLICIES = {
    "orders": RatePolicy("orders", max_requests=3, window_seconds=60),
    "burst": RatePolicy("burst", max_requests=2, window_seconds=1),
}


def test_request_over_the_limit_is_denied():
    gate = RateAdmissionGate(POLICIES)

    decisions = [gate.admit("orders", "10.0.0.1") for _ in range(4)]

    assert [d.allowed for d in decisions] == [True, True, True, False]
    assert [d.remaining for d in decisions] == [2, 1, 0, 0]
    assert 1 <= decisions[-1].retry_after(time.time()) <= 60


def test_new_window_admits_again():
    gate = RateAdmissionGate(POLICIES)
    for _ in range(2):
        gate.admit("burst", "ip")
    assert gate.admit("burst", "ip").allowed is False

    time.sleep(1.1)

    fresh = gate.admit("burst", "ip")
    assert fresh.allowed is True
    assert fresh.remaining == 1


def test_identities_are_counted_separately():
    gate = RateAdmissionGate(POLICIES)
    for _ in range(3):
        gate.admit("orders", "10.0.0.1")

    assert gate.admit("orders", "10.0.0.1").allowed is False
    assert gate.admit("orders", "10.0.0.2").allowed is True


def test_decision_headers():
    gate = RateAdmissionGate(POLICIES)
    before = time.time()

    headers = gate.admit("orders", "ip").headers()

    assert headers["X-RateLimit-Limit"] == "3"
    assert headers["X-RateLimit-Remaining"] == "2"
    assert before + 59 <= int(headers["X-RateLimit-Reset"]) <= before + 61


def test_shared_store_counts_across_gates():
    shared = LocalCounterStore()
    first = RateAdmissionGate(POLICIES, shared=shared)
    second = RateAdmissionGate(POLICIES, shared=shared)

    first.admit("orders", "ip")
    first.admit("orders", "ip")
    second.admit("orders", "ip")

    assert second.admit("orders", "ip").allowed is False
    # Local stores were never touched
    assert first.local.hit("rate_limit:orders:ip", 3, 60).remaining == 2


def test_falls_back_to_local_counters_when_shared_store_fails(caplog):
    shared = FailingCounterStore()
    gate = RateAdmissionGate(POLICIES, shared=shared, clock=FakeClock())

    decisions = [gate.admit("orders", "ip") for _ in range(4)]

    assert [d.allowed for d in decisions] == [True, True, True, False]
    assert "using local counters" in caplog.text
    # Skips the broken store for a while instead of paying its timeout on every request
    assert shared.calls == 1


def test_shared_store_retried_after_backoff():
    clock = FakeClock()
    shared = FailingCounterStore()
    gate = RateAdmissionGate(POLICIES, shared=shared, clock=clock)

    gate.admit("orders", "ip")
    clock.advance(10)
    gate.admit("orders", "ip")

    assert shared.calls == 2


def test_failure_without_fallback_is_upstream_error():
    gate = RateAdmissionGate(POLICIES, shared=FailingCounterStore(), fallback_enabled=False, clock=FakeClock())
    with pytest.raises(UpstreamUnavailableError):
        gate.admit("orders", "ip")


def test_unreachable_redis_falls_back(caplog):
    shared = RedisCounterStore.from_url("redis://127.0.0.1:1/0", timeout=0.2)
    gate = RateAdmissionGate(POLICIES, shared=shared)

    decision = gate.admit("orders", "ip")

    assert decision.allowed is True
    assert decision.remaining == 2
    assert "using local counters" in caplog.text
    gate.close()


def test_unknown_policy():
    gate = RateAdmissionGate(POLICIES)
    with pytest.raises(KeyError):
        gate.admit("nope", "ip")


def test_local_store_is_safe_under_threads():
    store = LocalCounterStore()
    barrier = threading.Barrier(8)
    results = []

    def hammer():
        barrier.wait()
        for _ in range(50):
            results.append(store.hit("k", 100, 60).allowed)

    threads = [threading.Thread(target=hammer) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 100
    assert results.count(False) == 300


def test_default_policies_are_the_ones_routes_use():
    assert set(DEFAULT_RATE_POLICIES) == {
        "api",
        "strict",
        "orders",
        "tracking",
        "tier_basic",
        "tier_premium",
        "tier_enterprise",
    }
