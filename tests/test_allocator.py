"""Tests for backend selection, rate limiting and usage accounting."""

import asyncio
import threading

import pytest

from conftest import FakeClock, ScriptedLLMClient
from models import BackendConfig, BalancingPolicy
from orchestration.allocator import RATE_WINDOW_SECONDS, ResourceAllocator


def make_allocator(policy=BalancingPolicy.LEAST_LOADED, rpm=60, max_concurrent=10, count=2, clock=None):
    configs = [
        BackendConfig(
            id=f"account{i}",
            api_key=f"key-{i}",
            requests_per_minute=rpm,
            max_concurrent=max_concurrent
        )
        for i in range(1, count + 1)
    ]
    client = ScriptedLLMClient()
    return ResourceAllocator(configs, policy=policy, client_factory=lambda c: client, clock=clock or FakeClock())


class TestConstruction:

    def test_requires_backends(self):
        with pytest.raises(ValueError, match="At least one backend"):
            ResourceAllocator([])

    def test_assigns_default_ids(self):
        configs = [BackendConfig(api_key="a"), BackendConfig(api_key="b")]
        allocator = ResourceAllocator(configs, client_factory=lambda c: ScriptedLLMClient())
        assert allocator.backend_ids == ["account1", "account2"]
        assert allocator.get_config("account2").api_key == "b"

    def test_rejects_duplicate_ids(self):
        configs = [BackendConfig(id="same", api_key="a"), BackendConfig(id="same", api_key="b")]
        with pytest.raises(ValueError, match="Duplicate backend id"):
            ResourceAllocator(configs, client_factory=lambda c: ScriptedLLMClient())


class TestPolicies:

    def test_round_robin_cycles_in_configuration_order(self):
        allocator = make_allocator(BalancingPolicy.ROUND_ROBIN, count=3)
        selected = [allocator.select_backend() for _ in range(6)]
        assert selected == ["account1", "account2", "account3"] * 2

    def test_least_loaded_prefers_fewest_in_flight(self):
        allocator = make_allocator(BalancingPolicy.LEAST_LOADED)
        allocator.acquire("account1")
        assert allocator.select_backend() == "account2"

    def test_least_loaded_ties_break_by_configuration_order(self):
        allocator = make_allocator(BalancingPolicy.LEAST_LOADED)
        assert allocator.select_backend() == "account1"

    def test_cost_optimized_prefers_lowest_cumulative_cost(self):
        allocator = make_allocator(BalancingPolicy.COST_OPTIMIZED)
        lease = allocator.acquire("account1")
        allocator.release(lease.backend_id, tokens_used=1000, cost=0.5)
        assert allocator.select_backend() == "account2"

    def test_set_policy(self):
        allocator = make_allocator(BalancingPolicy.LEAST_LOADED)
        allocator.set_policy(BalancingPolicy.ROUND_ROBIN)
        assert allocator.policy == BalancingPolicy.ROUND_ROBIN

    def test_skips_backends_at_capacity(self):
        allocator = make_allocator(BalancingPolicy.COST_OPTIMIZED, max_concurrent=1)
        allocator.release(allocator.acquire("account2").backend_id, cost=1.0)
        allocator.acquire("account1")
        # account1 is cheaper but full
        assert allocator.select_backend() == "account2"


class TestRateLimits:

    def test_rate_limited_after_rpm_requests(self):
        clock = FakeClock()
        allocator = make_allocator(rpm=2, clock=clock)
        for _ in range(2):
            lease = allocator.acquire("account1")
            allocator.release(lease.backend_id)
        assert allocator.is_rate_limited("account1")
        assert not allocator.is_rate_limited("account2")

    def test_window_expires(self):
        clock = FakeClock()
        allocator = make_allocator(rpm=1, clock=clock)
        allocator.release(allocator.acquire("account1").backend_id)
        assert allocator.is_rate_limited("account1")

        clock.advance(RATE_WINDOW_SECONDS + 0.001)
        assert not allocator.is_rate_limited("account1")

    def test_least_loaded_avoids_rate_limited_backend(self):
        clock = FakeClock()
        allocator = make_allocator(BalancingPolicy.LEAST_LOADED, rpm=2, clock=clock)
        for _ in range(2):
            allocator.release(allocator.acquire("account1").backend_id)
        allocator.acquire("account2")
        # account2 is busier but account1 is rate limited
        assert allocator.select_backend() == "account2"

    def test_cost_optimized_avoids_rate_limited_backend(self):
        clock = FakeClock()
        allocator = make_allocator(BalancingPolicy.COST_OPTIMIZED, rpm=2, clock=clock)
        for _ in range(2):
            allocator.release(allocator.acquire("account1").backend_id)
        allocator.release(allocator.acquire("account2").backend_id, tokens_used=500, cost=1.0)
        # account1 has spent nothing but is rate limited
        assert allocator.is_rate_limited("account1")
        assert allocator.select_backend() == "account2"

    def test_falls_back_to_all_backends_when_all_limited(self):
        allocator = make_allocator(rpm=1)
        for backend_id in ("account1", "account2"):
            allocator.release(allocator.acquire(backend_id).backend_id)
        assert not allocator.any_available()
        assert allocator.select_backend() in {"account1", "account2"}

    @pytest.mark.asyncio
    async def test_wait_for_availability_returns_immediately(self):
        allocator = make_allocator()
        assert await allocator.wait_for_availability(timeout=0.1) is True

    @pytest.mark.asyncio
    async def test_wait_for_availability_times_out(self):
        allocator = make_allocator(rpm=1, count=1)
        allocator.release(allocator.acquire().backend_id)
        assert await allocator.wait_for_availability(poll_interval=0.01, timeout=0.05) is False

    @pytest.mark.asyncio
    async def test_wait_for_availability_wakes_when_window_passes(self):
        clock = FakeClock()
        allocator = make_allocator(rpm=1, count=1, clock=clock)
        allocator.release(allocator.acquire().backend_id)

        async def pass_window():
            await asyncio.sleep(0.03)
            clock.advance(RATE_WINDOW_SECONDS + 1)

        waiter = asyncio.create_task(allocator.wait_for_availability(poll_interval=0.01, timeout=1.0))
        await pass_window()
        assert await waiter is True


class TestAccounting:

    def test_release_adds_usage(self):
        allocator = make_allocator()
        lease = allocator.acquire("account1")
        assert allocator.get_backend_stats("account1").active_requests == 1

        allocator.release(lease.backend_id, tokens_used=250, cost=0.002)
        stats = allocator.get_backend_stats("account1")
        assert stats.active_requests == 0
        assert stats.total_requests == 1
        assert stats.total_tokens == 250
        assert stats.total_cost == pytest.approx(0.002)
        assert stats.last_used is not None

    def test_active_requests_never_negative(self):
        allocator = make_allocator()
        allocator.release("account1")
        allocator.release("account1")
        assert allocator.get_backend_stats("account1").active_requests == 0

    def test_unknown_backend(self):
        allocator = make_allocator()
        with pytest.raises(KeyError):
            allocator.acquire("missing")

    def test_lease_releases_on_error(self):
        allocator = make_allocator()
        with pytest.raises(RuntimeError):
            with allocator.lease("account1") as lease:
                lease.record_usage(100, 0.001)
                raise RuntimeError("boom")
        stats = allocator.get_backend_stats("account1")
        assert stats.active_requests == 0
        assert stats.total_tokens == 100

    def test_concurrent_acquire_release_is_consistent(self):
        allocator = make_allocator(rpm=100000, max_concurrent=1000)

        def hammer():
            for _ in range(200):
                with allocator.lease() as lease:
                    lease.record_usage(10, 0.001)

        threads = [threading.Thread(target=hammer) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        snapshot = allocator.stats_snapshot()
        assert snapshot.combined.total_requests == 1600
        assert snapshot.combined.total_tokens == 16000
        assert snapshot.combined.total_cost == pytest.approx(1.6)
        assert snapshot.combined.active_requests == 0

    def test_stats_snapshot_is_a_copy(self):
        allocator = make_allocator()
        snapshot = allocator.stats_snapshot()
        allocator.release(allocator.acquire("account1").backend_id, tokens_used=5)
        assert snapshot.backends["account1"].total_tokens == 0
        assert snapshot.policy == BalancingPolicy.LEAST_LOADED

    def test_health_status(self):
        allocator = make_allocator(rpm=3)
        allocator.acquire("account1")
        health = allocator.health_status()
        assert health["account1"].active_requests == 1
        assert health["account1"].rate_limit_remaining == 2
        assert health["account1"].available is True
        assert health["account2"].rate_limit_remaining == 3
