"""Tests for the two-tier cache service and its degrade/recover behavior."""

import asyncio
import json

import pytest

from app.adapters.cache.base import RemoteResult
from app.services.cache_service import CacheStats, TieredCacheService


def _service(remote, clock, **kwargs) -> TieredCacheService:
    kwargs.setdefault("probe_interval_seconds", 30.0)
    return TieredCacheService(remote, clock=clock, **kwargs)


class TestRoundTrip:
    """Basic get/set behavior with a healthy remote."""

    @pytest.mark.asyncio
    async def test_set_then_get_returns_equal_value(self, remote, clock) -> None:
        cache = _service(remote, clock)

        assert await cache.set("product:abc", {"name": "Knife", "tags": ["edc"]}) is True
        assert await cache.get("product:abc") == {"name": "Knife", "tags": ["edc"]}

    @pytest.mark.asyncio
    async def test_remote_envelope_carries_data_and_timestamps(self, remote, clock) -> None:
        cache = _service(remote, clock, default_ttl=3600)

        await cache.set("product:abc", {"name": "Knife"})

        envelope = json.loads(remote.data["app:cache:product:abc"])
        assert envelope == {"data": {"name": "Knife"}, "stored_at": 1000.0, "expires_at": 4600.0}
        assert remote.ttls["app:cache:product:abc"] == 3600

    @pytest.mark.asyncio
    async def test_default_ttl_expiry_after_3601_seconds(self, remote, clock) -> None:
        cache = _service(remote, clock)

        await cache.set("product:abc", {"name": "Knife"})
        assert await cache.get("product:abc") == {"name": "Knife"}

        clock.advance(3601)
        assert await cache.get("product:abc") is None

    @pytest.mark.asyncio
    async def test_short_ttl_expires_locally(self, clock) -> None:
        cache = _service(None, clock)

        await cache.set("k", "v", ttl=1)
        clock.advance(1.01)

        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_remote_envelope_expiry_is_enforced(self, remote, clock) -> None:
        """A remote entry past its envelope expiry is a miss even if Redis still holds it."""
        cache = _service(remote, clock, use_local_fallback=False)

        await cache.set("k", "v", ttl=10)
        clock.advance(11)

        assert "app:cache:k" in remote.data
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_corrupt_remote_value_is_treated_as_miss(self, remote, clock) -> None:
        cache = _service(remote, clock, use_local_fallback=False)
        await cache.probe()
        remote.data["app:cache:k"] = "not-json"

        assert await cache.get("k") is None
        assert cache.remote_available is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ttl", [0, -5])
    async def test_ttl_below_one_second_is_rejected(self, remote, clock, ttl: int) -> None:
        cache = _service(remote, clock)
        await cache.probe()
        remote.calls.clear()

        with pytest.raises(ValueError):
            await cache.set("k", "v", ttl=ttl)

        assert remote.calls == []
        assert cache.remote_available is True
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_non_serializable_value_raises(self, remote, clock) -> None:
        cache = _service(remote, clock)

        with pytest.raises(TypeError):
            await cache.set("k", object())


class TestNamespaces:
    @pytest.mark.asyncio
    async def test_namespaces_are_independent(self, remote, clock) -> None:
        cache = _service(remote, clock)

        await cache.set("a", 1, namespace="ns1")
        await cache.set("a", 2, namespace="ns2")

        assert await cache.get("a", namespace="ns1") == 1
        assert await cache.get("a", namespace="ns2") == 2

        assert await cache.clear("ns1") is True
        assert await cache.get("a", namespace="ns1") is None
        assert await cache.get("a", namespace="ns2") == 2

    @pytest.mark.asyncio
    async def test_clear_default_namespace_leaves_other_namespace(self, remote, clock) -> None:
        cache = _service(remote, clock)

        for key in ("one", "two", "three"):
            await cache.set(key, key)
        await cache.set("keep", "kept", namespace="other")

        assert await cache.clear("app:cache") is True

        for key in ("one", "two", "three"):
            assert await cache.get(key) is None
        assert await cache.get("keep", namespace="other") == "kept"
        assert list(remote.data) == ["other:keep"]

    @pytest.mark.asyncio
    async def test_delete_removes_from_both_tiers(self, remote, clock) -> None:
        cache = _service(remote, clock)
        await cache.set("k", "v")

        assert await cache.delete("k") is True
        assert "app:cache:k" not in remote.data
        assert await cache.get("k") is None


class TestDegradedMode:
    """Remote failures switch to the local tier and never raise."""

    @pytest.mark.asyncio
    async def test_failing_remote_falls_back_to_local(self, remote, clock) -> None:
        remote.failing = True
        cache = _service(remote, clock)

        assert await cache.set("k", {"v": 1}) is True
        assert await cache.get("k") == {"v": 1}

        stats = await cache.get_stats()
        assert stats == CacheStats(remote_available=False, local_size=1, remote_size=None)

    @pytest.mark.asyncio
    async def test_remote_failure_mid_operation_degrades_and_rechecks(self, remote, clock) -> None:
        cache = _service(remote, clock)
        await cache.set("k", "v")
        assert cache.remote_available is True

        remote.failing = True
        remote.calls.clear()

        assert await cache.get("k") == "v"  # served from the local mirror
        assert cache.remote_available is False
        assert remote.calls == ["get", "ping"]

    @pytest.mark.asyncio
    async def test_degraded_operations_skip_remote_until_recheck_interval(self, remote, clock) -> None:
        remote.failing = True
        cache = _service(remote, clock, probe_interval_seconds=30.0)
        await cache.set("k", "v")
        remote.calls.clear()

        remote.failing = False
        clock.advance(10)
        await cache.set("k2", "v2")

        # Still degraded: a successful remote call cannot happen without a probe
        assert remote.calls == []
        assert cache.remote_available is False
        assert "app:cache:k2" not in remote.data

        clock.advance(25)
        await cache.set("k3", "v3")

        assert remote.calls == ["ping", "set"]
        assert cache.remote_available is True
        assert "app:cache:k3" in remote.data

    @pytest.mark.asyncio
    async def test_explicit_health_check_recovers_remote(self, remote, clock) -> None:
        remote.failing = True
        cache = _service(remote, clock)
        assert await cache.probe() is False

        remote.failing = False
        assert await cache.probe() is True
        assert (await cache.get_stats()).remote_available is True

    @pytest.mark.asyncio
    async def test_set_without_remote_or_fallback_returns_false(self, clock) -> None:
        cache = _service(None, clock, use_local_fallback=False)

        assert await cache.set("k", "v") is False
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_per_call_fallback_override(self, remote, clock) -> None:
        remote.failing = True
        cache = _service(remote, clock)

        assert await cache.set("k", "v", use_local_fallback=False) is False
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_delete_and_clear_report_success_when_remote_known_down(self, remote, clock) -> None:
        cache = _service(remote, clock)
        await cache.set("k", "v")

        remote.failing = True
        assert await cache.delete("k") is True
        assert cache.remote_available is False
        assert await cache.clear() is True

    @pytest.mark.asyncio
    async def test_delete_reports_failure_when_health_check_says_remote_is_up(self, remote, clock) -> None:
        """Remote delete failed but the ping succeeded: the delete did not happen."""
        cache = _service(remote, clock)
        await cache.set("k", "v")

        async def failing_delete(*keys):
            return RemoteResult.failure("ResponseError: READONLY")

        remote.delete = failing_delete

        assert await cache.delete("k") is False
        assert cache.remote_available is True


    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_health_check(self, remote, clock) -> None:
        remote.failing = True
        cache = _service(remote, clock, probe_interval_seconds=30.0)
        await cache.probe()

        ping = remote.ping

        async def slow_ping():
            await asyncio.sleep(0.02)
            return await ping()

        remote.ping = slow_ping
        remote.failing = False
        remote.calls.clear()
        clock.advance(31)

        await asyncio.gather(*(cache.get(f"k{i}") for i in range(5)))

        assert remote.calls.count("ping") == 1
        assert cache.remote_available is True


class TestStatsAndLifecycle:
    @pytest.mark.asyncio
    async def test_stats_parse_remote_keyspace(self, remote, clock) -> None:
        cache = _service(remote, clock)
        await cache.set("a", 1)
        await cache.set("b", 2)

        stats = await cache.get_stats()

        assert stats.remote_available is True
        assert stats.remote_size == 2
        assert stats.local_size == 2

    @pytest.mark.asyncio
    async def test_sweep_local_drops_expired_entries(self, clock) -> None:
        cache = _service(None, clock)
        await cache.set("short", 1, ttl=5)
        await cache.set("long", 2, ttl=500)

        clock.advance(6)

        assert cache.sweep_local() == 1
        assert (await cache.get_stats()).local_size == 1

    @pytest.mark.asyncio
    async def test_start_and_stop_manage_sweep_and_close_remote(self, remote, clock) -> None:
        cache = _service(remote, clock)

        cache.start()
        assert cache._cleanup.running is True

        await cache.stop()
        await asyncio.sleep(0)

        assert cache._cleanup.running is False
        assert remote.closed is True
        assert cache.remote_available is False

    def test_invalid_default_ttl(self, clock) -> None:
        with pytest.raises(ValueError):
            TieredCacheService(None, default_ttl=0, clock=clock)
