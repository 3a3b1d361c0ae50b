"""Tests for the in-process token-bucket rate limiter."""

from datetime import datetime, timedelta, timezone

from viureview.service import runtime as runtime_module
from viureview.service.runtime import check_rate_limit


async def test_bucket_drains_then_rejects(runtime):
    results = [await check_rate_limit(runtime, "login:1.2.3.4", 3, 60) for _ in range(4)]

    assert results == [True, True, True, False]


async def test_remaining_and_reset(runtime):
    await check_rate_limit(runtime, "k", 1, 60)

    allowed, remaining, reset_seconds = await check_rate_limit(
        runtime, "k", 1, 60, return_remaining=True
    )

    assert allowed is False
    assert remaining == 0
    assert 0 < reset_seconds <= 60


async def test_zero_limit_is_unlimited(runtime):
    assert await check_rate_limit(runtime, "k", 0, 60) is True
    assert runtime._local_rate_limits == {}


async def test_refilled_buckets_are_pruned(runtime, monkeypatch):
    monkeypatch.setattr(runtime_module, "LOCAL_RATE_LIMIT_PRUNE_THRESHOLD", 2)
    now = datetime.now(timezone.utc)
    runtime._local_rate_limits["idle"] = (5.0, now - timedelta(hours=1), now - timedelta(minutes=59))
    runtime._local_rate_limits["busy"] = (0.0, now, now + timedelta(minutes=1))

    await check_rate_limit(runtime, "fresh", 5, 60)

    assert "idle" not in runtime._local_rate_limits
    assert "busy" in runtime._local_rate_limits
    assert "fresh" in runtime._local_rate_limits


async def test_no_pruning_below_threshold(runtime):
    now = datetime.now(timezone.utc)
    runtime._local_rate_limits["idle"] = (5.0, now - timedelta(hours=1), now - timedelta(minutes=59))

    await check_rate_limit(runtime, "fresh", 5, 60)

    assert set(runtime._local_rate_limits) == {"idle", "fresh"}
