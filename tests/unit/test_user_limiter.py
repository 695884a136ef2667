"""Tests for per-user subscription quotas."""

import pytest

from affilify.auth import Principal
from affilify.errors import ServiceUnavailable
from affilify.models import PlanTier
from affilify.services.user_limiter import (
    DAY,
    HOUR,
    QuotaAction,
    QuotaLimits,
    UserRateLimiter,
    limits_for,
)
from affilify.services.window_store import MemoryWindowStore, RedisWindowStore


def principal(plan=PlanTier.FREE, user_id="user-1"):
    return Principal(id=user_id, email=f"{user_id}@example.com", plan_tier=plan, verified=True)


@pytest.fixture
def limiter(clock):
    return UserRateLimiter(MemoryWindowStore(clock=clock), clock=clock)


class TestSubscriptionTable:
    @pytest.mark.parametrize(
        "plan, action, expected",
        [
            (PlanTier.FREE, QuotaAction.AI_REQUESTS, QuotaLimits(DAY, 10)),
            (PlanTier.FREE, QuotaAction.WEBSITES, QuotaLimits(DAY, 3)),
            (PlanTier.FREE, QuotaAction.API_CALLS, QuotaLimits(HOUR, 100)),
            (PlanTier.PRO, QuotaAction.AI_REQUESTS, QuotaLimits(DAY, 100)),
            (PlanTier.PRO, QuotaAction.WEBSITES, QuotaLimits(DAY, 20)),
            (PlanTier.PRO, QuotaAction.API_CALLS, QuotaLimits(HOUR, 1000)),
            (PlanTier.ENTERPRISE, QuotaAction.AI_REQUESTS, QuotaLimits(DAY, 1000)),
            (PlanTier.ENTERPRISE, QuotaAction.WEBSITES, QuotaLimits(DAY, 100)),
            (PlanTier.ENTERPRISE, QuotaAction.API_CALLS, QuotaLimits(HOUR, 10000)),
        ],
    )
    def test_limits(self, plan, action, expected):
        assert limits_for(plan, action) == expected

    @pytest.mark.parametrize("action", list(QuotaAction))
    def test_basic_plan_gets_free_limits(self, action):
        assert limits_for(PlanTier.BASIC, action) == limits_for(PlanTier.FREE, action)

    def test_unknown_action(self):
        with pytest.raises(ValueError):
            limits_for(PlanTier.FREE, "teleports")

    def test_key_format(self):
        assert UserRateLimiter.key_for("u1", QuotaAction.WEBSITES) == "user_limit:u1:websites"
        assert UserRateLimiter.key_for("u1", "websites") == "user_limit:u1:websites"


class TestCheckUserLimit:
    @pytest.mark.asyncio
    async def test_free_ai_quota_exhausts_after_ten(self, limiter):
        user = principal()
        decisions = [
            await limiter.check_plan_quota(user, QuotaAction.AI_REQUESTS) for _ in range(11)
        ]

        assert all(d.allowed for d in decisions[:10])
        assert decisions[9].remaining == 0
        assert not decisions[10].allowed
        assert decisions[10].retry_after == DAY

    @pytest.mark.asyncio
    async def test_users_do_not_share_quota(self, limiter):
        for _ in range(3):
            await limiter.check_plan_quota(principal(user_id="a"), QuotaAction.WEBSITES)

        assert not (await limiter.check_plan_quota(principal(user_id="a"), "websites")).allowed
        assert (await limiter.check_plan_quota(principal(user_id="b"), "websites")).allowed

    @pytest.mark.asyncio
    async def test_actions_do_not_share_quota(self, limiter):
        user = principal()
        for _ in range(3):
            await limiter.check_plan_quota(user, QuotaAction.WEBSITES)

        decision = await limiter.check_plan_quota(user, QuotaAction.AI_REQUESTS)

        assert decision.allowed
        assert decision.remaining == 9

    @pytest.mark.asyncio
    async def test_upgrade_raises_ceiling_within_window(self, limiter):
        for _ in range(10):
            await limiter.check_plan_quota(principal(PlanTier.FREE), QuotaAction.AI_REQUESTS)
        assert not (await limiter.check_plan_quota(principal(PlanTier.FREE), "ai_requests")).allowed

        decision = await limiter.check_plan_quota(principal(PlanTier.PRO), "ai_requests")

        assert decision.allowed
        assert decision.remaining == 89

    @pytest.mark.asyncio
    async def test_quota_returns_after_window(self, limiter, clock):
        user = principal()
        for _ in range(3):
            await limiter.check_plan_quota(user, QuotaAction.WEBSITES)

        clock.advance(DAY + 1)

        decision = await limiter.check_plan_quota(user, QuotaAction.WEBSITES)
        assert decision.allowed
        assert decision.remaining == 2

    @pytest.mark.asyncio
    async def test_explicit_limits(self, limiter):
        limits = QuotaLimits(window_seconds=10, max_requests=1)
        assert (await limiter.check_user_limit("u", "exports", limits)).allowed
        assert not (await limiter.check_user_limit("u", "exports", limits)).allowed


class TestStoreFailure:
    @pytest.mark.asyncio
    async def test_fails_open_by_default(self, clock, unreachable_redis):
        limiter = UserRateLimiter(RedisWindowStore(unreachable_redis, clock=clock), clock=clock)

        decision = await limiter.check_plan_quota(principal(), QuotaAction.AI_REQUESTS)

        assert decision.allowed
        assert decision.remaining == 10

    @pytest.mark.asyncio
    async def test_can_fail_closed(self, clock, unreachable_redis):
        limiter = UserRateLimiter(
            RedisWindowStore(unreachable_redis, clock=clock), clock=clock, fail_open=False
        )

        with pytest.raises(ServiceUnavailable):
            await limiter.check_plan_quota(principal(), QuotaAction.AI_REQUESTS)
