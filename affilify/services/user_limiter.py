"""
AFFILIFY - User/Subscription Limiter

Business quotas keyed by account rather than network address, so a quota
follows the user across devices and users behind one NAT never share it.
Ceilings come from the caller's current subscription plan.
"""
import enum
import logging
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Union

from affilify.models import PlanTier
from affilify.services.rate_limiter import QuotaDecision, consume_window, store_failure_decision
from affilify.services.window_store import Clock, WindowStore

logger = logging.getLogger("affilify.ratelimit.user")

DAY = 24 * 60 * 60
HOUR = 60 * 60


class QuotaAction(str, enum.Enum):
    AI_REQUESTS = "ai_requests"
    WEBSITES = "websites"
    API_CALLS = "api_calls"


@dataclass(frozen=True)
class QuotaLimits:
    window_seconds: float
    max_requests: int


SUBSCRIPTION_LIMITS: Mapping[PlanTier, Mapping[QuotaAction, QuotaLimits]] = MappingProxyType({
    PlanTier.FREE: MappingProxyType({
        QuotaAction.AI_REQUESTS: QuotaLimits(DAY, 10),
        QuotaAction.WEBSITES: QuotaLimits(DAY, 3),
        QuotaAction.API_CALLS: QuotaLimits(HOUR, 100),
    }),
    PlanTier.PRO: MappingProxyType({
        QuotaAction.AI_REQUESTS: QuotaLimits(DAY, 100),
        QuotaAction.WEBSITES: QuotaLimits(DAY, 20),
        QuotaAction.API_CALLS: QuotaLimits(HOUR, 1000),
    }),
    PlanTier.ENTERPRISE: MappingProxyType({
        QuotaAction.AI_REQUESTS: QuotaLimits(DAY, 1000),
        QuotaAction.WEBSITES: QuotaLimits(DAY, 100),
        QuotaAction.API_CALLS: QuotaLimits(HOUR, 10000),
    }),
})


def limits_for(plan: PlanTier, action: Union[QuotaAction, str]) -> QuotaLimits:
    """Ceiling for ``action`` on ``plan``. The legacy basic plan gets free limits."""
    if plan is PlanTier.BASIC:
        plan = PlanTier.FREE
    return SUBSCRIPTION_LIMITS[plan][QuotaAction(action)]


class UserRateLimiter:
    """Fixed-window quotas keyed by ``(user_id, action)``."""

    def __init__(self, store: WindowStore, clock: Clock = time.time, fail_open: bool = True):
        self.store = store
        self._clock = clock
        self._fail_open = fail_open

    @staticmethod
    def key_for(user_id: str, action: Union[QuotaAction, str]) -> str:
        action = action.value if isinstance(action, QuotaAction) else action
        return f"user_limit:{user_id}:{action}"

    async def check_user_limit(
        self,
        user_id: str,
        action: Union[QuotaAction, str],
        limits: QuotaLimits,
    ) -> QuotaDecision:
        key = self.key_for(user_id, action)
        now = self._clock()
        try:
            decision = await consume_window(
                self.store,
                key,
                window_seconds=limits.window_seconds,
                max_requests=limits.max_requests,
                now=now,
            )
        except Exception as exc:
            return store_failure_decision(
                key,
                exc,
                window_seconds=limits.window_seconds,
                max_requests=limits.max_requests,
                fail_open=self._fail_open,
                now=now,
            )

        if not decision.allowed:
            logger.info("Quota exhausted for %s", key)
        return decision

    async def check_plan_quota(self, principal, action: Union[QuotaAction, str]) -> QuotaDecision:
        """Apply the quota of the principal's current plan."""
        return await self.check_user_limit(
            principal.id, action, limits_for(principal.plan_tier, action)
        )
