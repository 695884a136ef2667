"""
AFFILIFY - Subscription Quota Dependency
Meters a business resource against the caller's plan after authentication.
"""
import logging
from typing import Union

from fastapi import Depends, Request, Response

from affilify.auth import Principal, get_current_principal
from affilify.errors import RateLimitExceeded
from affilify.services.user_limiter import QuotaAction

logger = logging.getLogger("affilify.ratelimit.quota")

QUOTA_HEADER_PREFIX = "X-Quota"


class UserQuota:
    """
    FastAPI dependency consuming one unit of ``action`` for the principal.
    The decision is left on ``request.state.quota`` for the route.

    Usage:
        async def endpoint(principal: Principal = Depends(UserQuota(QuotaAction.AI_REQUESTS))):
            ...
    """

    def __init__(self, action: Union[QuotaAction, str]):
        self.action = QuotaAction(action)

    async def __call__(
        self,
        request: Request,
        response: Response,
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        limiter = request.app.state.admission.user_limiter
        decision = await limiter.check_plan_quota(principal, self.action)
        headers = decision.to_headers(prefix=QUOTA_HEADER_PREFIX)

        if not decision.allowed:
            logger.warning(
                "Quota denied: user %s (plan=%s) action=%s",
                principal.id, principal.plan_tier.value, self.action.value,
            )
            raise RateLimitExceeded(
                f"{self.action.value.replace('_', ' ').capitalize()} quota exceeded "
                f"for the {principal.plan_tier.value} plan",
                headers=headers,
            )

        request.state.quota = decision
        response.headers.update(headers)
        return principal
