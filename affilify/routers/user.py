"""
AFFILIFY - User Router
Plan and quota information for the authenticated user.
"""
from fastapi import APIRouter, Depends

from affilify.auth import Principal, get_current_principal
from affilify.middleware.rate_limit import PolicyClass, RateLimit
from affilify.schemas.auth import PrincipalResponse
from affilify.schemas.user import PlanResponse, QuotaLimitResponse
from affilify.services.user_limiter import QuotaAction, limits_for

router = APIRouter(prefix="/api/user", tags=["User"])


@router.get(
    "/plan",
    response_model=PlanResponse,
    dependencies=[Depends(RateLimit(PolicyClass.API))],
)
async def get_plan(principal: Principal = Depends(get_current_principal)):
    """Current plan and the quota ceilings it grants."""
    quotas = {}
    for action in QuotaAction:
        limits = limits_for(principal.plan_tier, action)
        quotas[action.value] = QuotaLimitResponse(
            max_requests=limits.max_requests,
            window_seconds=int(limits.window_seconds),
        )
    return PlanResponse(
        user=PrincipalResponse(**principal.to_dict()),
        plan=principal.plan_tier.value,
        quotas=quotas,
    )
