"""
AFFILIFY - User Endpoint Pydantic Schemas
"""
from pydantic import BaseModel, Field

from affilify.schemas.auth import PrincipalResponse


class QuotaLimitResponse(BaseModel):
    max_requests: int
    window_seconds: int = Field(..., description="Length of the fixed window")


class PlanResponse(BaseModel):
    user: PrincipalResponse
    plan: str
    quotas: dict[str, QuotaLimitResponse]
