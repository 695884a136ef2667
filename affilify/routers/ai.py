"""
AFFILIFY - AI Router
POST /api/ai/generate-website passes every admission stage:
  1. ``ai_generation`` IP rate limit
  2. authentication gate
  3. the plan's daily ``ai_requests`` quota
then hands the product URL to the configured website generator.
"""
import logging
from typing import Any, Optional, Protocol

from fastapi import APIRouter, Depends, Request

from affilify.auth import Principal
from affilify.errors import AppError, ErrorType, ServiceUnavailable
from affilify.middleware.quota import UserQuota
from affilify.middleware.rate_limit import PolicyClass, RateLimit
from affilify.schemas.ai import GenerateWebsiteRequest, GenerateWebsiteResponse
from affilify.services.user_limiter import QuotaAction

logger = logging.getLogger("affilify.ai")

router = APIRouter(prefix="/api/ai", tags=["AI"])


class WebsiteGenerator(Protocol):
    async def generate(
        self, product_url: str, principal: Principal, language: Optional[str] = None
    ) -> dict[str, Any]:
        ...


def _get_generator(request: Request) -> WebsiteGenerator:
    generator = getattr(request.app.state, "website_generator", None)
    if generator is None:
        raise ServiceUnavailable(
            "website-generator",
            "AI website generation is not configured on this deployment.",
        )
    return generator


@router.post(
    "/generate-website",
    response_model=GenerateWebsiteResponse,
    dependencies=[Depends(RateLimit(PolicyClass.AI_GENERATION))],
)
async def generate_website(
    payload: GenerateWebsiteRequest,
    request: Request,
    principal: Principal = Depends(UserQuota(QuotaAction.AI_REQUESTS)),
):
    """Generate an affiliate landing page for a product URL."""
    generator = _get_generator(request)
    try:
        website = await generator.generate(payload.product_url, principal, payload.language)
    except AppError:
        raise
    except Exception as exc:
        logger.error("Website generation failed for %s: %s", principal.id, exc)
        raise AppError(
            "AI service error. Please try again.",
            error_type=ErrorType.EXTERNAL_API,
            status_code=502,
            metadata={"service": "website-generator"},
        ) from exc

    return GenerateWebsiteResponse(
        website=website,
        remaining_ai_requests=request.state.quota.remaining,
    )
