"""
AFFILIFY - Auth Router
Login, logout and token verification. Login is throttled by the strict
``auth`` rate limit class.
"""
import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from affilify.auth import (
    Principal,
    clear_auth_cookie,
    get_current_principal,
    set_auth_cookie,
    verify_password,
)
from affilify.database import get_db
from affilify.errors import AuthenticationDenied, DenialReason
from affilify.middleware.rate_limit import PolicyClass, RateLimit
from affilify.models import User
from affilify.schemas.auth import LoginRequest, PrincipalResponse, TokenResponse
from affilify.users import to_user_record

logger = logging.getLogger("affilify.auth")

router = APIRouter(prefix="/api/auth", tags=["Auth"])


# ═══════════════════════════════════════════════════════
#  POST /api/auth/login
# ═══════════════════════════════════════════════════════


@router.post(
    "/login",
    response_model=TokenResponse,
    dependencies=[Depends(RateLimit(PolicyClass.AUTH))],
)
async def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_db),
):
    """
    Authenticate with email and password.

    Returns the access token in the body and also sets it as an
    HttpOnly same-site cookie.
    """
    result = await session.execute(select(User).where(User.email == payload.email))
    user = result.scalar_one_or_none()

    if not user or not user.password_hash or not verify_password(
        payload.password, user.password_hash
    ):
        logger.warning("Failed login attempt for: %s", payload.email)
        raise AuthenticationDenied(
            DenialReason.INVALID_CREDENTIAL, "Invalid email or password"
        )

    settings = request.app.state.settings
    tokens = request.app.state.admission.auth.tokens
    access_token = tokens.issue(user_id=str(user.id), email=user.email)
    set_auth_cookie(response, access_token, settings)

    principal = Principal.from_record(to_user_record(user))
    logger.info("Login successful: %s (%s)", user.email, principal.plan_tier.value)
    return TokenResponse(
        access_token=access_token,
        expires_in=tokens.expire_days * 86400,
        user=PrincipalResponse(**principal.to_dict()),
    )


# ═══════════════════════════════════════════════════════
#  POST /api/auth/logout
# ═══════════════════════════════════════════════════════


@router.post("/logout")
async def logout(request: Request, response: Response):
    """Clear the auth cookie. Bearer-token clients discard their copy."""
    clear_auth_cookie(response, request.app.state.settings)
    return {"success": True, "message": "Logged out successfully"}


# ═══════════════════════════════════════════════════════
#  GET /api/auth/verify-token
# ═══════════════════════════════════════════════════════


@router.get(
    "/verify-token",
    response_model=PrincipalResponse,
    dependencies=[Depends(RateLimit(PolicyClass.API))],
)
async def verify_token(principal: Principal = Depends(get_current_principal)):
    """Return the principal behind the presented credential."""
    return PrincipalResponse(**principal.to_dict())
