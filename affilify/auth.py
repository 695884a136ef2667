"""
AFFILIFY - Authentication & Authorization Gate
Verifies the caller's credential and re-confirms the account still exists.

Components:
  - Password hashing via passlib + bcrypt
  - JWT issue/decode via python-jose (TokenService)
  - AuthGate: credential extraction, verification, principal lookup,
    plan-tier checks, API-key verification
  - FastAPI dependencies: get_current_principal, PlanChecker, get_api_key_grant
  - Auth cookie helpers
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Request
from jose import JWTError, jwt
from passlib.context import CryptContext

from affilify.config import Settings
from affilify.errors import AuthenticationDenied, DenialReason, PlanRequired
from affilify.models import PlanTier
from affilify.users import UserRecord, UserStore

logger = logging.getLogger("affilify.auth")

API_KEY_HEADER = "X-API-Key"
# never issued; looked up on token rejection to match the valid path's DB round trip
DECOY_USER_ID = "00000000-0000-0000-0000-000000000000"

# ═══════════════════════════════════════════════════════
#  Password Hashing (passlib + bcrypt)
# ═══════════════════════════════════════════════════════

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(plain_password: str) -> str:
    """Hash a plaintext password with bcrypt via passlib."""
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plaintext password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


# ═══════════════════════════════════════════════════════
#  JWT Tokens (python-jose)
# ═══════════════════════════════════════════════════════


class TokenService:
    """Signs and verifies access tokens with a shared secret."""

    def __init__(self, secret: str, algorithm: str = "HS256", expire_days: int = 30):
        self._secret = secret
        self._algorithm = algorithm
        self.expire_days = expire_days

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenService":
        return cls(
            settings.JWT_SECRET_KEY,
            settings.JWT_ALGORITHM,
            settings.AUTH_TOKEN_EXPIRE_DAYS,
        )

    def issue(
        self,
        user_id: str,
        email: str,
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        """Create a signed JWT access token."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "email": email,
            "type": "access",
            "iat": now,
            "exp": now + (expires_delta or timedelta(days=self.expire_days)),
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def decode(self, token: str) -> dict:
        """Decode and validate an access token. Raises JWTError."""
        payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        if payload.get("type") != "access" or not payload.get("sub"):
            raise JWTError("Not an access token")
        return payload


# ═══════════════════════════════════════════════════════
#  Principal
# ═══════════════════════════════════════════════════════


@dataclass(frozen=True)
class Principal:
    """Authenticated identity for the duration of one request."""

    id: str
    email: str
    plan_tier: PlanTier
    verified: bool
    full_name: Optional[str] = None

    @classmethod
    def from_record(cls, record: UserRecord) -> "Principal":
        return cls(
            id=record.id,
            email=record.email,
            plan_tier=record.plan_tier,
            verified=record.is_verified,
            full_name=record.full_name,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "plan": self.plan_tier.value,
            "verified": self.verified,
            "full_name": self.full_name,
        }


@dataclass(frozen=True)
class ApiKeyGrant:
    user_id: str
    permissions: list[str] = field(default_factory=list)
    rate_limit: int = 1000


# ═══════════════════════════════════════════════════════
#  AuthGate
# ═══════════════════════════════════════════════════════


class AuthGate:
    """
    Per-request authentication. Every failure path denies.

    INVALID_CREDENTIAL and PRINCIPAL_GONE are logged separately but reach
    the client as the same 401 after one user lookup each, so account
    existence cannot be probed.
    """

    def __init__(self, tokens: TokenService, users: UserStore, cookie_name: str = "auth-token"):
        self.tokens = tokens
        self.users = users
        self.cookie_name = cookie_name

    def extract_credential(self, request: Request) -> Optional[str]:
        """Cookie first, then ``Authorization: Bearer``."""
        token = request.cookies.get(self.cookie_name)
        if token:
            return token

        authorization = request.headers.get("authorization", "")
        scheme, _, credential = authorization.partition(" ")
        if scheme.lower() == "bearer" and credential.strip():
            return credential.strip()
        return None

    def _deny(self, request: Request, reason: DenialReason, detail: str = "") -> AuthenticationDenied:
        logger.warning(
            "Auth denied (%s) on %s %s %s",
            reason.value, request.method, request.url.path, detail,
        )
        return AuthenticationDenied(reason)

    async def _decoy_lookup(self) -> None:
        try:
            await self.users.get_user(DECOY_USER_ID)
        except Exception as exc:
            logger.debug("Decoy user lookup failed: %s", exc)

    async def authenticate(self, request: Request) -> Principal:
        token = self.extract_credential(request)
        if not token:
            raise self._deny(request, DenialReason.NO_CREDENTIAL)

        try:
            payload = self.tokens.decode(token)
        except JWTError as exc:
            await self._decoy_lookup()
            raise self._deny(request, DenialReason.INVALID_CREDENTIAL, str(exc))

        user_id = payload["sub"]
        try:
            record = await self.users.get_user(user_id)
        except Exception:
            logger.exception("User lookup failed for %s", user_id)
            raise AuthenticationDenied(DenialReason.INVALID_CREDENTIAL)

        if record is None:
            raise self._deny(request, DenialReason.PRINCIPAL_GONE, f"user={user_id}")

        return Principal.from_record(record)

    async def require_plan(self, request: Request, minimum: PlanTier) -> Principal:
        principal = await self.authenticate(request)
        if not principal.plan_tier.at_least(minimum):
            logger.warning(
                "Plan check failed: user %s (plan=%s) needs %s for %s",
                principal.email, principal.plan_tier.value, minimum.value, request.url.path,
            )
            required = "premium" if minimum is PlanTier.PRO else minimum.value
            raise PlanRequired(required, principal.plan_tier.value)
        return principal

    async def require_premium(self, request: Request) -> Principal:
        return await self.require_plan(request, PlanTier.PRO)

    async def require_enterprise(self, request: Request) -> Principal:
        return await self.require_plan(request, PlanTier.ENTERPRISE)

    async def verify_api_key(self, request: Request) -> ApiKeyGrant:
        """Validate the ``X-API-Key`` header: known, active, unexpired."""
        key = request.headers.get(API_KEY_HEADER)
        if not key:
            raise self._deny(request, DenialReason.NO_CREDENTIAL)

        try:
            record = await self.users.get_api_key(key)
        except Exception:
            logger.exception("API key lookup failed")
            raise AuthenticationDenied(DenialReason.INVALID_CREDENTIAL)

        if record is None or not record.is_active:
            raise self._deny(request, DenialReason.INVALID_CREDENTIAL, "unknown or revoked API key")
        if record.is_expired(datetime.now(timezone.utc)):
            raise self._deny(request, DenialReason.INVALID_CREDENTIAL, "expired API key")

        try:
            await self.users.touch_api_key(key)
        except Exception:
            logger.exception("Could not record API key use for user %s", record.user_id)

        return ApiKeyGrant(
            user_id=record.user_id,
            permissions=list(record.permissions),
            rate_limit=record.rate_limit,
        )


# ═══════════════════════════════════════════════════════
#  FastAPI Dependencies
# ═══════════════════════════════════════════════════════


def _gate(request: Request) -> AuthGate:
    return request.app.state.admission.auth


async def get_current_principal(request: Request) -> Principal:
    """Authenticate the request or raise a 401."""
    return await _gate(request).authenticate(request)


async def get_api_key_grant(request: Request) -> ApiKeyGrant:
    return await _gate(request).verify_api_key(request)


class PlanChecker:
    """
    FastAPI dependency factory for plan-gated routes.

    Usage:
        @router.get("/enterprise-only", dependencies=[Depends(PlanChecker(PlanTier.ENTERPRISE))])

    Or as a parameter dependency:
        async def endpoint(principal: Principal = Depends(require_premium)):
            ...
    """

    def __init__(self, minimum: PlanTier):
        self.minimum = minimum

    async def __call__(self, request: Request) -> Principal:
        return await _gate(request).require_plan(request, self.minimum)


require_premium = PlanChecker(PlanTier.PRO)
require_enterprise = PlanChecker(PlanTier.ENTERPRISE)


# ═══════════════════════════════════════════════════════
#  Auth Cookie Helpers
# ═══════════════════════════════════════════════════════


def set_auth_cookie(response, token: str, settings: Settings) -> None:
    """Set the access token as an HttpOnly, SameSite=Strict cookie."""
    response.set_cookie(
        key=settings.AUTH_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=settings.is_production,  # plain HTTP allowed in development
        samesite="strict",
        max_age=settings.AUTH_TOKEN_EXPIRE_DAYS * 86400,
        path="/",
    )


def clear_auth_cookie(response, settings: Settings) -> None:
    """Remove the auth cookie."""
    response.delete_cookie(
        key=settings.AUTH_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )
