"""
AFFILIFY - Rate Limiting Configuration
Named per-IP policies for each class of traffic, tuned by abuse cost.
Rate strings use the ``limits`` notation ("5/15 minutes").
"""
import enum
import logging
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Union

from fastapi import Request, Response
from limits import parse

from affilify.errors import RateLimitExceeded
from affilify.services.rate_limiter import RateLimiter, RateLimitPolicy, ip_key
from affilify.services.window_store import Clock, WindowStore

logger = logging.getLogger("affilify.ratelimit.policies")

# ── Rate limit strings for each traffic class ──
RATE_LIMIT_AUTH = "5/15 minutes"          # credential stuffing
RATE_LIMIT_API = "100/minute"             # baseline abuse ceiling
RATE_LIMIT_AI = "10/minute"               # protects upstream LLM spend
RATE_LIMIT_PAYMENT = "3/minute"           # card testing
RATE_LIMIT_PASSWORD_RESET = "3/hour"      # enumeration / mail spam
RATE_LIMIT_GENERAL = "200/minute"         # lenient, public pages

DEFAULT_CUSTOM_LIMIT = 100
DEFAULT_CUSTOM_WINDOW_SECONDS = 60
EXCEEDED_MESSAGE = "Rate limit exceeded"


class PolicyClass(str, enum.Enum):
    AUTH = "auth"
    API = "api"
    AI_GENERATION = "ai_generation"
    PAYMENT = "payment"
    PASSWORD_RESET = "password_reset"
    GENERAL = "general"


# class -> (rate string, store key prefix)
NAMED_POLICIES: Mapping[PolicyClass, tuple[str, str]] = MappingProxyType({
    PolicyClass.AUTH: (RATE_LIMIT_AUTH, "auth_limit"),
    PolicyClass.API: (RATE_LIMIT_API, "api_limit"),
    PolicyClass.AI_GENERATION: (RATE_LIMIT_AI, "ai_limit"),
    PolicyClass.PAYMENT: (RATE_LIMIT_PAYMENT, "payment_limit"),
    PolicyClass.PASSWORD_RESET: (RATE_LIMIT_PASSWORD_RESET, "password_reset_limit"),
    PolicyClass.GENERAL: (RATE_LIMIT_GENERAL, "general_limit"),
})


def policy_from_rate(rate: str, key_prefix: str) -> RateLimitPolicy:
    """Build a policy from a rate string such as ``"3/hour"``."""
    item = parse(rate)
    return RateLimitPolicy(
        window_seconds=item.get_expiry(),
        max_requests=item.amount,
        key_generator=ip_key(key_prefix),
    )


@dataclass
class RateLimitOutcome:
    success: bool
    headers: dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None


class PolicyRegistry:
    """
    One limiter per traffic class, fixed at construction.

    Custom ``(limit, window)`` overrides get their own cached limiter and
    bucket, so one-off endpoints never share counters with the named class.
    """

    def __init__(self, store: WindowStore, clock: Clock = time.time):
        self._store = store
        self._clock = clock
        self._limiters: Mapping[PolicyClass, RateLimiter] = MappingProxyType({
            policy_class: RateLimiter(store, policy_from_rate(rate, prefix), clock)
            for policy_class, (rate, prefix) in NAMED_POLICIES.items()
        })
        self._custom: dict[tuple[PolicyClass, int, float], RateLimiter] = {}

    def __contains__(self, policy_class) -> bool:
        try:
            return PolicyClass(policy_class) in self._limiters
        except ValueError:
            return False

    def get(self, policy_class: Union[PolicyClass, str]) -> RateLimiter:
        try:
            return self._limiters[PolicyClass(policy_class)]
        except ValueError:
            raise ValueError(f"Unknown rate limit class: {policy_class!r}") from None

    def limiter_for(
        self,
        policy_class: Union[PolicyClass, str],
        custom_limit: Optional[int] = None,
        custom_window_seconds: Optional[float] = None,
    ) -> RateLimiter:
        named = self.get(policy_class)
        if not (custom_limit or custom_window_seconds):
            return named

        policy_class = PolicyClass(policy_class)
        limit = custom_limit or DEFAULT_CUSTOM_LIMIT
        window = custom_window_seconds or DEFAULT_CUSTOM_WINDOW_SECONDS
        cache_key = (policy_class, limit, window)
        limiter = self._custom.get(cache_key)
        if limiter is None:
            prefix = f"custom_limit:{policy_class.value}:{limit}:{window:g}"
            limiter = RateLimiter(
                self._store,
                RateLimitPolicy(
                    window_seconds=window,
                    max_requests=limit,
                    key_generator=ip_key(prefix),
                ),
                self._clock,
            )
            self._custom[cache_key] = limiter
        return limiter

    async def rate_limit(
        self,
        request: Request,
        policy_class: Union[PolicyClass, str],
        custom_limit: Optional[int] = None,
        custom_window_seconds: Optional[float] = None,
    ) -> RateLimitOutcome:
        """Check ``request`` against a traffic class; always returns quota headers."""
        limiter = self.limiter_for(policy_class, custom_limit, custom_window_seconds)
        decision = await limiter.check_limit(request)
        headers = decision.to_headers()
        if not decision.allowed:
            return RateLimitOutcome(success=False, headers=headers, error=EXCEEDED_MESSAGE)
        return RateLimitOutcome(success=True, headers=headers)


async def rate_limit(
    request: Request,
    policy_class: Union[PolicyClass, str],
    custom_limit: Optional[int] = None,
    custom_window_seconds: Optional[float] = None,
) -> RateLimitOutcome:
    """Route-handler helper using the application's policy registry."""
    registry: PolicyRegistry = request.app.state.admission.policies
    return await registry.rate_limit(request, policy_class, custom_limit, custom_window_seconds)


class RateLimit:
    """
    FastAPI dependency enforcing a traffic class on a route.

    Usage:
        @router.post("/login", dependencies=[Depends(RateLimit(PolicyClass.AUTH))])
    """

    def __init__(
        self,
        policy_class: Union[PolicyClass, str],
        limit: Optional[int] = None,
        window_seconds: Optional[float] = None,
    ):
        self.policy_class = PolicyClass(policy_class)
        self.limit = limit
        self.window_seconds = window_seconds

    async def __call__(self, request: Request, response: Response) -> RateLimitOutcome:
        outcome = await rate_limit(request, self.policy_class, self.limit, self.window_seconds)
        if not outcome.success:
            logger.warning(
                "Rate limit exceeded: class=%s path=%s",
                self.policy_class.value, request.url.path,
            )
            raise RateLimitExceeded(outcome.error, headers=outcome.headers)
        response.headers.update(outcome.headers)
        return outcome
