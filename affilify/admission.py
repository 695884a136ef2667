"""
AFFILIFY - Admission Layer Composition
Builds the window store, limiters and auth gate once at startup.
Route dependencies reach them through ``app.state.admission``.
"""
import logging
import time
from dataclasses import dataclass
from typing import Optional

from affilify.auth import AuthGate, TokenService
from affilify.config import Settings
from affilify.middleware.rate_limit import PolicyRegistry
from affilify.services.user_limiter import UserRateLimiter
from affilify.services.window_store import Clock, WindowStore, create_window_store
from affilify.users import UserStore

logger = logging.getLogger("affilify.admission")


@dataclass
class Admission:
    store: WindowStore
    policies: PolicyRegistry
    user_limiter: UserRateLimiter
    auth: AuthGate

    async def close(self) -> None:
        await self.store.close()


def build_admission(
    settings: Settings,
    users: UserStore,
    store: Optional[WindowStore] = None,
    clock: Clock = time.time,
) -> Admission:
    if store is None:
        store = create_window_store(settings, clock=clock)
    logger.info("Admission layer ready (window store: %s)", store.backend)
    return Admission(
        store=store,
        policies=PolicyRegistry(store, clock=clock),
        user_limiter=UserRateLimiter(store, clock=clock),
        auth=AuthGate(
            TokenService.from_settings(settings),
            users,
            cookie_name=settings.AUTH_COOKIE_NAME,
        ),
    )
