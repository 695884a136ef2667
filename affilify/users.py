"""
AFFILIFY - User Profile Store
Read side of the user collection as seen by the authentication gate.
The database stays authoritative; nothing here caches profiles.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from affilify.models import ApiKey, PlanTier, User


@dataclass(frozen=True)
class UserRecord:
    id: str
    email: str
    plan_tier: PlanTier
    is_verified: bool = False
    full_name: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class ApiKeyRecord:
    key: str
    user_id: str
    is_active: bool
    permissions: list[str] = field(default_factory=list)
    rate_limit: int = 1000
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        if self.expires_at is None:
            return False
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now > expires_at


class UserStore(Protocol):
    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    async def get_api_key(self, key: str) -> Optional[ApiKeyRecord]:
        ...

    async def touch_api_key(self, key: str) -> None:
        ...


def to_user_record(user: User) -> UserRecord:
    return UserRecord(
        id=str(user.id),
        email=user.email,
        plan_tier=user.plan or PlanTier.BASIC,
        is_verified=bool(user.is_verified),
        full_name=user.full_name,
        created_at=user.created_at,
    )


class SqlUserStore:
    """UserStore over the SQLAlchemy ``users`` and ``api_keys`` tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        try:
            pk = uuid.UUID(str(user_id))
        except ValueError:
            return None

        async with self._session_factory() as session:
            result = await session.execute(select(User).where(User.id == pk))
            user = result.scalar_one_or_none()

        return to_user_record(user) if user else None

    async def get_api_key(self, key: str) -> Optional[ApiKeyRecord]:
        async with self._session_factory() as session:
            result = await session.execute(select(ApiKey).where(ApiKey.key == key))
            row = result.scalar_one_or_none()

        if row is None:
            return None
        return ApiKeyRecord(
            key=row.key,
            user_id=str(row.user_id),
            is_active=bool(row.is_active),
            permissions=list(row.permissions or []),
            rate_limit=row.rate_limit,
            expires_at=row.expires_at,
        )

    async def touch_api_key(self, key: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(ApiKey)
                    .where(ApiKey.key == key)
                    .values(last_used_at=datetime.now(timezone.utc))
                )
