"""
AFFILIFY - SQLAlchemy ORM Models
User profiles and API keys read by the authentication gate.
All tables use UUID primary keys.
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.orm import relationship

from affilify.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════
#  ENUMS
# ═══════════════════════════════════════════════════════


class PlanTier(str, enum.Enum):
    FREE = "free"
    BASIC = "basic"  # legacy name of the free plan
    PRO = "pro"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return _PLAN_RANK[self]

    def at_least(self, other: "PlanTier") -> bool:
        return self.rank >= other.rank


_PLAN_RANK = {
    PlanTier.FREE: 0,
    PlanTier.BASIC: 0,
    PlanTier.PRO: 1,
    PlanTier.ENTERPRISE: 2,
}


# ═══════════════════════════════════════════════════════
#  MODELS
# ═══════════════════════════════════════════════════════


class User(Base):
    """Platform user with a subscription plan."""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name = Column(String(120), nullable=True)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(128), nullable=True)  # passlib bcrypt hash
    plan = Column(
        SAEnum(PlanTier, name="plan_tier_enum"),
        nullable=False,
        default=PlanTier.BASIC,
    )
    is_verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    api_keys = relationship(
        "ApiKey", back_populates="owner", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.plan.value})>"


class ApiKey(Base):
    """Programmatic access key issued to a user."""
    __tablename__ = "api_keys"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    key = Column(String(128), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=True)
    permissions = Column(JSON, nullable=False, default=list)
    rate_limit = Column(Integer, nullable=False, default=1000)  # calls per hour
    is_active = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    owner = relationship("User", back_populates="api_keys")

    def __repr__(self) -> str:
        return f"<ApiKey {self.name or self.id} active={self.is_active}>"
