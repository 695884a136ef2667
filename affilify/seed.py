"""
AFFILIFY - Seed Script
Creates one demo account per plan for local development.
Called on startup when SEED_DEMO_USERS is enabled and the users table is empty.
"""
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from affilify.auth import hash_password
from affilify.models import PlanTier, User

logger = logging.getLogger("affilify.seed")

DEMO_PASSWORD = "password123"

DEMO_USERS = [
    ("a1b2c3d4-0001-4000-8000-000000000001", "free@affilify.dev", "Free Demo", PlanTier.FREE),
    ("a1b2c3d4-0002-4000-8000-000000000002", "pro@affilify.dev", "Pro Demo", PlanTier.PRO),
    ("a1b2c3d4-0003-4000-8000-000000000003", "enterprise@affilify.dev", "Enterprise Demo", PlanTier.ENTERPRISE),
]


async def seed_database(session: AsyncSession) -> int:
    """Insert the demo users if the users table is empty. Returns rows added."""
    result = await session.execute(select(User).limit(1))
    if result.scalar_one_or_none() is not None:
        logger.info("Database already seeded - skipping.")
        return 0

    password_hash = hash_password(DEMO_PASSWORD)
    for user_id, email, full_name, plan in DEMO_USERS:
        session.add(User(
            id=uuid.UUID(user_id),
            email=email,
            full_name=full_name,
            password_hash=password_hash,
            plan=plan,
            is_verified=True,
        ))
    await session.commit()

    logger.info("Seeded %d demo users (password: %s)", len(DEMO_USERS), DEMO_PASSWORD)
    return len(DEMO_USERS)
