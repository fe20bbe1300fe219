"""Seed script — populates the database with sample marketplace users."""

import asyncio

from sqlalchemy.ext.asyncio import AsyncSession

from credential_engine.database.engine import async_session_factory, init_db
from credential_engine.database.repository import UserRepository
from credential_engine.models.user import User, UserRole

SAMPLE_USERS = [
    User(
        id="usr_freelancer_001",
        name="Alice Johnson",
        phone_number="+15551234567",
        country="US",
        email="alice@example.com",
        is_verified=True,
        role=UserRole.FREELANCER,
    ),
    User(
        id="usr_client_001",
        name="Bob Smith",
        phone_number="+15559876543",
        country="US",
        email="bob@example.com",
        is_verified=True,
        role=UserRole.CLIENT,
    ),
    User(
        id="usr_client_002",
        name="Carol Davis",
        phone_number="+442071234567",
        country="GB",
        email="carol@example.com",
        is_verified=False,
        role=UserRole.CLIENT,
    ),
    User(
        id="usr_admin_001",
        name="Dan Admin",
        phone_number="+15550000000",
        country="US",
        email="admin@example.com",
        is_verified=True,
        role=UserRole.ADMIN,
    ),
]


async def seed(session: AsyncSession) -> int:
    """Insert sample users that aren't present yet; return how many were added."""
    repo = UserRepository(session)
    added = 0
    for user in SAMPLE_USERS:
        if await repo.find_by_email(user.email) is None:
            session.add(user)
            added += 1
    await session.commit()
    return added


async def main() -> None:
    await init_db()
    async with async_session_factory() as session:
        added = await seed(session)
    print(f"✅ Seeded {added} users ({len(SAMPLE_USERS) - added} already present)")


if __name__ == "__main__":
    asyncio.run(main())
