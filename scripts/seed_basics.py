import asyncio
import os

import fest.database as database
from sqlalchemy import select

from fest.models.enums import PaymentStatus, Role
from fest.models.user import Institution, User

DEFAULT_INSTITUTIONS = ("Demo Institute of Technology", "Demo College of Arts")


async def main() -> None:
    """Create base tables, a few institutions and an admin account."""

    await database.init_models()
    async with database.SessionLocal() as session:
        existing = set((await session.execute(select(Institution.name))).scalars())
        for name in DEFAULT_INSTITUTIONS:
            if name not in existing:
                session.add(Institution(name=name))

        admin_email = os.getenv("SEED_ADMIN_EMAIL", "admin@fest.local").lower()
        admin = await session.scalar(select(User).where(User.email == admin_email))
        if admin is None:
            session.add(
                User(
                    email=admin_email,
                    name="Fest Admin",
                    role=Role.ADMIN,
                    payment_status=PaymentStatus.EXEMPTED,
                    profile_completed=True,
                )
            )
        await session.commit()
    print("Seeded institutions and admin account.")


if __name__ == "__main__":
    asyncio.run(main())
