"""
Create all tables and seed reference data.

Run once after configuring the database:
  DEFAULT_ADMIN_EMAIL=admin@school.mw
  DEFAULT_ADMIN_PASSWORD=YourSecurePassword
  python -m schoolms.db.init_db

Seeds:
- the first admin user (when DEFAULT_ADMIN_EMAIL / DEFAULT_ADMIN_PASSWORD are set)
- clearance types: exam_clearance, transcript, leaving_certificate
- payment methods: cash, bank transfer, mobile money
"""

import asyncio
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.auth.models import User
from schoolms.auth.security import hash_password
from schoolms.core.config import settings
from schoolms.core.enums import UserRole
from schoolms.core.logging import get_logger, setup_logging
from schoolms.core.models import ClearanceType, PaymentMethodConfig
from schoolms.db.session import AsyncSessionLocal, Base, engine

logger = get_logger("init_db")

DEFAULT_CLEARANCE_TYPES = [
    {
        "name": "exam_clearance",
        "display_name": "Examination Clearance",
        "description": "Permission to sit end of term examinations",
        "minimum_payment_percentage": Decimal("70"),
        "requires_full_payment": False,
        "allows_override": True,
        "display_order": 1,
    },
    {
        "name": "transcript",
        "display_name": "Academic Transcript",
        "description": "Release of the official academic transcript",
        "minimum_payment_percentage": Decimal("100"),
        "requires_full_payment": True,
        "allows_override": True,
        "display_order": 2,
    },
    {
        "name": "leaving_certificate",
        "display_name": "School Leaving Certificate",
        "description": "Certificate issued when a student leaves the school",
        "minimum_payment_percentage": Decimal("100"),
        "requires_full_payment": True,
        "allows_override": False,
        "display_order": 3,
    },
]

DEFAULT_PAYMENT_METHODS = [
    {"method_name": "Cash", "method_type": "cash", "display_order": 1},
    {"method_name": "Bank Transfer", "method_type": "bank", "display_order": 2},
    {"method_name": "Mobile Money", "method_type": "mobile_money", "display_order": 3},
]


async def create_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def seed_admin(db: AsyncSession) -> None:
    email = settings.default_admin_email
    password = settings.default_admin_password
    if not email or not password:
        logger.info("No default admin email/password; skipping admin user")
        return
    result = await db.execute(select(User).where(User.email == email.lower()))
    if result.scalar_one_or_none():
        logger.info("Admin user %s already exists", email)
        return
    db.add(
        User(
            email=email.lower(),
            first_name="System",
            last_name="Administrator",
            password_hash=hash_password(password),
            role=UserRole.ADMIN.value,
            is_active=True,
            must_change_password=False,
        )
    )
    logger.info("Created admin user %s", email)


async def seed_clearance_types(db: AsyncSession) -> None:
    result = await db.execute(select(ClearanceType.name))
    existing = set(result.scalars().all())
    for data in DEFAULT_CLEARANCE_TYPES:
        if data["name"] not in existing:
            db.add(ClearanceType(**data, is_active=True))
            logger.info("Created clearance type %s", data["name"])


async def seed_payment_methods(db: AsyncSession) -> None:
    result = await db.execute(select(PaymentMethodConfig.method_name))
    existing = set(result.scalars().all())
    for data in DEFAULT_PAYMENT_METHODS:
        if data["method_name"] not in existing:
            db.add(PaymentMethodConfig(**data, is_active=True))


async def seed_reference_data(db: AsyncSession) -> None:
    await seed_admin(db)
    await seed_clearance_types(db)
    await seed_payment_methods(db)
    await db.commit()


async def main() -> None:
    setup_logging()
    await create_tables()
    async with AsyncSessionLocal() as db:
        try:
            await seed_reference_data(db)
        except Exception:
            await db.rollback()
            logger.exception("Seeding failed")
            raise
    logger.info("Database initialised")


if __name__ == "__main__":
    asyncio.run(main())
