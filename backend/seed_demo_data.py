"""
Safe auto-seeding system for demo data.

This module provides idempotent seeding that:
- Only runs when SEED_DEMO_DATA is enabled
- Only runs if no company exists yet
- Creates one demo company (abc-shop) with an owner, brands and products
- Safe to run multiple times (won't overwrite existing data)
"""
import logging
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models import Company, User, UserRole, Brand, Product, DEFAULT_REQUIRED_FIELDS
from auth import get_password_hash

logger = logging.getLogger(__name__)

DEMO_SLUG = "abc-shop"
DEMO_OWNER_EMAIL = "owner@abcshop.com"
DEMO_OWNER_PASSWORD = "Demo1234"

# brand -> [(product name, model, years, months)]
DEMO_CATALOG = {
    "Samsung": [
        ("ตู้เย็น 2 ประตู", "RT38K5032S8", 1, 0),
        ("เครื่องซักผ้าฝาหน้า", "WW90T504DAW", 2, 0),
    ],
    "Sharp": [
        ("ไมโครเวฟ", "R-2221G-K", 1, 0),
        ("พัดลมตั้งพื้น", "PJ-SL163", 0, 6),
    ],
    "Hatari": [
        ("พัดลมตั้งโต๊ะ", "HT-T16M3", 3, 0),
    ],
}


async def is_database_empty(db: AsyncSession) -> bool:
    """True while no company has been registered."""
    result = await db.execute(select(func.count(Company.id)))
    return (result.scalar() or 0) == 0


async def seed_demo_company(db: AsyncSession) -> Company:
    company = Company(
        slug=DEMO_SLUG,
        name="ABC Shop",
        email=DEMO_OWNER_EMAIL,
        phone="02-123-4567",
        address="123 ถนนสุขุมวิท",
        district="คลองตัน",
        amphoe="คลองเตย",
        province="กรุงเทพมหานคร",
        postcode="10110",
        timezone=settings.DEFAULT_TIMEZONE,
        is_active=True
    )
    db.add(company)
    await db.flush()

    db.add(User(
        company_id=company.id,
        email=DEMO_OWNER_EMAIL,
        name="ABC Owner",
        role=UserRole.OWNER,
        password_hash=get_password_hash(DEMO_OWNER_PASSWORD),
        is_active=True
    ))

    for brand_name, products in DEMO_CATALOG.items():
        brand = Brand(company_id=company.id, name=brand_name, description="", is_active=True)
        db.add(brand)
        await db.flush()
        for name, model, years, months in products:
            db.add(Product(
                company_id=company.id,
                brand_id=brand.id,
                name=name,
                model=model,
                warranty_years=years,
                warranty_months=months,
                required_fields=dict(DEFAULT_REQUIRED_FIELDS),
                is_active=True
            ))

    await db.commit()
    return company


async def seed_demo_data_on_startup(db: AsyncSession):
    """
    Main entry point for auto-seeding demo data on app startup.

    Environment Variables:
        SEED_DEMO_DATA: "true" to enable auto-seeding (default: false)
    """
    if not settings.SEED_DEMO_DATA:
        logger.info("Demo data seeding disabled via SEED_DEMO_DATA=false")
        return

    if not await is_database_empty(db):
        logger.info("Database contains company data - skipping demo data seed")
        return

    logger.info("=" * 60)
    logger.info("Database is empty - seeding demo data...")
    logger.info("=" * 60)

    try:
        company = await seed_demo_company(db)
        logger.info(f"✅ Demo company created: {company.slug} (login {DEMO_OWNER_EMAIL} / {DEMO_OWNER_PASSWORD})")
    except Exception as e:
        logger.error(f"❌ Demo data seeding failed: {e}", exc_info=True)
        await db.rollback()
        raise
