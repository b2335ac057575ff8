"""
Company-scoped query helpers.

Every read that takes an id also takes the company id, so a record that
belongs to another company comes back as None and routes report it as
not found. List queries always filter on company_id first.
"""
import logging
from typing import Dict, List, Optional, Tuple

from fastapi import HTTPException
from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from models import Company, User, Brand, Product, Customer, Warranty, WarrantyStatusChange

logger = logging.getLogger(__name__)


def _like(term: str) -> str:
    return f"%{term.strip().lower()}%"


async def commit_unique(db: AsyncSession, duplicate_message: str) -> None:
    """
    Commit, turning a unique-constraint violation into a 400.

    The friendly pre-checks in the routes can race with a concurrent request;
    the database constraint is what actually guarantees uniqueness.
    """
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info(f"Unique constraint rejected write: {duplicate_message}")
        raise HTTPException(status_code=400, detail=duplicate_message)


# ==================== COMPANIES ====================

async def get_company(db: AsyncSession, company_id: int) -> Optional[Company]:
    result = await db.execute(select(Company).where(Company.id == company_id))
    return result.scalar_one_or_none()


async def get_active_company_by_slug(db: AsyncSession, slug: str) -> Optional[Company]:
    result = await db.execute(
        select(Company).where(Company.slug == slug, Company.is_active == True)
    )
    return result.scalar_one_or_none()


async def slug_exists(db: AsyncSession, slug: str) -> bool:
    result = await db.execute(select(func.count(Company.id)).where(Company.slug == slug))
    return (result.scalar() or 0) > 0


async def company_email_exists(db: AsyncSession, email: str, exclude_id: Optional[int] = None) -> bool:
    query = select(func.count(Company.id)).where(func.lower(Company.email) == email.strip().lower())
    if exclude_id is not None:
        query = query.where(Company.id != exclude_id)
    result = await db.execute(query)
    return (result.scalar() or 0) > 0


# ==================== USERS ====================

async def list_users(db: AsyncSession, company_id: int) -> List[User]:
    result = await db.execute(
        select(User).where(User.company_id == company_id).order_by(User.created_at.desc(), User.id.desc())
    )
    return list(result.scalars().all())


async def get_user(db: AsyncSession, company_id: int, user_id: int) -> Optional[User]:
    result = await db.execute(
        select(User).where(User.id == user_id, User.company_id == company_id)
    )
    return result.scalar_one_or_none()


async def find_login_user(db: AsyncSession, company_id: int, email: str) -> Optional[User]:
    """Active user with this email in the company (emails compared case-insensitively)."""
    result = await db.execute(
        select(User).where(
            User.company_id == company_id,
            func.lower(User.email) == email.strip().lower(),
            User.is_active == True
        )
    )
    return result.scalar_one_or_none()


async def find_users_by_email(db: AsyncSession, email: str) -> List[Tuple[User, Company]]:
    """All accounts with this email across companies, used when no tenant is known."""
    result = await db.execute(
        select(User, Company)
        .join(Company, Company.id == User.company_id)
        .where(func.lower(User.email) == email.strip().lower())
        .order_by(User.id)
    )
    return [(user, company) for user, company in result.all()]


async def user_email_exists(db: AsyncSession, company_id: int, email: str, exclude_id: Optional[int] = None) -> bool:
    query = select(func.count(User.id)).where(
        User.company_id == company_id,
        func.lower(User.email) == email.strip().lower()
    )
    if exclude_id is not None:
        query = query.where(User.id != exclude_id)
    result = await db.execute(query)
    return (result.scalar() or 0) > 0


async def count_company_users(db: AsyncSession, company_id: int) -> int:
    result = await db.execute(select(func.count(User.id)).where(User.company_id == company_id))
    return result.scalar() or 0


# ==================== BRANDS ====================

async def list_brands(
    db: AsyncSession,
    company_id: int,
    search: Optional[str] = None,
    active_only: bool = False,
) -> List[Tuple[Brand, int]]:
    """Brands with their product counts, newest first."""
    product_count = (
        select(func.count(Product.id))
        .where(Product.brand_id == Brand.id, Product.company_id == company_id)
        .correlate(Brand)
        .scalar_subquery()
    )
    query = select(Brand, product_count).where(Brand.company_id == company_id)
    if active_only:
        query = query.where(Brand.is_active == True)
    if search and search.strip():
        term = _like(search)
        query = query.where(or_(
            func.lower(Brand.name).like(term),
            func.lower(func.coalesce(Brand.description, "")).like(term)
        ))
    query = query.order_by(Brand.created_at.desc(), Brand.id.desc())
    result = await db.execute(query)
    return [(brand, count or 0) for brand, count in result.all()]


async def get_brand(db: AsyncSession, company_id: int, brand_id: int) -> Optional[Brand]:
    result = await db.execute(
        select(Brand).where(Brand.id == brand_id, Brand.company_id == company_id)
    )
    return result.scalar_one_or_none()


async def brand_name_exists(db: AsyncSession, company_id: int, name: str, exclude_id: Optional[int] = None) -> bool:
    query = select(func.count(Brand.id)).where(
        Brand.company_id == company_id,
        func.lower(Brand.name) == name.strip().lower()
    )
    if exclude_id is not None:
        query = query.where(Brand.id != exclude_id)
    result = await db.execute(query)
    return (result.scalar() or 0) > 0


async def count_products_for_brand(db: AsyncSession, company_id: int, brand_id: int) -> int:
    result = await db.execute(
        select(func.count(Product.id)).where(Product.company_id == company_id, Product.brand_id == brand_id)
    )
    return result.scalar() or 0


# ==================== PRODUCTS ====================

async def list_products(
    db: AsyncSession,
    company_id: int,
    brand_id: Optional[int] = None,
    search: Optional[str] = None,
    active_only: bool = False,
) -> List[Product]:
    query = (
        select(Product)
        .options(selectinload(Product.brand))
        .where(Product.company_id == company_id)
    )
    if brand_id is not None:
        query = query.where(Product.brand_id == brand_id)
    if active_only:
        query = query.where(Product.is_active == True)
    if search and search.strip():
        term = _like(search)
        query = query.where(or_(
            func.lower(Product.name).like(term),
            func.lower(Product.model).like(term)
        ))
    query = query.order_by(Product.created_at.desc(), Product.id.desc())
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_product(db: AsyncSession, company_id: int, product_id: int) -> Optional[Product]:
    result = await db.execute(
        select(Product)
        .options(selectinload(Product.brand))
        .where(Product.id == product_id, Product.company_id == company_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def product_exists(
    db: AsyncSession,
    company_id: int,
    brand_id: int,
    name: str,
    model: str,
    exclude_id: Optional[int] = None,
) -> bool:
    query = select(func.count(Product.id)).where(
        Product.company_id == company_id,
        Product.brand_id == brand_id,
        func.lower(Product.name) == name.strip().lower(),
        func.lower(Product.model) == (model or "").strip().lower()
    )
    if exclude_id is not None:
        query = query.where(Product.id != exclude_id)
    result = await db.execute(query)
    return (result.scalar() or 0) > 0


async def count_warranties_for_product(db: AsyncSession, company_id: int, product_id: int) -> int:
    result = await db.execute(
        select(func.count(Warranty.id)).where(Warranty.company_id == company_id, Warranty.product_id == product_id)
    )
    return result.scalar() or 0


# ==================== CUSTOMERS ====================

async def get_customer(db: AsyncSession, company_id: int, customer_id: int) -> Optional[Customer]:
    result = await db.execute(
        select(Customer).where(Customer.id == customer_id, Customer.company_id == company_id)
    )
    return result.scalar_one_or_none()


async def get_customer_by_line_id(db: AsyncSession, company_id: int, line_user_id: str) -> Optional[Customer]:
    result = await db.execute(
        select(Customer).where(Customer.company_id == company_id, Customer.line_user_id == line_user_id)
    )
    return result.scalar_one_or_none()


# ==================== WARRANTIES ====================

async def list_company_warranties(
    db: AsyncSession,
    company_id: int,
    brand_name: Optional[str] = None,
) -> List[Warranty]:
    """Newest registrations first. Brand filters on the snapshot taken at registration."""
    query = select(Warranty).where(Warranty.company_id == company_id)
    query = query.order_by(Warranty.registration_date.desc(), Warranty.id.desc())
    result = await db.execute(query)
    warranties = list(result.scalars().all())

    if brand_name and brand_name != "all":
        warranties = [w for w in warranties if (w.product_info or {}).get("brandName") == brand_name]
    return warranties


async def list_customer_warranties(db: AsyncSession, company_id: int, customer_id: int) -> List[Warranty]:
    result = await db.execute(
        select(Warranty)
        .where(Warranty.company_id == company_id, Warranty.customer_id == customer_id)
        .order_by(Warranty.registration_date.desc(), Warranty.id.desc())
    )
    return list(result.scalars().all())


async def get_warranty(db: AsyncSession, company_id: int, warranty_id: int) -> Optional[Warranty]:
    result = await db.execute(
        select(Warranty).where(Warranty.id == warranty_id, Warranty.company_id == company_id)
    )
    return result.scalar_one_or_none()


async def list_status_changes(db: AsyncSession, company_id: int, warranty_id: int) -> List[WarrantyStatusChange]:
    result = await db.execute(
        select(WarrantyStatusChange)
        .where(WarrantyStatusChange.company_id == company_id, WarrantyStatusChange.warranty_id == warranty_id)
        .order_by(WarrantyStatusChange.changed_at, WarrantyStatusChange.id)
    )
    return list(result.scalars().all())


async def count_company_warranties(db: AsyncSession, company_id: int) -> int:
    result = await db.execute(select(func.count(Warranty.id)).where(Warranty.company_id == company_id))
    return result.scalar() or 0


async def line_user_ids(db: AsyncSession, company_id: int, customer_ids: List[int]) -> Dict[int, str]:
    """customer id -> LINE user id, for the export sheet."""
    if not customer_ids:
        return {}
    result = await db.execute(
        select(Customer.id, Customer.line_user_id)
        .where(Customer.company_id == company_id, Customer.id.in_(set(customer_ids)))
    )
    return {customer_id: line_user_id for customer_id, line_user_id in result.all()}
