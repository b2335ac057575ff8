"""
Brand Management API Endpoints
Company-scoped CRUD for brands, with optional logo stored in R2.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models import Brand
from schemas import BrandResponse, dump, form_bool, success
from image_utils import has_upload, store_image, replace_image, remove_image, finish_replace, undo_replace
from auth import AdminContext, Permission, get_admin_context, require_permission
import repositories

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/brands", tags=["brands"])

DUPLICATE_BRAND = "มีแบรนด์ชื่อนี้อยู่แล้ว"
BRAND_NOT_FOUND = "ไม่พบแบรนด์"


async def _get_brand_or_404(db: AsyncSession, admin: AdminContext, brand_id: int) -> Brand:
    brand = await repositories.get_brand(db, admin.company_id, brand_id)
    if not brand:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=BRAND_NOT_FOUND)
    return brand


@router.get("")
async def list_brands(
    search: Optional[str] = Query(None),
    admin: AdminContext = Depends(get_admin_context),
    db: AsyncSession = Depends(get_db)
):
    """List the company's brands with how many products each has"""
    rows = await repositories.list_brands(db, admin.company_id, search=search)
    return success([dump(BrandResponse, brand, productCount=count) for brand, count in rows])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_brand(
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(""),
    logo: Optional[UploadFile] = File(None),
    admin: AdminContext = Depends(require_permission(Permission.MANAGE_CATALOG)),
    db: AsyncSession = Depends(get_db)
):
    name = (name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="ชื่อแบรนด์เป็นข้อมูลที่จำเป็น")

    if await repositories.brand_name_exists(db, admin.company_id, name):
        raise HTTPException(status_code=400, detail=DUPLICATE_BRAND)

    warnings = []
    logo_url = None
    if has_upload(logo):
        result = await store_image(logo, admin.company_id, "brands")
        logo_url = result.url
        warnings.extend(result.warnings)

    brand = Brand(
        company_id=admin.company_id,
        name=name,
        description=(description or "").strip(),
        logo_url=logo_url,
        is_active=True
    )
    db.add(brand)
    try:
        await repositories.commit_unique(db, DUPLICATE_BRAND)
    except HTTPException:
        await remove_image(logo_url)
        raise
    await db.refresh(brand)

    logger.info(f"Brand {brand.id} '{brand.name}' created by user {admin.user.id} (company {admin.company_id})")
    return success(dump(BrandResponse, brand, productCount=0), "เพิ่มแบรนด์สำเร็จ", warnings)


@router.get("/{brand_id}")
async def get_brand(
    brand_id: int,
    admin: AdminContext = Depends(get_admin_context),
    db: AsyncSession = Depends(get_db)
):
    brand = await _get_brand_or_404(db, admin, brand_id)
    count = await repositories.count_products_for_brand(db, admin.company_id, brand.id)
    return success(dump(BrandResponse, brand, productCount=count))


@router.put("/{brand_id}")
async def update_brand(
    brand_id: int,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    is_active: Optional[str] = Form(None, alias="isActive"),
    remove_logo: Optional[str] = Form(None, alias="removeLogo"),
    logo: Optional[UploadFile] = File(None),
    admin: AdminContext = Depends(require_permission(Permission.MANAGE_CATALOG)),
    db: AsyncSession = Depends(get_db)
):
    brand = await _get_brand_or_404(db, admin, brand_id)

    if name is not None:
        name = name.strip()
        if not name:
            raise HTTPException(status_code=400, detail="ชื่อแบรนด์เป็นข้อมูลที่จำเป็น")
        if await repositories.brand_name_exists(db, admin.company_id, name, exclude_id=brand.id):
            raise HTTPException(status_code=400, detail=DUPLICATE_BRAND)
        brand.name = name

    if description is not None:
        brand.description = description.strip()

    active = form_bool(is_active)
    if active is not None:
        brand.is_active = active

    image = await replace_image(
        logo, brand.logo_url, admin.company_id, "brands",
        remove=bool(form_bool(remove_logo, default=False))
    )
    brand.logo_url = image.url

    try:
        await repositories.commit_unique(db, DUPLICATE_BRAND)
    except HTTPException:
        await undo_replace(image)
        raise
    warnings = await finish_replace(image)
    await db.refresh(brand)

    count = await repositories.count_products_for_brand(db, admin.company_id, brand.id)
    return success(dump(BrandResponse, brand, productCount=count), "แก้ไขแบรนด์สำเร็จ", warnings)


@router.delete("/{brand_id}")
async def delete_brand(
    brand_id: int,
    admin: AdminContext = Depends(require_permission(Permission.MANAGE_CATALOG)),
    db: AsyncSession = Depends(get_db)
):
    """Delete a brand. Refused while any product still references it."""
    brand = await _get_brand_or_404(db, admin, brand_id)

    product_count = await repositories.count_products_for_brand(db, admin.company_id, brand.id)
    if product_count > 0:
        raise HTTPException(
            status_code=400,
            detail={
                "message": "ไม่สามารถลบแบรนด์ที่มีสินค้าอยู่",
                "productCount": product_count,
            }
        )

    logo_url = brand.logo_url
    await db.delete(brand)
    await db.commit()

    warnings = await remove_image(logo_url)
    logger.info(f"Brand {brand_id} deleted by user {admin.user.id} (company {admin.company_id})")
    return success(message="ลบแบรนด์สำเร็จ", warnings=warnings)
