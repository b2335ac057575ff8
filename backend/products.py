"""
Product Management API Endpoints
Company-scoped CRUD for products. Each product belongs to one of the
company's brands and defines its warranty length and which fields
customers must supply when registering.
"""
import json
import logging
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models import Product, DEFAULT_REQUIRED_FIELDS
from schemas import ProductResponse, RequiredFields, dump, form_bool, form_int, success
from image_utils import has_upload, store_image, replace_image, remove_image, finish_replace, undo_replace
from auth import AdminContext, Permission, get_admin_context, require_permission
from warranty_lifecycle import MAX_WARRANTY_MONTHS
import repositories

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])

DUPLICATE_PRODUCT = "มีสินค้ารุ่นนี้อยู่แล้ว"
PRODUCT_NOT_FOUND = "ไม่พบสินค้า"
INVALID_BRAND = "แบรนด์ที่เลือกไม่ถูกต้อง"


def serialize_product(product: Product) -> dict:
    brand_name = product.brand.name if product.brand is not None else ""
    return dump(ProductResponse, product, brandName=brand_name)


def parse_warranty_period(years: Optional[str], months: Optional[str]) -> Tuple[int, int]:
    try:
        warranty_years = form_int(years)
        warranty_months = form_int(months)
    except ValueError:
        raise HTTPException(status_code=400, detail="ระยะเวลารับประกันต้องเป็นตัวเลข")

    if warranty_years < 0 or not 0 <= warranty_months <= MAX_WARRANTY_MONTHS:
        raise HTTPException(status_code=400, detail="ระยะเวลารับประกันไม่ถูกต้อง (ปี >= 0, เดือน 0-11)")
    if warranty_years == 0 and warranty_months == 0:
        raise HTTPException(status_code=400, detail="กรุณาระบุระยะเวลารับประกัน")
    return warranty_years, warranty_months


def parse_required_fields(raw: Optional[str]) -> dict:
    """requiredFields arrives as a JSON string; missing keys fall back to the defaults."""
    if raw is None or raw.strip() == "":
        return dict(DEFAULT_REQUIRED_FIELDS)
    try:
        value = json.loads(raw)
        if not isinstance(value, dict):
            raise ValueError("requiredFields must be an object")
        return RequiredFields.model_validate(value).as_stored()
    except (ValueError, ValidationError):
        raise HTTPException(status_code=400, detail="รูปแบบข้อมูล requiredFields ไม่ถูกต้อง")


async def _resolve_brand_id(db: AsyncSession, admin: AdminContext, raw_brand_id: Optional[str]) -> int:
    """The brand must exist and belong to the same company."""
    try:
        brand_id = int(str(raw_brand_id).strip())
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=INVALID_BRAND)

    brand = await repositories.get_brand(db, admin.company_id, brand_id)
    if not brand:
        raise HTTPException(status_code=400, detail=INVALID_BRAND)
    return brand.id


async def _get_product_or_404(db: AsyncSession, admin: AdminContext, product_id: int) -> Product:
    product = await repositories.get_product(db, admin.company_id, product_id)
    if not product:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=PRODUCT_NOT_FOUND)
    return product


@router.get("")
async def list_products(
    brand_id: Optional[int] = Query(None, alias="brandId"),
    search: Optional[str] = Query(None),
    admin: AdminContext = Depends(get_admin_context),
    db: AsyncSession = Depends(get_db)
):
    products = await repositories.list_products(db, admin.company_id, brand_id=brand_id, search=search)
    return success([serialize_product(product) for product in products])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_product(
    brand_id: Optional[str] = Form(None, alias="brandId"),
    name: Optional[str] = Form(None),
    model: Optional[str] = Form(""),
    description: Optional[str] = Form(""),
    warranty_years: Optional[str] = Form(None, alias="warrantyYears"),
    warranty_months: Optional[str] = Form(None, alias="warrantyMonths"),
    required_fields: Optional[str] = Form(None, alias="requiredFields"),
    image: Optional[UploadFile] = File(None),
    admin: AdminContext = Depends(require_permission(Permission.MANAGE_CATALOG)),
    db: AsyncSession = Depends(get_db)
):
    name = (name or "").strip()
    model = (model or "").strip()
    if not brand_id or not name:
        raise HTTPException(status_code=400, detail="กรุณากรอกข้อมูลให้ครบถ้วน")

    resolved_brand_id = await _resolve_brand_id(db, admin, brand_id)
    years, months = parse_warranty_period(warranty_years, warranty_months)
    flags = parse_required_fields(required_fields)

    if await repositories.product_exists(db, admin.company_id, resolved_brand_id, name, model):
        raise HTTPException(status_code=400, detail=DUPLICATE_PRODUCT)

    warnings = []
    image_url = None
    if has_upload(image):
        result = await store_image(image, admin.company_id, "products")
        image_url = result.url
        warnings.extend(result.warnings)

    product = Product(
        company_id=admin.company_id,
        brand_id=resolved_brand_id,
        name=name,
        model=model,
        description=(description or "").strip(),
        warranty_years=years,
        warranty_months=months,
        required_fields=flags,
        image_url=image_url,
        is_active=True
    )
    db.add(product)
    try:
        await repositories.commit_unique(db, DUPLICATE_PRODUCT)
    except HTTPException:
        await remove_image(image_url)
        raise

    product = await repositories.get_product(db, admin.company_id, product.id)
    logger.info(f"Product {product.id} '{product.name}' created by user {admin.user.id} (company {admin.company_id})")
    return success(serialize_product(product), "เพิ่มสินค้าสำเร็จ", warnings)


@router.get("/{product_id}")
async def get_product(
    product_id: int,
    admin: AdminContext = Depends(get_admin_context),
    db: AsyncSession = Depends(get_db)
):
    product = await _get_product_or_404(db, admin, product_id)
    warranty_count = await repositories.count_warranties_for_product(db, admin.company_id, product.id)
    return success({**serialize_product(product), "warrantyCount": warranty_count})


@router.put("/{product_id}")
async def update_product(
    product_id: int,
    brand_id: Optional[str] = Form(None, alias="brandId"),
    name: Optional[str] = Form(None),
    model: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    warranty_years: Optional[str] = Form(None, alias="warrantyYears"),
    warranty_months: Optional[str] = Form(None, alias="warrantyMonths"),
    required_fields: Optional[str] = Form(None, alias="requiredFields"),
    is_active: Optional[str] = Form(None, alias="isActive"),
    remove_image_flag: Optional[str] = Form(None, alias="removeImage"),
    image: Optional[UploadFile] = File(None),
    admin: AdminContext = Depends(require_permission(Permission.MANAGE_CATALOG)),
    db: AsyncSession = Depends(get_db)
):
    product = await _get_product_or_404(db, admin, product_id)

    new_brand_id = product.brand_id
    if brand_id is not None and str(brand_id).strip():
        new_brand_id = await _resolve_brand_id(db, admin, brand_id)

    new_name = product.name
    if name is not None:
        new_name = name.strip()
        if not new_name:
            raise HTTPException(status_code=400, detail="กรุณากรอกข้อมูลให้ครบถ้วน")
    new_model = product.model if model is None else model.strip()

    if warranty_years is not None or warranty_months is not None:
        years, months = parse_warranty_period(
            warranty_years if warranty_years is not None else str(product.warranty_years),
            warranty_months if warranty_months is not None else str(product.warranty_months),
        )
        product.warranty_years = years
        product.warranty_months = months

    if required_fields is not None:
        product.required_fields = parse_required_fields(required_fields)

    if await repositories.product_exists(db, admin.company_id, new_brand_id, new_name, new_model, exclude_id=product.id):
        raise HTTPException(status_code=400, detail=DUPLICATE_PRODUCT)

    product.brand_id = new_brand_id
    product.name = new_name
    product.model = new_model
    if description is not None:
        product.description = description.strip()

    active = form_bool(is_active)
    if active is not None:
        product.is_active = active

    stored = await replace_image(
        image, product.image_url, admin.company_id, "products",
        remove=bool(form_bool(remove_image_flag, default=False))
    )
    product.image_url = stored.url

    try:
        await repositories.commit_unique(db, DUPLICATE_PRODUCT)
    except HTTPException:
        await undo_replace(stored)
        raise
    warnings = await finish_replace(stored)

    # Reload so the brand relationship reflects a changed brand_id
    product = await repositories.get_product(db, admin.company_id, product_id)
    return success(serialize_product(product), "แก้ไขสินค้าสำเร็จ", warnings)


@router.delete("/{product_id}")
async def delete_product(
    product_id: int,
    admin: AdminContext = Depends(require_permission(Permission.MANAGE_CATALOG)),
    db: AsyncSession = Depends(get_db)
):
    """Delete a product. Refused once any warranty was registered against it."""
    product = await _get_product_or_404(db, admin, product_id)

    warranty_count = await repositories.count_warranties_for_product(db, admin.company_id, product.id)
    if warranty_count > 0:
        raise HTTPException(
            status_code=400,
            detail={
                "message": "ไม่สามารถลบสินค้าที่มีการลงทะเบียนประกันแล้ว",
                "warrantyCount": warranty_count,
            }
        )

    image_url = product.image_url
    await db.delete(product)
    await db.commit()

    warnings = await remove_image(image_url)
    logger.info(f"Product {product_id} deleted by user {admin.user.id} (company {admin.company_id})")
    return success(message="ลบสินค้าสำเร็จ", warnings=warnings)
