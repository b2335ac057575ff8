"""
Company API Endpoints
Self-service registration of a new company (tenant), subdomain availability,
company settings, the customer share link and the public catalog the
customer registration form is built from.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models import Company, User, UserRole
from schemas import (
    CompanyRegistration, CompanyResponse, PublicCompanyResponse, BrandResponse,
    dump, form_bool, is_valid_email, success,
)
from image_utils import has_upload, store_image, replace_image, validate_image_file, finish_replace, undo_replace
from auth import AdminContext, Permission, get_admin_context, require_permission, get_password_hash
from tenancy import RequestContext, create_slug, is_valid_company_slug, resolve_request_tenant, urls_for
from products import serialize_product
import repositories

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/companies", tags=["companies"])
public_router = APIRouter(prefix="/api/public", tags=["public"])

REQUIRED_REGISTRATION_FIELDS = (
    "name", "email", "phone", "address", "district",
    "amphoe", "province", "postcode", "admin_name", "admin_password",
)

INVALID_SLUG = "ชื่อเว็บไซต์ไม่ถูกต้อง กรุณาใช้ตัวอังกฤษเล็ก ตัวเลข และ - เท่านั้น (3-50 ตัวอักษร)"
SLUG_TAKEN = "ชื่อบริษัทนี้ถูกใช้งานแล้ว กรุณาเปลี่ยนชื่อ"
SLUG_RACE = "ชื่อเว็บไซต์นี้เพิ่งถูกใช้งานโดยผู้อื่น กรุณาเลือกชื่ออื่น"
EMAIL_TAKEN = "อีเมลนี้ถูกใช้งานแล้ว"
COMPANY_NOT_FOUND = "ไม่พบข้อมูลบริษัท"

# Plain text fields editable from the settings page (form name -> column)
SETTINGS_TEXT_FIELDS = {
    "name": "name",
    "address": "address",
    "district": "district",
    "amphoe": "amphoe",
    "province": "province",
    "postcode": "postcode",
    "phone": "phone",
    "website": "website",
    "lineChannelId": "line_channel_id",
}


def check_admin_password(password: str) -> None:
    if len(password) < 8:
        raise HTTPException(status_code=400, detail="รหัสผ่านต้องมีอย่างน้อย 8 ตัวอักษร")
    if not (any(c.islower() for c in password)
            and any(c.isupper() for c in password)
            and any(c.isdigit() for c in password)):
        raise HTTPException(status_code=400, detail="รหัสผ่านต้องมีตัวอักษรเล็ก ใหญ่ และตัวเลข")


def parse_registration(raw: Optional[str]) -> CompanyRegistration:
    if not raw:
        raise HTTPException(status_code=400, detail="กรุณากรอกข้อมูลให้ครบถ้วน")
    try:
        return CompanyRegistration.model_validate(json.loads(raw))
    except (ValueError, ValidationError):
        raise HTTPException(status_code=400, detail="รูปแบบข้อมูลไม่ถูกต้อง")


# ==================== REGISTRATION ====================

@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register_company(
    company_data: Optional[str] = Form(None, alias="companyData"),
    logo: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a company together with its owner account.

    The owner logs in with the company email. Company and owner are written
    in one transaction; the logo is uploaded afterwards and is best effort.
    """
    registration = parse_registration(company_data)

    for field_name in REQUIRED_REGISTRATION_FIELDS:
        if not getattr(registration, field_name):
            alias = CompanyRegistration.model_fields[field_name].alias or field_name
            raise HTTPException(status_code=400, detail=f"กรุณากรอก {alias}")

    email = registration.email.lower()
    if not is_valid_email(email):
        raise HTTPException(status_code=400, detail="รูปแบบอีเมลไม่ถูกต้อง")
    check_admin_password(registration.admin_password)
    if has_upload(logo):
        validate_image_file(logo)

    slug = (registration.slug or "").lower() or create_slug(registration.name)
    if not is_valid_company_slug(slug):
        raise HTTPException(status_code=400, detail=INVALID_SLUG)

    if await repositories.slug_exists(db, slug):
        raise HTTPException(status_code=400, detail=SLUG_TAKEN)
    if await repositories.company_email_exists(db, email) or await repositories.find_users_by_email(db, email):
        raise HTTPException(status_code=400, detail=EMAIL_TAKEN)

    company = Company(
        slug=slug,
        name=registration.name,
        email=email,
        phone=registration.phone,
        address=registration.address,
        district=registration.district,
        amphoe=registration.amphoe,
        province=registration.province,
        postcode=registration.postcode,
        website=registration.website or None,
        timezone=settings.DEFAULT_TIMEZONE,
        is_active=True
    )
    db.add(company)
    owner = User(
        company=company,
        email=email,
        name=registration.admin_name,
        role=UserRole.OWNER,
        password_hash=get_password_hash(registration.admin_password),
        is_active=True
    )
    db.add(owner)
    await repositories.commit_unique(db, SLUG_RACE)
    await db.refresh(company)

    warnings = []
    if has_upload(logo):
        stored = await store_image(logo, company.id, "logos")
        warnings.extend(stored.warnings)
        if stored.url:
            company.logo_url = stored.url
            await db.commit()

    logger.info(f"Company {company.id} '{company.slug}' registered with owner {email}")
    urls = urls_for(company.slug)
    return success(
        {
            "companyId": company.id,
            "companyName": company.name,
            "slug": company.slug,
            "subdomainUrl": urls["customerUrl"],
            "adminUrl": urls["adminUrl"],
            "adminCredentials": {"email": owner.email, "name": owner.name},
        },
        "สมัครสมาชิกเรียบร้อยแล้ว",
        warnings
    )


@router.get("/check-subdomain")
async def check_subdomain(
    slug: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    candidate = (slug or "").strip().lower()
    if not candidate:
        raise HTTPException(status_code=400, detail="กรุณาระบุชื่อเว็บไซต์")

    if not is_valid_company_slug(candidate):
        return success(available=False, slug=candidate, message=INVALID_SLUG)

    available = not await repositories.slug_exists(db, candidate)
    domain = f"{candidate}.{settings.APP_DOMAIN}"
    message = f"✓ {domain} ใช้งานได้!" if available else f"✗ {domain} ถูกใช้งานแล้ว"
    return success(available=available, slug=candidate, message=message)


# ==================== SETTINGS ====================

@router.get("/settings")
async def get_company_settings(
    admin: AdminContext = Depends(get_admin_context),
    db: AsyncSession = Depends(get_db)
):
    # Counts are computed on read, nothing is stored on the company row
    return success(dump(
        CompanyResponse,
        admin.company,
        userCount=await repositories.count_company_users(db, admin.company_id),
        warrantyCount=await repositories.count_company_warranties(db, admin.company_id),
    ))


@router.put("/settings")
async def update_company_settings(
    request: Request,
    logo: Optional[UploadFile] = File(None),
    remove_logo: Optional[str] = Form(None, alias="removeLogo"),
    admin: AdminContext = Depends(require_permission(Permission.MANAGE_SETTINGS)),
    db: AsyncSession = Depends(get_db)
):
    """Only fields present in the form are changed."""
    form = await request.form()
    company = admin.company

    for form_name, column in SETTINGS_TEXT_FIELDS.items():
        value = form.get(form_name)
        if value is None or not isinstance(value, str):
            continue
        value = value.strip()
        if form_name == "name" and not value:
            raise HTTPException(status_code=400, detail="กรุณากรอกชื่อบริษัท")
        if column in ("website", "line_channel_id"):
            value = value or None
        setattr(company, column, value)

    email = form.get("email")
    if isinstance(email, str) and email.strip():
        email = email.strip().lower()
        if not is_valid_email(email):
            raise HTTPException(status_code=400, detail="รูปแบบอีเมลไม่ถูกต้อง")
        if await repositories.company_email_exists(db, email, exclude_id=company.id):
            raise HTTPException(status_code=400, detail=EMAIL_TAKEN)
        company.email = email

    stored = await replace_image(
        logo, company.logo_url, company.id, "logos",
        remove=bool(form_bool(remove_logo, default=False))
    )
    company.logo_url = stored.url

    try:
        await repositories.commit_unique(db, EMAIL_TAKEN)
    except HTTPException:
        await undo_replace(stored)
        raise
    warnings = await finish_replace(stored)
    await db.refresh(company)

    logger.info(f"Settings of company {company.id} updated by user {admin.user.id}")
    return success(dump(CompanyResponse, company), "บันทึกการตั้งค่าสำเร็จ", warnings)


@router.get("/share-link")
async def get_share_link(
    admin: AdminContext = Depends(get_admin_context)
):
    """Links the company hands to customers (and the admin entry point)."""
    urls = urls_for(admin.company.slug)
    return success({
        "companyName": admin.company.name,
        "slug": admin.company.slug,
        "url": urls["customerUrl"],
        **urls,
    })


# ==================== PUBLIC CATALOG ====================

@public_router.get("/catalog")
async def get_public_catalog(
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Company profile with its active brands and products for the customer
    registration form. The company comes from the request URL.
    """
    tenant = resolve_request_tenant(RequestContext.from_request(request))
    if not tenant:
        raise HTTPException(status_code=400, detail=COMPANY_NOT_FOUND)

    company = await repositories.get_active_company_by_slug(db, tenant)
    if not company:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=COMPANY_NOT_FOUND)

    brands = [brand for brand, _ in await repositories.list_brands(db, company.id, active_only=True)]
    active_brand_ids = {brand.id for brand in brands}
    products = await repositories.list_products(db, company.id, active_only=True)

    return success({
        "company": dump(PublicCompanyResponse, company),
        "brands": [dump(BrandResponse, brand) for brand in brands],
        "products": [serialize_product(p) for p in products if p.brand_id in active_brand_ids],
    })
