"""
Customer Warranty API Endpoints
Customers signed in with LINE register purchases and see their own
warranties. Everything is scoped to the company in the LINE session.
"""
import json
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models import Warranty, WarrantyStatus
from schemas import RequiredFields, WarrantyRegistration, WarrantyResponse, dump, is_valid_email, success
from image_utils import has_upload, store_image
from auth import CustomerContext, get_customer_context, ensure_owned
from timezone_utils import get_company_today
from warranty_lifecycle import (
    calculate_expiry, days_until_expiry, effective_status,
    time_until_expiry_text, warranty_start_date,
)
import repositories

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/warranties", tags=["warranties"])

WARRANTY_NOT_FOUND = "ไม่พบข้อมูลการรับประกัน"


def serialize_warranty(warranty: Warranty, today: date, **extra) -> dict:
    """Stored fields plus the status and remaining time as of ``today``."""
    status_now = effective_status(
        warranty.warranty_expiry, today, warranty.status, settings.EXPIRING_SOON_DAYS
    )
    return dump(
        WarrantyResponse,
        warranty,
        effectiveStatus=status_now.value,
        daysUntilExpiry=days_until_expiry(warranty.warranty_expiry, today),
        timeRemaining=time_until_expiry_text(warranty.warranty_expiry, today),
        **extra
    )


def parse_registration(raw: Optional[str]) -> WarrantyRegistration:
    if not raw:
        raise HTTPException(status_code=400, detail="ข้อมูลไม่ถูกต้อง")
    try:
        return WarrantyRegistration.model_validate(json.loads(raw))
    except (ValueError, ValidationError):
        raise HTTPException(status_code=400, detail="ข้อมูลไม่ถูกต้อง")


@router.get("")
async def list_my_warranties(
    customer: CustomerContext = Depends(get_customer_context),
    db: AsyncSession = Depends(get_db)
):
    warranties = await repositories.list_customer_warranties(db, customer.company_id, customer.customer_id)
    today = get_company_today(customer.company.timezone)
    return success([serialize_warranty(w, today) for w in warranties])


@router.post("", status_code=status.HTTP_201_CREATED)
async def register_warranty(
    warranty_data: Optional[str] = Form(None, alias="warrantyData"),
    receipt: Optional[UploadFile] = File(None),
    customer: CustomerContext = Depends(get_customer_context),
    db: AsyncSession = Depends(get_db)
):
    """
    Register a purchase.

    The product's requiredFields decide which of serial number, purchase
    location and receipt image must be present. Expiry is always computed
    here from the purchase date and the product's warranty period.
    """
    data = parse_registration(warranty_data)

    customer_row = await repositories.get_customer(db, customer.company_id, customer.customer_id)
    if not customer_row:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="กรุณาเข้าสู่ระบบด้วย LINE")

    product = await repositories.get_product(db, customer.company_id, data.product_id)
    if not product:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="ไม่พบสินค้า")
    if not product.is_active or product.brand is None or not product.brand.is_active:
        raise HTTPException(status_code=400, detail="สินค้านี้ไม่เปิดให้ลงทะเบียน")

    customer_name = data.customer_name.strip()
    phone = data.phone.strip()
    if not customer_name or not phone:
        raise HTTPException(status_code=400, detail="กรุณากรอกข้อมูลให้ครบถ้วน")

    email = (data.email or "").strip()
    if email and not is_valid_email(email):
        raise HTTPException(status_code=400, detail="รูปแบบอีเมลไม่ถูกต้อง")

    required = RequiredFields.model_validate(product.required_fields or {})
    serial_number = (data.serial_number or "").strip()
    purchase_location = (data.purchase_location or "").strip()
    if required.serial_number and not serial_number:
        raise HTTPException(status_code=400, detail="กรุณากรอกหมายเลขเครื่อง (Serial Number)")
    if required.purchase_location and not purchase_location:
        raise HTTPException(status_code=400, detail="กรุณากรอกสถานที่ซื้อ")
    if required.receipt_image and not has_upload(receipt):
        raise HTTPException(status_code=400, detail="กรุณาแนบรูปใบเสร็จ")

    today = get_company_today(customer.company.timezone)
    if data.purchase_date > today:
        raise HTTPException(status_code=400, detail="วันที่ซื้อต้องไม่เป็นวันในอนาคต")
    expiry = calculate_expiry(data.purchase_date, product.warranty_years, product.warranty_months)

    warnings = []
    receipt_url = None
    if has_upload(receipt):
        # A storage failure still registers the warranty, without the image
        stored = await store_image(receipt, customer.company_id, "receipts")
        receipt_url = stored.url
        warnings.extend(stored.warnings)

    warranty = Warranty(
        company_id=customer.company_id,
        product_id=product.id,
        customer_id=customer_row.id,
        customer_info={
            "name": customer_name,
            "lineDisplayName": customer_row.display_name or customer.session.get("displayName", ""),
            "phone": phone,
            "email": email,
            "address": data.address.strip(),
            "district": data.district.strip(),
            "amphoe": data.amphoe.strip(),
            "province": data.province.strip(),
            "postcode": data.postcode.strip(),
        },
        product_info={
            "brandName": product.brand.name,
            "productName": product.name,
            "model": product.model or "",
            "serialNumber": serial_number,
            "purchaseLocation": purchase_location,
        },
        purchase_date=data.purchase_date,
        warranty_start_date=warranty_start_date(data.purchase_date),
        warranty_expiry=expiry,
        receipt_image=receipt_url,
        status=WarrantyStatus.ACTIVE,
        notes=(data.notes or "").strip()
    )
    db.add(warranty)
    await db.commit()
    await db.refresh(warranty)

    logger.info(
        f"Warranty {warranty.id} registered for product {product.id} by customer {customer_row.id} "
        f"(company {customer.company_id}), expires {expiry.isoformat()}"
    )
    return success(serialize_warranty(warranty, today), "ลงทะเบียนประกันสำเร็จ", warnings)


@router.get("/{warranty_id}")
async def get_my_warranty(
    warranty_id: int,
    customer: CustomerContext = Depends(get_customer_context),
    db: AsyncSession = Depends(get_db)
):
    warranty = await repositories.get_warranty(db, customer.company_id, warranty_id)
    if not warranty:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=WARRANTY_NOT_FOUND)
    ensure_owned(warranty.customer_id, customer.customer_id)

    today = get_company_today(customer.company.timezone)
    return success(serialize_warranty(warranty, today))
