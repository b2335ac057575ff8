"""
Excel export of warranty registrations (admin "download" button).

One sheet, Thai headers, one row per warranty, built with openpyxl and
returned as bytes so the route can stream it.
"""
from datetime import date, datetime
from io import BytesIO
from typing import Dict, Iterable, Optional

from openpyxl import Workbook
from openpyxl.styles import Font

from config import settings
from timezone_utils import utc_to_company_datetime
from warranty_lifecycle import EffectiveStatus, effective_status

SHEET_TITLE = "ข้อมูลการลงทะเบียน"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# (header, column width)
COLUMNS = [
    ("วันที่ลงทะเบียน", 18),
    ("ชื่อ-นามสกุล", 20),
    ("LINE User ID", 25),
    ("ชื่อ LINE", 15),
    ("เบอร์โทรศัพท์", 15),
    ("อีเมล", 25),
    ("ที่อยู่", 30),
    ("แขวง/ตำบล", 15),
    ("เขต/อำเภอ", 15),
    ("จังหวัด", 15),
    ("รหัสไปรษณีย์", 12),
    ("แบรนด์", 15),
    ("ชื่อสินค้า", 25),
    ("รุ่น", 15),
    ("Serial Number", 20),
    ("สถานที่ซื้อ", 20),
    ("วันที่ซื้อ", 12),
    ("วันหมดประกัน", 12),
    ("สถานะ", 12),
    ("หมายเหตุ", 25),
]

STATUS_LABELS = {
    EffectiveStatus.ACTIVE: "ใช้งานได้",
    EffectiveStatus.EXPIRING: "ใกล้หมดอายุ",
    EffectiveStatus.EXPIRED: "หมดอายุ",
    EffectiveStatus.CLAIMED: "เคลมแล้ว",
}


def _text(value) -> str:
    return value if value else "-"


def _date(value: Optional[date]) -> str:
    return value.strftime("%d/%m/%Y") if value else ""


def export_filename(slug: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    return f"{slug}_warranties_{now.strftime('%Y%m%d_%H%M%S')}.xlsx"


def warranty_row(warranty, today: date, timezone: str, line_user_id: str = "") -> list:
    customer = warranty.customer_info or {}
    product = warranty.product_info or {}
    registered = ""
    if warranty.registration_date:
        registered = utc_to_company_datetime(warranty.registration_date, timezone).strftime("%d/%m/%Y %H:%M")
    status = effective_status(warranty.warranty_expiry, today, warranty.status, settings.EXPIRING_SOON_DAYS)

    return [
        registered,
        customer.get("name", ""),
        line_user_id,
        customer.get("lineDisplayName", ""),
        customer.get("phone", ""),
        _text(customer.get("email")),
        customer.get("address", ""),
        customer.get("district", ""),
        customer.get("amphoe", ""),
        customer.get("province", ""),
        customer.get("postcode", ""),
        product.get("brandName", ""),
        product.get("productName", ""),
        _text(product.get("model")),
        _text(product.get("serialNumber")),
        _text(product.get("purchaseLocation")),
        _date(warranty.purchase_date),
        _date(warranty.warranty_expiry),
        STATUS_LABELS[status],
        _text(warranty.notes),
    ]


def build_warranty_workbook(
    warranties: Iterable,
    today: date,
    timezone: str,
    line_user_ids: Optional[Dict[int, str]] = None,
) -> bytes:
    line_user_ids = line_user_ids or {}

    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_TITLE

    ws.append([header for header, _ in COLUMNS])
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for index, (_, width) in enumerate(COLUMNS, start=1):
        ws.column_dimensions[ws.cell(row=1, column=index).column_letter].width = width
    ws.freeze_panes = "A2"

    for warranty in warranties:
        ws.append(warranty_row(warranty, today, timezone, line_user_ids.get(warranty.customer_id, "")))

    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()
