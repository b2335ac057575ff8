"""
Admin Warranty API Endpoints
Registrations of the current company as seen from the admin panel:
filtered list, dashboard counters, Excel export, detail with status history
and the manual claim transition.
"""
import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models import WarrantyStatus, WarrantyStatusChange
from schemas import StatusChangeResponse, WarrantyUpdate, dump, success
from auth import AdminContext, Permission, get_admin_context, require_permission
from timezone_utils import get_company_today, utc_to_company_datetime
from warranty_lifecycle import InvalidTransition, matches_status_filter, plan_transition, summarize
from exports import XLSX_MEDIA_TYPE, build_warranty_workbook, export_filename
from warranties import WARRANTY_NOT_FOUND, serialize_warranty
import repositories

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/warranties", tags=["admin-warranties"])

STATUS_FILTERS = {"all", "active", "expiring", "expired", "claimed"}
DEFAULT_LIST_LIMIT = 200
MAX_LIST_LIMIT = 1000


def _check_status_filter(status_filter: Optional[str]) -> str:
    value = (status_filter or "all").strip().lower()
    if value not in STATUS_FILTERS:
        raise HTTPException(status_code=400, detail="สถานะไม่ถูกต้อง")
    return value


async def _filtered_warranties(
    db: AsyncSession,
    admin: AdminContext,
    today: date,
    status_filter: str,
    brand: Optional[str],
) -> List:
    warranties = await repositories.list_company_warranties(db, admin.company_id, brand_name=brand)
    return [
        w for w in warranties
        if matches_status_filter(w, today, status_filter, settings.EXPIRING_SOON_DAYS)
    ]


def _registered_between(warranty, timezone: str, date_from: Optional[date], date_to: Optional[date]) -> bool:
    if not date_from and not date_to:
        return True
    if warranty.registration_date is None:
        return False
    registered = utc_to_company_datetime(warranty.registration_date, timezone).date()
    if date_from and registered < date_from:
        return False
    if date_to and registered > date_to:
        return False
    return True


@router.get("")
async def list_warranties(
    status_filter: Optional[str] = Query("all", alias="status"),
    brand: Optional[str] = Query(None),
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    admin: AdminContext = Depends(get_admin_context),
    db: AsyncSession = Depends(get_db)
):
    """Newest first. ``total`` counts every match, ``data`` holds at most ``limit`` of them."""
    status_filter = _check_status_filter(status_filter)
    today = get_company_today(admin.company.timezone)
    warranties = await _filtered_warranties(db, admin, today, status_filter, brand)
    return success(
        [serialize_warranty(w, today) for w in warranties[:limit]],
        total=len(warranties)
    )


@router.get("/stats")
async def get_warranty_stats(
    admin: AdminContext = Depends(get_admin_context),
    db: AsyncSession = Depends(get_db)
):
    warranties = await repositories.list_company_warranties(db, admin.company_id)
    today = get_company_today(admin.company.timezone)
    return success(summarize(warranties, today, settings.EXPIRING_SOON_DAYS))


@router.get("/export")
async def export_warranties(
    status_filter: Optional[str] = Query("all", alias="status"),
    brand: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None, alias="dateFrom"),
    date_to: Optional[date] = Query(None, alias="dateTo"),
    admin: AdminContext = Depends(get_admin_context),
    db: AsyncSession = Depends(get_db)
):
    """Download the filtered registrations as an .xlsx file."""
    status_filter = _check_status_filter(status_filter)
    timezone = admin.company.timezone
    today = get_company_today(timezone)

    warranties = await _filtered_warranties(db, admin, today, status_filter, brand)
    warranties = [w for w in warranties if _registered_between(w, timezone, date_from, date_to)]
    line_ids = await repositories.line_user_ids(db, admin.company_id, [w.customer_id for w in warranties])

    content = build_warranty_workbook(warranties, today, timezone, line_ids)
    filename = export_filename(admin.company.slug)
    logger.info(f"Exported {len(warranties)} warranties for company {admin.company_id} by user {admin.user.id}")
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


async def _detail(db: AsyncSession, admin: AdminContext, warranty, today: date) -> dict:
    history = await repositories.list_status_changes(db, admin.company_id, warranty.id)
    line_ids = await repositories.line_user_ids(db, admin.company_id, [warranty.customer_id])
    return serialize_warranty(
        warranty,
        today,
        lineUserId=line_ids.get(warranty.customer_id, ""),
        statusHistory=[dump(StatusChangeResponse, change) for change in history]
    )


@router.get("/{warranty_id}")
async def get_warranty(
    warranty_id: int,
    admin: AdminContext = Depends(get_admin_context),
    db: AsyncSession = Depends(get_db)
):
    warranty = await repositories.get_warranty(db, admin.company_id, warranty_id)
    if not warranty:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=WARRANTY_NOT_FOUND)
    today = get_company_today(admin.company.timezone)
    return success(await _detail(db, admin, warranty, today))


@router.put("/{warranty_id}")
async def update_warranty(
    warranty_id: int,
    update: WarrantyUpdate,
    admin: AdminContext = Depends(require_permission(Permission.MANAGE_WARRANTIES)),
    db: AsyncSession = Depends(get_db)
):
    """
    Change notes and/or mark the warranty claimed.

    Customer and product snapshots are never touched. A status change is
    checked against the transition table and written to the history.
    """
    warranty = await repositories.get_warranty(db, admin.company_id, warranty_id)
    if not warranty:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=WARRANTY_NOT_FOUND)

    today = get_company_today(admin.company.timezone)

    if update.status is not None:
        try:
            target = plan_transition(warranty.status, warranty.warranty_expiry, today, update.status)
        except InvalidTransition as e:
            logger.info(f"Rejected status change on warranty {warranty.id}: {e}")
            raise HTTPException(
                status_code=400,
                detail=f"ไม่สามารถเปลี่ยนสถานะจาก {e.current.value} เป็น {e.target} ได้"
            )

        if target is not None:
            previous = WarrantyStatus(warranty.status).value
            warranty.status = target
            db.add(WarrantyStatusChange(
                warranty_id=warranty.id,
                company_id=admin.company_id,
                from_status=previous,
                to_status=target.value,
                changed_by_user_id=admin.user.id,
                changed_by_name=admin.user.name,
                reason=(update.reason or "").strip()
            ))
            logger.info(f"Warranty {warranty.id} moved {previous} -> {target.value} by user {admin.user.id}")

    if update.notes is not None:
        warranty.notes = update.notes.strip()

    await db.commit()
    await db.refresh(warranty)
    return success(await _detail(db, admin, warranty, today), "อัพเดทข้อมูลสำเร็จ")
