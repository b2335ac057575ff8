"""
Warranty date arithmetic and status rules.

Coverage starts the day after purchase and the expiry date is the last
covered day (inclusive). Only ``active`` and ``claimed`` are stored;
``expiring`` and ``expired`` are derived from the expiry date and the
company's current date every time a warranty is displayed.
"""
import calendar
import enum
from datetime import date, timedelta
from typing import Iterable, Optional

from models import WarrantyStatus

EXPIRING_SOON_DAYS = 30
MAX_WARRANTY_MONTHS = 11


class EffectiveStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRING = "expiring"
    EXPIRED = "expired"
    CLAIMED = "claimed"


class InvalidTransition(ValueError):
    """Raised when a requested status change is not allowed from the current state."""

    def __init__(self, current: EffectiveStatus, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move warranty from {current.value} to {target}")


# Effective state -> stored states an admin may move the warranty to.
# claimed is terminal; expired is derived and can never be set by hand.
ALLOWED_TRANSITIONS = {
    EffectiveStatus.ACTIVE: {WarrantyStatus.CLAIMED},
    EffectiveStatus.EXPIRING: {WarrantyStatus.CLAIMED},
    EffectiveStatus.EXPIRED: set(),
    EffectiveStatus.CLAIMED: set(),
}


def add_months(value: date, months: int) -> date:
    """Add calendar months, clamping the day to the end of the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def add_years(value: date, years: int) -> date:
    return add_months(value, years * 12)


def warranty_start_date(purchase_date: date) -> date:
    return purchase_date + timedelta(days=1)


def calculate_expiry(purchase_date: date, years: int, months: int = 0) -> date:
    """
    Compute the last day of coverage.

    Example: bought 2024-01-15 with a 1 year warranty. Coverage starts
    2024-01-16, one year later is 2025-01-16, so the last covered day is
    2025-01-15.

    Years are added before months, each step clamping to month end.
    """
    if years < 0:
        raise ValueError("warranty years must be >= 0")
    if not 0 <= months <= MAX_WARRANTY_MONTHS:
        raise ValueError("warranty months must be between 0 and 11")

    start = warranty_start_date(purchase_date)
    end = add_months(add_years(start, years), months)
    return end - timedelta(days=1)


def days_until_expiry(expiry: date, today: date) -> int:
    """Negative once the warranty has expired."""
    return (expiry - today).days


def time_until_expiry_text(expiry: date, today: date) -> str:
    """Remaining coverage as shown to customers, e.g. "1 ปี 2 เดือน 3 วัน"."""
    if expiry < today:
        return "หมดอายุแล้ว"
    if expiry == today:
        return "วันนี้"

    months_total = (expiry.year - today.year) * 12 + expiry.month - today.month
    if expiry.day < today.day:
        months_total -= 1
    years, months = divmod(months_total, 12)
    days = (expiry - add_months(today, months_total)).days

    parts = []
    if years > 0:
        parts.append(f"{years} ปี")
    if months > 0:
        parts.append(f"{months} เดือน")
    if days > 0 or not parts:
        parts.append(f"{days} วัน")
    return " ".join(parts)


def effective_status(
    expiry: date,
    today: date,
    stored_status: WarrantyStatus | str = WarrantyStatus.ACTIVE,
    expiring_days: int = EXPIRING_SOON_DAYS,
) -> EffectiveStatus:
    if WarrantyStatus(stored_status) == WarrantyStatus.CLAIMED:
        return EffectiveStatus.CLAIMED
    if today > expiry:
        return EffectiveStatus.EXPIRED
    if days_until_expiry(expiry, today) <= expiring_days:
        return EffectiveStatus.EXPIRING
    return EffectiveStatus.ACTIVE


def plan_transition(
    stored_status: WarrantyStatus | str,
    expiry: date,
    today: date,
    target: WarrantyStatus | str,
) -> Optional[WarrantyStatus]:
    """
    Validate a manual status change.

    Returns the stored status to write, or None when the request is a no-op
    (the warranty already has that stored status). Raises InvalidTransition
    for anything the state table does not allow.
    """
    current = effective_status(expiry, today, stored_status)
    try:
        target_status = WarrantyStatus(target)
    except ValueError:
        raise InvalidTransition(current, str(target))

    if target_status == WarrantyStatus(stored_status):
        return None
    if target_status not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(current, target_status.value)
    return target_status


def summarize(warranties: Iterable, today: date, expiring_days: int = EXPIRING_SOON_DAYS) -> dict:
    """
    Dashboard counters. ``expiringSoon`` is a subset of ``active``:
    a warranty in its last 30 days is still active.
    """
    stats = {"total": 0, "active": 0, "expired": 0, "claimed": 0, "expiringSoon": 0}
    for warranty in warranties:
        stats["total"] += 1
        status = effective_status(warranty.warranty_expiry, today, warranty.status, expiring_days)
        if status == EffectiveStatus.CLAIMED:
            stats["claimed"] += 1
        elif status == EffectiveStatus.EXPIRED:
            stats["expired"] += 1
        else:
            stats["active"] += 1
            if status == EffectiveStatus.EXPIRING:
                stats["expiringSoon"] += 1
    return stats


def matches_status_filter(warranty, today: date, status_filter: str, expiring_days: int = EXPIRING_SOON_DAYS) -> bool:
    """Admin list filter: all | active | expiring | expired | claimed"""
    if not status_filter or status_filter == "all":
        return True
    status = effective_status(warranty.warranty_expiry, today, warranty.status, expiring_days)
    if status_filter == "active":
        return status in (EffectiveStatus.ACTIVE, EffectiveStatus.EXPIRING)
    return status.value == status_filter
