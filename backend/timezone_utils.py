"""
Timezone utilities for company-aware date handling.

Warranty expiry is a calendar date in the company's local time, so "today"
must come from that timezone rather than the server's UTC clock. A warranty
expiring on the 15th is still valid at 01:00 on the 15th in Bangkok even
though UTC is still on the 14th.
"""
from datetime import datetime, date
import pytz

from config import settings


def get_company_timezone(company_timezone: str | None = None):
    """Return a pytz timezone, falling back to UTC for unknown names."""
    try:
        return pytz.timezone(company_timezone or settings.DEFAULT_TIMEZONE)
    except pytz.exceptions.UnknownTimeZoneError:
        return pytz.UTC


def get_company_today(company_timezone: str | None = None) -> date:
    """
    Get current date in the company's timezone.

    Args:
        company_timezone: Timezone string (e.g., "Asia/Bangkok")

    Returns:
        Current date in that timezone
    """
    tz = get_company_timezone(company_timezone)
    utc_now = datetime.now(pytz.UTC)
    return utc_now.astimezone(tz).date()


def utc_to_company_datetime(utc_datetime: datetime, company_timezone: str | None = None) -> datetime:
    """Convert a naive UTC datetime (as stored) to the company's local time."""
    tz = get_company_timezone(company_timezone)
    if utc_datetime.tzinfo is None:
        utc_datetime = utc_datetime.replace(tzinfo=pytz.UTC)
    return utc_datetime.astimezone(tz)

