"""
LINE Login API Endpoints
Customers sign in with LINE before registering a warranty. The callback
URL is shared by all companies; the tenant comes back in the OAuth state.
"""
import logging
import secrets
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models import Customer
from schemas import success
from auth import (
    OAUTH_STATE_COOKIE, CustomerContext, get_customer_context,
    set_customer_session, clear_customer_session, set_oauth_state, clear_oauth_state,
)
from line_service import LineLoginError, line_service
from tenancy import RequestContext, absolute_url, clean_slug, resolve_request_tenant
import repositories

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth/line", tags=["line-auth"])


def tenant_url(path: str, tenant: Optional[str], error: Optional[str] = None) -> str:
    url = absolute_url(
        path, tenant,
        is_production=settings.is_production,
        app_domain=settings.APP_DOMAIN,
        dev_base_url=settings.APP_URL,
    )
    return f"{url}?error={error}" if error else url


def _redirect(url: str) -> RedirectResponse:
    response = RedirectResponse(url, status_code=status.HTTP_302_FOUND)
    clear_oauth_state(response)
    return response


async def upsert_customer(db: AsyncSession, company_id: int, profile: dict, email: str) -> Customer:
    """One customer row per (company, LINE user); profile fields refreshed on every login."""
    line_user_id = profile["userId"]
    customer = await repositories.get_customer_by_line_id(db, company_id, line_user_id)
    if customer is None:
        customer = Customer(company_id=company_id, line_user_id=line_user_id)
        db.add(customer)

    customer.display_name = profile.get("displayName") or ""
    customer.picture_url = profile.get("pictureUrl") or None
    if email:
        customer.email = email
    customer.last_login = datetime.utcnow()

    try:
        await db.commit()
    except IntegrityError:
        # Same user finishing two logins at once; the other request created the row
        await db.rollback()
        customer = await repositories.get_customer_by_line_id(db, company_id, line_user_id)
        if customer is None:
            raise
    await db.refresh(customer)
    return customer


@router.get("/login")
async def line_login(
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    tenant = resolve_request_tenant(RequestContext.from_request(request))
    if not tenant:
        raise HTTPException(status_code=400, detail="ไม่พบข้อมูลบริษัท")
    company = await repositories.get_active_company_by_slug(db, tenant)
    if not company:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="ไม่พบข้อมูลบริษัท")
    if not line_service.is_configured():
        logger.error("LINE Login requested but LINE_CHANNEL_ID/LINE_CHANNEL_SECRET are not set")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="ระบบ LINE Login ยังไม่พร้อมใช้งาน")

    nonce = secrets.token_urlsafe(16)
    response = RedirectResponse(line_service.authorize_url(tenant, nonce), status_code=status.HTTP_302_FOUND)
    set_oauth_state(response, nonce)
    return response


@router.get("/callback")
async def line_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """
    Finish LINE Login. Always answers with a redirect: the register page on
    success, the company home page with ``?error=`` otherwise.
    """
    tenant, _, nonce = (state or "").partition(":")
    tenant = clean_slug(tenant)
    if not tenant:
        return _redirect(tenant_url("/", None))

    if error:
        logger.warning(f"LINE Login returned error '{error}' for tenant {tenant}")
        return _redirect(tenant_url("/", tenant, "line_login_failed"))

    expected_nonce = request.cookies.get(OAUTH_STATE_COOKIE)
    if not code or not nonce or not expected_nonce or not secrets.compare_digest(nonce, expected_nonce):
        return _redirect(tenant_url("/", tenant, "invalid_request"))

    company = await repositories.get_active_company_by_slug(db, tenant)
    if not company:
        return _redirect(tenant_url("/", None))

    try:
        token_data = await line_service.exchange_code(code)
        profile = await line_service.get_profile(token_data["access_token"])
    except (LineLoginError, KeyError) as e:
        logger.error(f"LINE Login failed for tenant {tenant}: {e}")
        return _redirect(tenant_url("/", tenant, "authentication_failed"))

    email = line_service.email_from_id_token(token_data)
    customer = await upsert_customer(db, company.id, profile, email)

    response = _redirect(tenant_url("/register", tenant))
    set_customer_session(response, {
        "customerId": customer.id,
        "lineUserId": customer.line_user_id,
        "displayName": customer.display_name or "",
        "pictureUrl": customer.picture_url or "",
        "email": customer.email or "",
        "companyId": company.id,
        "tenant": company.slug,
    })
    logger.info(f"Customer {customer.id} signed in with LINE (company {company.id})")
    return response


@router.get("/me")
async def line_me(
    customer: CustomerContext = Depends(get_customer_context)
):
    session = customer.session
    return success(
        authenticated=True,
        customer={
            "id": session["customerId"],
            "lineUserId": session.get("lineUserId"),
            "displayName": session.get("displayName"),
            "pictureUrl": session.get("pictureUrl"),
            "email": session.get("email"),
        },
        company={
            "id": customer.company.id,
            "tenant": customer.company.slug,
            "name": customer.company.name,
        }
    )


@router.delete("/me")
async def line_logout(response: Response):
    clear_customer_session(response)
    return success(message="ออกจากระบบสำเร็จ")
