from fastapi import FastAPI, Depends, HTTPException, status, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime
import logging

from config import settings
from database import get_db, init_db, async_session_maker
from models import UserRole
from schemas import LoginRequest, FindCompanyRequest, UserResponse, CompanyResponse, dump, success
from auth import (
    AdminContext, ROLE_PERMISSIONS, check_login_password, get_admin_context,
    set_admin_session, clear_admin_session,
)
from tenancy import RequestContext, TenantMiddleware, admin_path, describe_resolution, resolve_request_tenant, urls_for
from brands import router as brands_router
from products import router as products_router
from users import router as users_router
from companies import router as companies_router, public_router
from warranties import router as warranties_router
from admin_warranties import router as admin_warranties_router
from line_auth import router as line_auth_router
import repositories

logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)

app = FastAPI(title=f"{settings.APP_NAME} API", version="1.0.0")

# Setup logging
logger = logging.getLogger(__name__)

CORS_ORIGINS = settings.cors_origins_list

app.add_middleware(TenantMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
    max_age=3600,  # Cache preflight responses for 1 hour
)

INTERNAL_ERROR = "เกิดข้อผิดพลาดภายในระบบ"
INVALID_CREDENTIALS = "อีเมลหรือรหัสผ่านไม่ถูกต้อง"


# ==================== CUSTOM EXCEPTION HANDLERS ====================

def _with_cors(request: Request, response: JSONResponse) -> JSONResponse:
    """
    Error responses produced by handlers skip CORSMiddleware when raised from
    dependencies, so the headers are added here as well.
    """
    origin = request.headers.get('origin')
    if origin and origin in CORS_ORIGINS:
        response.headers['Access-Control-Allow-Origin'] = origin
        response.headers['Access-Control-Allow-Credentials'] = 'true'
    return response


@app.exception_handler(StarletteHTTPException)
async def custom_http_exception_handler(request: Request, exc: StarletteHTTPException):
    """
    Render every HTTPException as {success: false, message}.

    A dict detail is merged into the body, which is how routes attach extra
    fields such as productCount or a debug object.
    """
    if isinstance(exc.detail, dict):
        content = {"success": False, **exc.detail}
    else:
        content = {"success": False, "message": exc.detail}
    response = JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))
    return _with_cors(request, response)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Validation failed on {request.method} {request.url.path}: {exc.errors()}")
    response = JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "message": "ข้อมูลไม่ถูกต้อง",
            "errors": [
                {"field": ".".join(str(part) for part in error.get("loc", [])), "message": error.get("msg", "")}
                for error in exc.errors()
            ],
        }
    )
    return _with_cors(request, response)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """
    Catch-all exception handler for unexpected errors.
    Ensures CORS headers are present even on 500 errors.
    """
    logger.error(f"Unexpected error on {request.method} {request.url.path}: {exc}", exc_info=True)
    response = JSONResponse(
        status_code=500,
        content={"success": False, "message": INTERNAL_ERROR}
    )
    return _with_cors(request, response)

# ==================== END EXCEPTION HANDLERS ====================

app.include_router(companies_router)
app.include_router(public_router)
app.include_router(brands_router)
app.include_router(products_router)
app.include_router(users_router)
app.include_router(warranties_router)
app.include_router(admin_warranties_router)
app.include_router(line_auth_router)


@app.on_event("startup")
async def startup_event():
    """Initialize database on startup"""
    logger.info("=" * 60)
    logger.info(f"Starting {settings.APP_NAME} ({settings.ENVIRONMENT})...")
    logger.info("=" * 60)

    try:
        await init_db()
        logger.info("Database initialization successful!")
    except ConnectionRefusedError as e:
        logger.error("=" * 60)
        logger.error("CRITICAL: Database connection refused!")
        logger.error(f"Error: {e}")
        logger.error("Check DATABASE_URL and that the database server is reachable")
        logger.error("=" * 60)
        raise
    except Exception as e:
        logger.error("=" * 60)
        logger.error(f"CRITICAL: Application startup failed: {e}")
        logger.error("=" * 60)
        raise

    if settings.SEED_DEMO_DATA:
        from seed_demo_data import seed_demo_data_on_startup
        async with async_session_maker() as db:
            await seed_demo_data_on_startup(db)

    if not settings.R2_BUCKET_NAME or not settings.R2_PUBLIC_URL:
        logger.warning("⚠️ R2 storage is NOT configured - uploaded images will be skipped with a warning")
    if not settings.LINE_CHANNEL_ID or not settings.LINE_CHANNEL_SECRET:
        logger.warning("⚠️ LINE Login is NOT configured - customers cannot sign in")


@app.get("/health")
async def health_check():
    return {"status": "healthy", "app": settings.APP_NAME}


# ==================== AUTH ROUTES ====================

def _login_failed(status_code: int, message: str, ctx: RequestContext) -> HTTPException:
    """Outside production, failed logins explain how the tenant was resolved."""
    if settings.is_production:
        return HTTPException(status_code=status_code, detail=message)
    return HTTPException(
        status_code=status_code,
        detail={"message": message, "debug": describe_resolution(ctx)}
    )


def _permissions(role: UserRole) -> list:
    return [permission.value for permission in ROLE_PERMISSIONS.get(UserRole(role), [])]


async def _complete_login(db: AsyncSession, response: Response, user, company) -> dict:
    user.last_login = datetime.utcnow()
    # Also persists a plaintext password that check_login_password just upgraded
    await db.commit()
    await db.refresh(user)

    set_admin_session(response, user, company)
    logger.info(f"User {user.id} logged in to company {company.id} ({company.slug})")
    return {
        "user": dump(UserResponse, user),
        "company": dump(CompanyResponse, company),
        "permissions": _permissions(user.role),
        "redirectUrl": admin_path("", company.slug, settings.is_production),
        "adminUrl": urls_for(company.slug)["adminUrl"],
    }


@app.post("/api/auth/admin-login")
async def admin_login(
    login_data: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db)
):
    """
    Login for company staff.

    The company is taken from the request (x-tenant header, body ``tenant``,
    host, then referer). Unknown email and wrong password give the same answer.
    """
    ctx = RequestContext.from_request(request, body=login_data.model_dump())
    tenant = resolve_request_tenant(ctx)
    if not tenant:
        raise _login_failed(400, "ไม่พบข้อมูลบริษัท", ctx)

    company = await repositories.get_active_company_by_slug(db, tenant)
    if not company:
        raise _login_failed(status.HTTP_404_NOT_FOUND, "ไม่พบบริษัทนี้ในระบบ", ctx)

    if not login_data.email or not login_data.password:
        raise HTTPException(status_code=400, detail="กรุณากรอกอีเมลและรหัสผ่าน")

    user = await repositories.find_login_user(db, company.id, login_data.email)
    if not user:
        raise _login_failed(status.HTTP_401_UNAUTHORIZED, INVALID_CREDENTIALS, ctx)

    ok, _ = check_login_password(user, login_data.password)
    if not ok:
        logger.info(f"Failed login for user {user.id} on company {company.id}")
        raise _login_failed(status.HTTP_401_UNAUTHORIZED, INVALID_CREDENTIALS, ctx)

    data = await _complete_login(db, response, user, company)
    return success(data, "เข้าสู่ระบบสำเร็จ")


@app.post("/api/auth/direct-login")
async def direct_login(
    login_data: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db)
):
    """Login from the main site, where no company is known yet."""
    if not login_data.email or not login_data.password:
        raise HTTPException(status_code=400, detail="กรุณากรอกอีเมลและรหัสผ่าน")

    # Only accounts whose password matches are revealed
    accounts = [
        (user, company)
        for user, company in await repositories.find_users_by_email(db, login_data.email)
        if user.is_active and company.is_active and check_login_password(user, login_data.password)[0]
    ]
    if not accounts:
        logger.info(f"Failed direct login for {login_data.email.lower()}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_CREDENTIALS)
    if len(accounts) > 1:
        raise HTTPException(
            status_code=400,
            detail={
                "message": "อีเมลนี้ใช้งานในหลายบริษัท กรุณาเข้าสู่ระบบผ่านหน้าของบริษัท",
                "companies": [{"companySlug": c.slug, "companyName": c.name} for _, c in accounts],
            }
        )

    user, company = accounts[0]
    data = await _complete_login(db, response, user, company)
    data["redirectUrl"] = data["adminUrl"]
    return success(data, "เข้าสู่ระบบสำเร็จ")


@app.post("/api/auth/find-company")
async def find_company(
    request_data: FindCompanyRequest,
    db: AsyncSession = Depends(get_db)
):
    """Which company login page an email belongs to."""
    accounts = [
        (user, company)
        for user, company in await repositories.find_users_by_email(db, request_data.email)
        if user.is_active
    ]
    if not accounts:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="ไม่พบบัญชีผู้ใช้นี้ในระบบ")

    active = [company for _, company in accounts if company.is_active]
    if not active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="บริษัทถูกระงับการใช้งาน")

    first = active[0]
    return success({
        "companySlug": first.slug,
        "companyName": first.name,
        "loginUrl": urls_for(first.slug)["loginUrl"],
        "companies": [{"companySlug": c.slug, "companyName": c.name} for c in active],
    })


@app.get("/api/auth/me")
async def get_me(
    admin: AdminContext = Depends(get_admin_context)
):
    return success({
        "user": dump(UserResponse, admin.user),
        "company": dump(CompanyResponse, admin.company),
        "permissions": _permissions(admin.role),
    })


@app.delete("/api/auth/me")
async def logout(response: Response):
    clear_admin_session(response)
    return success(message="ออกจากระบบสำเร็จ")
