"""
Passwords, session cookies and the authorization dependencies used by routes.

Two independent cookie sessions:
  - ``auth-session``: staff of a company (email + password), 7 days
  - ``line-session``: customers signed in with LINE, 30 days

Both cookies hold a JSON payload signed as a JWT, so nothing is stored
server side and logout just clears the cookie.
"""
import enum
import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

from fastapi import Depends, HTTPException, Request, Response, status
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models import Company, User, UserRole
from tenancy import RequestContext, resolve_request_tenant
import repositories

logger = logging.getLogger(__name__)

ADMIN_SESSION_COOKIE = "auth-session"
CUSTOMER_SESSION_COOKIE = "line-session"
TENANT_COOKIE = "tenant"
OAUTH_STATE_COOKIE = "line-oauth-state"
OAUTH_STATE_MAX_AGE = 10 * 60

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# ==================== PASSWORDS ====================

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # Malformed hash in the database
        return False


def get_password_hash(password: str) -> str:
    """Hash a password"""
    return pwd_context.hash(password)


def generate_password(length: int = 8) -> str:
    """Random password with at least one lowercase, uppercase and digit"""
    alphabet = string.ascii_letters + string.digits
    while True:
        password = "".join(secrets.choice(alphabet) for _ in range(length))
        if (any(c.islower() for c in password)
                and any(c.isupper() for c in password)
                and any(c.isdigit() for c in password)):
            return password


def check_login_password(user: User, password: str) -> Tuple[bool, bool]:
    """
    Check a login password against either storage format.

    Returns (ok, migrated). A legacy plaintext match is upgraded in place:
    password_hash is set and the plaintext column cleared. The caller commits.
    """
    if user.password_hash:
        return verify_password(password, user.password_hash), False

    if user.password and secrets.compare_digest(user.password.encode(), password.encode()):
        user.password_hash = get_password_hash(password)
        user.password = None
        logger.info(f"Migrated plaintext password to bcrypt for user {user.id}")
        return True, True

    return False, False


# ==================== SESSION COOKIES ====================

def encode_session(payload: dict, days: int) -> str:
    to_encode = dict(payload)
    to_encode["exp"] = datetime.utcnow() + timedelta(days=days)
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_session(token: Optional[str]) -> Optional[dict]:
    """Payload of a valid, unexpired cookie value; None for anything else."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    payload.pop("exp", None)
    return payload


def cookie_domain() -> Optional[str]:
    """Wildcard parent domain in production so one cookie covers every tenant subdomain."""
    if settings.is_production:
        return f".{settings.APP_DOMAIN}"
    return None


def _set_cookie(response: Response, name: str, value: str, max_age: int, httponly: bool = True) -> None:
    response.set_cookie(
        key=name,
        value=value,
        max_age=max_age,
        path="/",
        domain=cookie_domain(),
        secure=settings.is_production,
        httponly=httponly,
        samesite="lax",
    )


def _clear_cookie(response: Response, name: str) -> None:
    response.delete_cookie(key=name, path="/", domain=cookie_domain())


def _days(days: int) -> int:
    return days * 24 * 60 * 60


def admin_session_payload(user: User, company: Company) -> dict:
    return {
        "userId": user.id,
        "companyId": company.id,
        "email": user.email,
        "name": user.name,
        "role": UserRole(user.role).value,
        "tenant": company.slug,
    }


def set_admin_session(response: Response, user: User, company: Company) -> dict:
    payload = admin_session_payload(user, company)
    _set_cookie(response, ADMIN_SESSION_COOKIE, encode_session(payload, settings.ADMIN_SESSION_DAYS), _days(settings.ADMIN_SESSION_DAYS))
    # Readable by the frontend for building tenant links
    _set_cookie(response, TENANT_COOKIE, company.slug, _days(settings.ADMIN_SESSION_DAYS), httponly=False)
    return payload


def clear_admin_session(response: Response) -> None:
    _clear_cookie(response, ADMIN_SESSION_COOKIE)
    _clear_cookie(response, TENANT_COOKIE)


def set_customer_session(response: Response, payload: dict) -> None:
    _set_cookie(response, CUSTOMER_SESSION_COOKIE, encode_session(payload, settings.CUSTOMER_SESSION_DAYS), _days(settings.CUSTOMER_SESSION_DAYS))


def clear_customer_session(response: Response) -> None:
    _clear_cookie(response, CUSTOMER_SESSION_COOKIE)


def set_oauth_state(response: Response, nonce: str) -> None:
    _set_cookie(response, OAUTH_STATE_COOKIE, nonce, OAUTH_STATE_MAX_AGE)


def clear_oauth_state(response: Response) -> None:
    _clear_cookie(response, OAUTH_STATE_COOKIE)


# ==================== DEPENDENCIES ====================

@dataclass
class AdminContext:
    """Authenticated staff member and the company the session is bound to."""
    user: User
    company: Company

    @property
    def company_id(self) -> int:
        return self.company.id

    @property
    def role(self) -> UserRole:
        return UserRole(self.user.role)


@dataclass
class CustomerContext:
    """Customer signed in with LINE, bound to one company."""
    session: dict
    company: Company

    @property
    def customer_id(self) -> int:
        return self.session["customerId"]

    @property
    def company_id(self) -> int:
        return self.company.id


def ensure_session_tenant(session: dict, request: Request) -> None:
    """
    A session issued by company A must not be used on company B's URL.
    Requests without any tenant hint (plain API calls) are accepted.
    """
    request_tenant = resolve_request_tenant(RequestContext.from_request(request))
    if request_tenant and request_tenant != session.get("tenant"):
        logger.warning(
            f"Session for tenant '{session.get('tenant')}' used on tenant '{request_tenant}'"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="ไม่มีสิทธิ์เข้าถึงข้อมูลของบริษัทนี้"
        )


async def get_admin_context(
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> AdminContext:
    """Main dependency for every admin endpoint."""
    session = decode_session(request.cookies.get(ADMIN_SESSION_COOKIE))
    if not session or "userId" not in session or "companyId" not in session:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="กรุณาเข้าสู่ระบบ")

    ensure_session_tenant(session, request)

    company = await repositories.get_company(db, session["companyId"])
    if not company:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="กรุณาเข้าสู่ระบบ")
    if not company.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="บริษัทถูกระงับการใช้งาน")

    user = await repositories.get_user(db, company.id, session["userId"])
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="กรุณาเข้าสู่ระบบ")

    return AdminContext(user=user, company=company)


async def get_customer_context(
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> CustomerContext:
    session = decode_session(request.cookies.get(CUSTOMER_SESSION_COOKIE))
    if not session or "customerId" not in session or "companyId" not in session:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="กรุณาเข้าสู่ระบบด้วย LINE")

    ensure_session_tenant(session, request)

    company = await repositories.get_company(db, session["companyId"])
    if not company or not company.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="ไม่พบข้อมูลบริษัท")

    return CustomerContext(session=session, company=company)


def ensure_owned(resource_owner_id: int, owner_id: int) -> None:
    """
    Verify that a resource belongs to the caller (company or customer).
    Use this when a resource was fetched by ID from a wider scope than the caller.
    """
    if resource_owner_id != owner_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="ไม่พบข้อมูล"  # Don't reveal it exists in another company
        )


# =============================================================================
# ROLE-BASED ACCESS CONTROL
# =============================================================================

class Permission(str, enum.Enum):
    VIEW_DATA = "view_data"
    MANAGE_CATALOG = "manage_catalog"
    MANAGE_WARRANTIES = "manage_warranties"
    MANAGE_USERS = "manage_users"
    MANAGE_SETTINGS = "manage_settings"


ALL_PERMISSIONS = list(Permission)

# owner and admin carry identical rights; owner is only special in that
# the account cannot be deleted, deactivated or demoted
ROLE_PERMISSIONS = {
    UserRole.OWNER: ALL_PERMISSIONS,
    UserRole.ADMIN: ALL_PERMISSIONS,
    UserRole.MANAGER: [Permission.VIEW_DATA, Permission.MANAGE_CATALOG, Permission.MANAGE_WARRANTIES],
    UserRole.VIEWER: [Permission.VIEW_DATA],
}

PERMISSION_DENIED_MESSAGES = {
    Permission.MANAGE_CATALOG: "ไม่มีสิทธิ์แก้ไขข้อมูลสินค้า",
    Permission.MANAGE_WARRANTIES: "ไม่มีสิทธิ์แก้ไขข้อมูลการรับประกัน",
    Permission.MANAGE_USERS: "ไม่มีสิทธิ์จัดการผู้ใช้",
    Permission.MANAGE_SETTINGS: "ไม่มีสิทธิ์แก้ไขการตั้งค่า",
}


def has_permission(role: UserRole, permission: Permission) -> bool:
    return permission in ROLE_PERMISSIONS.get(UserRole(role), [])


def require_permission(permission: Permission):
    """
    Dependency factory for permission checks.

    Usage:
        @router.post("", ...)
        async def create_brand(admin: AdminContext = Depends(require_permission(Permission.MANAGE_CATALOG))):
            ...
    """
    async def checker(admin: AdminContext = Depends(get_admin_context)) -> AdminContext:
        if not has_permission(admin.role, permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=PERMISSION_DENIED_MESSAGES.get(permission, "ไม่มีสิทธิ์ดำเนินการ")
            )
        return admin
    return checker
