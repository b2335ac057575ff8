"""
User Management API Endpoints
Staff accounts of the current company. Only owner/admin may manage users.
The owner account is protected: it cannot be deleted, deactivated or demoted.
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models import User, UserRole
from schemas import UserCreate, UserUpdate, ToggleActiveRequest, UserResponse, dump, is_valid_email, success
from auth import AdminContext, Permission, require_permission, get_password_hash, generate_password
import repositories

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

DUPLICATE_EMAIL = "อีเมลนี้มีผู้ใช้งานแล้ว"
USER_NOT_FOUND = "ไม่พบผู้ใช้"

# Roles that can be handed out from the users screen; the owner comes from company registration
ASSIGNABLE_ROLES = {UserRole.ADMIN, UserRole.MANAGER, UserRole.VIEWER}

manage_users = require_permission(Permission.MANAGE_USERS)


def parse_assignable_role(value: str) -> UserRole:
    try:
        role = UserRole(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="บทบาทไม่ถูกต้อง")
    if role not in ASSIGNABLE_ROLES:
        raise HTTPException(status_code=400, detail="ไม่สามารถกำหนดบทบาทเจ้าของระบบได้")
    return role


async def _get_user_or_404(db: AsyncSession, admin: AdminContext, user_id: int) -> User:
    user = await repositories.get_user(db, admin.company_id, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=USER_NOT_FOUND)
    return user


@router.get("")
async def list_users(
    admin: AdminContext = Depends(manage_users),
    db: AsyncSession = Depends(get_db)
):
    users = await repositories.list_users(db, admin.company_id)
    return success([dump(UserResponse, user) for user in users])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    admin: AdminContext = Depends(manage_users),
    db: AsyncSession = Depends(get_db)
):
    """
    Add a staff account. When no password is supplied one is generated and
    returned once in the response.
    """
    email = (user_data.email or "").strip().lower()
    name = (user_data.name or "").strip()
    if not email or not name or not user_data.role:
        raise HTTPException(status_code=400, detail="กรุณากรอกข้อมูลให้ครบถ้วน")
    if not is_valid_email(email):
        raise HTTPException(status_code=400, detail="รูปแบบอีเมลไม่ถูกต้อง")
    role = parse_assignable_role(user_data.role)

    if await repositories.user_email_exists(db, admin.company_id, email):
        raise HTTPException(status_code=400, detail=DUPLICATE_EMAIL)

    generated = not user_data.password
    password = user_data.password or generate_password()
    if len(password) < 6:
        raise HTTPException(status_code=400, detail="รหัสผ่านต้องมีอย่างน้อย 6 ตัวอักษร")

    user = User(
        company_id=admin.company_id,
        email=email,
        name=name,
        role=role,
        password_hash=get_password_hash(password),
        is_active=True,
        created_by=admin.user.id
    )
    db.add(user)
    await repositories.commit_unique(db, DUPLICATE_EMAIL)
    await db.refresh(user)

    logger.info(f"User {user.id} ({role.value}) added to company {admin.company_id} by user {admin.user.id}")
    data = dump(UserResponse, user)
    if generated:
        data["generatedPassword"] = password
    return success(data, "เพิ่มผู้ใช้สำเร็จ")


@router.get("/{user_id}")
async def get_user(
    user_id: int,
    admin: AdminContext = Depends(manage_users),
    db: AsyncSession = Depends(get_db)
):
    user = await _get_user_or_404(db, admin, user_id)
    return success(dump(UserResponse, user))


@router.put("/{user_id}")
async def update_user(
    user_id: int,
    user_data: UserUpdate,
    admin: AdminContext = Depends(manage_users),
    db: AsyncSession = Depends(get_db)
):
    user = await _get_user_or_404(db, admin, user_id)
    is_owner = UserRole(user.role) == UserRole.OWNER

    if user_data.role is not None and user_data.role != UserRole(user.role).value:
        if is_owner:
            raise HTTPException(status_code=400, detail="ไม่สามารถเปลี่ยนบทบาทของเจ้าของระบบได้")
        user.role = parse_assignable_role(user_data.role)

    if user_data.name is not None:
        name = user_data.name.strip()
        if not name:
            raise HTTPException(status_code=400, detail="กรุณากรอกข้อมูลให้ครบถ้วน")
        user.name = name

    if user_data.email is not None:
        email = user_data.email.strip().lower()
        if not is_valid_email(email):
            raise HTTPException(status_code=400, detail="รูปแบบอีเมลไม่ถูกต้อง")
        if await repositories.user_email_exists(db, admin.company_id, email, exclude_id=user.id):
            raise HTTPException(status_code=400, detail=DUPLICATE_EMAIL)
        user.email = email

    if user_data.is_active is not None and user_data.is_active != user.is_active:
        if user.id == admin.user.id:
            raise HTTPException(status_code=400, detail="ไม่สามารถเปลี่ยนสถานะของตัวเองได้")
        if is_owner and not user_data.is_active:
            raise HTTPException(status_code=400, detail="ไม่สามารถปิดการใช้งานบัญชีเจ้าของระบบได้")
        user.is_active = user_data.is_active

    await repositories.commit_unique(db, DUPLICATE_EMAIL)
    await db.refresh(user)
    return success(dump(UserResponse, user), "แก้ไขข้อมูลสำเร็จ")


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    admin: AdminContext = Depends(manage_users),
    db: AsyncSession = Depends(get_db)
):
    if user_id == admin.user.id:
        raise HTTPException(status_code=400, detail="ไม่สามารถลบบัญชีของตัวเองได้")

    user = await _get_user_or_404(db, admin, user_id)
    if UserRole(user.role) == UserRole.OWNER:
        raise HTTPException(status_code=400, detail="ไม่สามารถลบบัญชีเจ้าของระบบได้")

    await db.delete(user)
    await db.commit()

    logger.info(f"User {user_id} removed from company {admin.company_id} by user {admin.user.id}")
    return success(message="ลบผู้ใช้สำเร็จ")


@router.post("/{user_id}/reset-password")
async def reset_user_password(
    user_id: int,
    admin: AdminContext = Depends(manage_users),
    db: AsyncSession = Depends(get_db)
):
    """Generate a new password, store its hash and return it once."""
    user = await _get_user_or_404(db, admin, user_id)

    new_password = generate_password()
    user.password_hash = get_password_hash(new_password)
    user.password = None
    user.password_reset_at = datetime.utcnow()
    user.password_reset_by = admin.user.id
    await db.commit()

    logger.info(f"Password reset for user {user.id} by user {admin.user.id}")
    return success({"newPassword": new_password}, "รีเซ็ตรหัสผ่านสำเร็จ")


@router.put("/{user_id}/toggle-active")
async def toggle_user_active(
    user_id: int,
    toggle: Optional[ToggleActiveRequest] = None,
    admin: AdminContext = Depends(manage_users),
    db: AsyncSession = Depends(get_db)
):
    """Set isActive, or flip it when the body does not say which way."""
    if user_id == admin.user.id:
        raise HTTPException(status_code=400, detail="ไม่สามารถเปลี่ยนสถานะของตัวเองได้")

    user = await _get_user_or_404(db, admin, user_id)
    requested = toggle.is_active if toggle else None
    new_state = (not user.is_active) if requested is None else requested

    if UserRole(user.role) == UserRole.OWNER and not new_state:
        raise HTTPException(status_code=400, detail="ไม่สามารถปิดการใช้งานบัญชีเจ้าของระบบได้")

    user.is_active = new_state
    await db.commit()
    await db.refresh(user)

    message = "เปิดใช้งานผู้ใช้สำเร็จ" if new_state else "ปิดใช้งานผู้ใช้สำเร็จ"
    return success(dump(UserResponse, user), message)
