from pydantic import BaseModel, EmailStr, Field, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, Dict, Any
from datetime import datetime, date
from models import UserRole, WarrantyStatus, DEFAULT_REQUIRED_FIELDS


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys (the frontend contract), snake_case in Python."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


def dump(schema: type, obj: Any, **extra) -> Dict[str, Any]:
    """Serialize an ORM object through a response schema, camelCase and JSON-safe."""
    data = schema.model_validate(obj).model_dump(by_alias=True, mode="json")
    data.update(extra)
    return data


def success(data: Any = None, message: Optional[str] = None, warnings: Optional[list] = None, **extra) -> Dict[str, Any]:
    """{success, message?, data?, warnings?} envelope returned by every endpoint."""
    body: Dict[str, Any] = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    if warnings:
        body["warnings"] = list(warnings)
    body.update(extra)
    return body


def form_bool(value: Optional[str], default: Optional[bool] = None) -> Optional[bool]:
    """Multipart forms send booleans as text ("true", "false", "on", "1")."""
    if value is None or value == "":
        return default
    return str(value).strip().lower() in ("true", "1", "on", "yes")


def form_int(value: Optional[str], default: int = 0) -> int:
    """Raises ValueError for text that is not an integer."""
    if value is None or str(value).strip() == "":
        return default
    return int(str(value).strip())


_email_adapter = TypeAdapter(EmailStr)


def is_valid_email(value: Optional[str]) -> bool:
    try:
        _email_adapter.validate_python(value)
    except ValidationError:
        return False
    return True


# ==================== AUTH ====================

class LoginRequest(BaseModel):
    email: str
    password: str
    tenant: Optional[str] = None


class FindCompanyRequest(BaseModel):
    email: str


# ==================== COMPANIES ====================

class CompanyRegistration(CamelModel):
    """Parsed from the ``companyData`` JSON form field. Presence checks happen in the route."""
    name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    district: str = ""
    amphoe: str = ""
    province: str = ""
    postcode: str = ""
    website: str = ""
    slug: Optional[str] = None
    admin_name: str = ""
    admin_password: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def coerce_text(cls, value):
        if value is None:
            return value
        return str(value).strip()


class CompanyResponse(CamelModel):
    id: int
    slug: str
    name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    district: Optional[str] = None
    amphoe: Optional[str] = None
    province: Optional[str] = None
    postcode: Optional[str] = None
    website: Optional[str] = None
    logo_url: Optional[str] = None
    line_channel_id: Optional[str] = None
    timezone: str = "Asia/Bangkok"
    is_active: bool
    created_at: Optional[datetime] = None


class PublicCompanyResponse(CamelModel):
    """What customers may see about a company"""
    id: int
    slug: str
    name: str
    phone: Optional[str] = None
    email: str
    website: Optional[str] = None
    logo_url: Optional[str] = None


# ==================== USERS ====================

class UserCreate(CamelModel):
    email: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None
    password: Optional[str] = None


class UserUpdate(CamelModel):
    email: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None
    is_active: Optional[bool] = None


class ToggleActiveRequest(CamelModel):
    is_active: Optional[bool] = None


class UserResponse(CamelModel):
    id: int
    company_id: int
    email: str
    name: str
    role: UserRole
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None


# ==================== BRANDS & PRODUCTS ====================

class BrandResponse(CamelModel):
    id: int
    company_id: int
    name: str
    description: Optional[str] = ""
    logo_url: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RequiredFields(CamelModel):
    serial_number: bool = DEFAULT_REQUIRED_FIELDS["serialNumber"]
    receipt_image: bool = DEFAULT_REQUIRED_FIELDS["receiptImage"]
    purchase_location: bool = DEFAULT_REQUIRED_FIELDS["purchaseLocation"]

    def as_stored(self) -> Dict[str, bool]:
        return self.model_dump(by_alias=True)


class ProductResponse(CamelModel):
    id: int
    company_id: int
    brand_id: int
    name: str
    model: str = ""
    description: Optional[str] = ""
    warranty_years: int
    warranty_months: int
    required_fields: RequiredFields = Field(default_factory=RequiredFields)
    image_url: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("required_fields", mode="before")
    @classmethod
    def fill_required_fields(cls, value):
        merged = dict(DEFAULT_REQUIRED_FIELDS)
        if isinstance(value, dict):
            merged.update(value)
        return merged


# ==================== WARRANTIES ====================

class WarrantyRegistration(CamelModel):
    """Parsed from the ``warrantyData`` JSON form field"""
    product_id: int
    customer_name: str = ""
    phone: str = ""
    email: Optional[str] = ""
    address: str = ""
    district: str = ""
    amphoe: str = ""
    province: str = ""
    postcode: str = ""
    serial_number: Optional[str] = ""
    purchase_location: Optional[str] = ""
    purchase_date: date
    notes: Optional[str] = ""


class WarrantyUpdate(CamelModel):
    status: Optional[str] = None  # validated against the transition table, not here
    notes: Optional[str] = None
    reason: Optional[str] = None


class StatusChangeResponse(CamelModel):
    id: int
    from_status: str
    to_status: str
    changed_by_user_id: Optional[int] = None
    changed_by_name: Optional[str] = None
    reason: Optional[str] = ""
    changed_at: Optional[datetime] = None


class WarrantyResponse(CamelModel):
    id: int
    company_id: int
    product_id: int
    customer_id: int
    customer_info: Dict[str, Any]
    product_info: Dict[str, Any]
    purchase_date: date
    warranty_start_date: date
    warranty_expiry: date
    receipt_image: Optional[str] = None
    status: WarrantyStatus
    notes: Optional[str] = ""
    registration_date: Optional[datetime] = None
    updated_at: Optional[datetime] = None


