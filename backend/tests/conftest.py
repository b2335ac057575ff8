# WarrantyHub Test Suite - Shared Configuration and Fixtures
#
# This module provides:
# - Test database provisioning (ephemeral SQLite file, tables rebuilt per test)
# - Multi-tenant fixtures (companies, staff users, catalog, customers)
# - Session cookie helpers for staff and LINE customers
# - Fake object storage and test images
# - Failure message formatting

import io
import os
import tempfile
from datetime import date, datetime
from pathlib import Path
from typing import Optional

# Settings are read at import time, so the environment must be ready first
_TEST_DIR = tempfile.mkdtemp(prefix="warrantyhub-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{Path(_TEST_DIR) / 'test.sqlite'}"
os.environ["ENVIRONMENT"] = "development"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["APP_DOMAIN"] = "aoowarranty.com"
os.environ["APP_URL"] = "http://localhost:3000"
os.environ["R2_BUCKET_NAME"] = ""
os.environ["R2_PUBLIC_URL"] = ""
os.environ["LINE_CHANNEL_ID"] = "1234567890"
os.environ["LINE_CHANNEL_SECRET"] = "line-test-secret"
os.environ["SEED_DEMO_DATA"] = "false"

import httpx
import pytest
from PIL import Image

from database import Base, async_session_maker, engine
from models import (
    Brand, Company, Customer, DEFAULT_REQUIRED_FIELDS, Product, User, UserRole,
    Warranty, WarrantyStatus,
)
from auth import (
    ADMIN_SESSION_COOKIE, CUSTOMER_SESSION_COOKIE, admin_session_payload,
    encode_session, get_password_hash,
)
from warranty_lifecycle import calculate_expiry, warranty_start_date
from main import app
import image_utils

DEFAULT_PASSWORD = "Secret123"


# =============================================================================
# FAILURE MESSAGE HELPER
# =============================================================================

class TestFailure(AssertionError):
    """
    Assertion with a readable explanation.

    Structure:
    1. Scenario: What was being tested
    2. Expected: What should have happened
    3. Actual: What actually happened
    """

    __test__ = False

    def __init__(self, scenario: str, expected: str, actual: str, response: Optional[httpx.Response] = None):
        message = f"\nSCENARIO: {scenario}\nEXPECTED: {expected}\nACTUAL:   {actual}"
        if response is not None:
            message += f"\nRESPONSE: {response.status_code} {response.text[:500]}"
        super().__init__(message)


def assert_response(response: httpx.Response, expected_status: int, scenario: str) -> dict:
    """Check the status code and return the JSON body."""
    if response.status_code != expected_status:
        raise TestFailure(
            scenario=scenario,
            expected=f"HTTP {expected_status}",
            actual=f"HTTP {response.status_code}",
            response=response,
        )
    return response.json()


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture(autouse=True)
async def setup_database():
    """Fresh tables for every test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db():
    async with async_session_maker() as session:
        yield session


class Factory:
    """Creates committed rows directly in the database."""

    def __init__(self, session):
        self.db = session

    async def company(self, slug: str = "abc-shop", name: Optional[str] = None, **fields) -> Company:
        company = Company(
            slug=slug,
            name=name or slug.replace("-", " ").title(),
            email=fields.pop("email", f"contact@{slug.replace('-', '')}.com"),
            phone=fields.pop("phone", "02-000-0000"),
            timezone=fields.pop("timezone", "Asia/Bangkok"),
            is_active=fields.pop("is_active", True),
            **fields
        )
        self.db.add(company)
        await self.db.commit()
        return company

    async def user(
        self,
        company: Company,
        email: str,
        role: UserRole = UserRole.ADMIN,
        password: str = DEFAULT_PASSWORD,
        plaintext: bool = False,
        is_active: bool = True,
        name: Optional[str] = None,
    ) -> User:
        user = User(
            company_id=company.id,
            email=email,
            name=name or email.split("@")[0],
            role=role,
            password=password if plaintext else None,
            password_hash=None if plaintext else get_password_hash(password),
            is_active=is_active
        )
        self.db.add(user)
        await self.db.commit()
        return user

    async def brand(self, company: Company, name: str = "Samsung", is_active: bool = True) -> Brand:
        brand = Brand(company_id=company.id, name=name, description="", is_active=is_active)
        self.db.add(brand)
        await self.db.commit()
        return brand

    async def product(
        self,
        company: Company,
        brand: Brand,
        name: str = "ตู้เย็น",
        model: str = "RT38",
        years: int = 1,
        months: int = 0,
        required_fields: Optional[dict] = None,
        is_active: bool = True,
    ) -> Product:
        product = Product(
            company_id=company.id,
            brand_id=brand.id,
            name=name,
            model=model,
            warranty_years=years,
            warranty_months=months,
            required_fields=required_fields or dict(DEFAULT_REQUIRED_FIELDS),
            is_active=is_active
        )
        self.db.add(product)
        await self.db.commit()
        return product

    async def customer(self, company: Company, line_user_id: str = "U1234", display_name: str = "Somchai") -> Customer:
        customer = Customer(company_id=company.id, line_user_id=line_user_id, display_name=display_name)
        self.db.add(customer)
        await self.db.commit()
        return customer

    async def warranty(
        self,
        company: Company,
        product: Product,
        customer: Customer,
        purchase_date: date,
        status: WarrantyStatus = WarrantyStatus.ACTIVE,
        brand_name: str = "Samsung",
        registration_date: Optional[datetime] = None,
    ) -> Warranty:
        warranty = Warranty(
            company_id=company.id,
            product_id=product.id,
            customer_id=customer.id,
            customer_info={"name": "สมชาย ใจดี", "phone": "0812345678", "lineDisplayName": customer.display_name},
            product_info={"brandName": brand_name, "productName": product.name, "model": product.model},
            purchase_date=purchase_date,
            warranty_start_date=warranty_start_date(purchase_date),
            warranty_expiry=calculate_expiry(purchase_date, product.warranty_years, product.warranty_months),
            status=status,
            registration_date=registration_date or datetime.utcnow()
        )
        self.db.add(warranty)
        await self.db.commit()
        return warranty


@pytest.fixture
def factory(db) -> Factory:
    return Factory(db)


# =============================================================================
# MULTI-TENANT FIXTURES
# =============================================================================

@pytest.fixture
async def company_a(factory) -> Company:
    return await factory.company("abc-shop", "ABC Shop")


@pytest.fixture
async def company_b(factory) -> Company:
    return await factory.company("xyz-store", "XYZ Store")


@pytest.fixture
async def owner_a(factory, company_a) -> User:
    return await factory.user(company_a, "owner@abcshop.com", UserRole.OWNER)


@pytest.fixture
async def admin_b(factory, company_b) -> User:
    return await factory.user(company_b, "admin@xyzstore.com", UserRole.ADMIN)


# =============================================================================
# HTTP CLIENT & SESSIONS
# =============================================================================

@pytest.fixture
async def client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


def admin_cookie(user: User, company: Company) -> str:
    return encode_session(admin_session_payload(user, company), days=7)


def customer_cookie(customer: Customer, company: Company) -> str:
    return encode_session({
        "customerId": customer.id,
        "lineUserId": customer.line_user_id,
        "displayName": customer.display_name,
        "pictureUrl": "",
        "email": "",
        "companyId": company.id,
        "tenant": company.slug,
    }, days=30)


@pytest.fixture
def login_as(client):
    """Attach a staff session cookie to the shared client."""
    def _login(user: User, company: Company) -> httpx.AsyncClient:
        client.cookies.set(ADMIN_SESSION_COOKIE, admin_cookie(user, company))
        return client
    return _login


@pytest.fixture
def login_customer(client):
    """Attach a LINE customer session cookie to the shared client."""
    def _login(customer: Customer, company: Company) -> httpx.AsyncClient:
        client.cookies.set(CUSTOMER_SESSION_COOKIE, customer_cookie(customer, company))
        return client
    return _login


# =============================================================================
# STORAGE & IMAGES
# =============================================================================

def make_image(width: int = 200, height: int = 200, fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), (200, 30, 30)).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_image()


class FakeStorage(dict):
    """Objects by key; ``deleted`` lists every key removed, in order."""

    PUBLIC_URL = "https://cdn.example.com/"

    def __init__(self):
        super().__init__()
        self.deleted = []

    def url_for(self, key: str) -> str:
        return f"{self.PUBLIC_URL}{key}"


@pytest.fixture
def fake_storage(monkeypatch) -> FakeStorage:
    """Successful uploads and deletes against a dict instead of R2."""
    storage = FakeStorage()

    async def fake_upload(key: str, data: bytes, content_type: str = "image/jpeg") -> str:
        storage[key] = data
        return storage.url_for(key)

    async def fake_delete(key: str) -> None:
        storage.pop(key, None)
        storage.deleted.append(key)

    def fake_key(url):
        if not url or not url.startswith(FakeStorage.PUBLIC_URL):
            return None
        return url[len(FakeStorage.PUBLIC_URL):]

    monkeypatch.setattr(image_utils, "upload_object", fake_upload)
    monkeypatch.setattr(image_utils, "delete_object", fake_delete)
    monkeypatch.setattr(image_utils, "key_from_public_url", fake_key)
    return storage
