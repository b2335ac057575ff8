from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean, Text, Date, JSON, Enum as SQLEnum, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from database import Base


class UserRole(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"  # same rights as owner, kept for accounts created before owner existed
    MANAGER = "manager"
    VIEWER = "viewer"


class WarrantyStatus(str, enum.Enum):
    """Stored warranty state. Expiry is derived from dates, see warranty_lifecycle."""
    ACTIVE = "active"
    EXPIRED = "expired"  # legacy rows only, new code never writes it
    CLAIMED = "claimed"


DEFAULT_REQUIRED_FIELDS = {
    "serialNumber": True,
    "receiptImage": True,
    "purchaseLocation": False,
}


class Company(Base):
    """A tenant. Resolved from the subdomain (production) or first path segment (development)."""
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(50), unique=True, nullable=False, index=True)  # abc-shop.aoowarranty.com
    name = Column(String(200), nullable=False)

    # Contact Information
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(30))
    address = Column(Text)
    district = Column(String(100))
    amphoe = Column(String(100))
    province = Column(String(100))
    postcode = Column(String(10))
    website = Column(String(255), nullable=True)
    logo_url = Column(String(500), nullable=True)

    line_channel_id = Column(String(100), nullable=True)
    timezone = Column(String(50), default="Asia/Bangkok", nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    users = relationship("User", back_populates="company", passive_deletes=True)
    brands = relationship("Brand", back_populates="company", passive_deletes=True)


class User(Base):
    """Staff account of a company (admin panel login)"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    role = Column(SQLEnum(UserRole), default=UserRole.VIEWER, nullable=False)

    # Legacy accounts carry a plaintext password until their first login migrates it
    password = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    last_login = Column(DateTime, nullable=True)
    password_reset_at = Column(DateTime, nullable=True)
    password_reset_by = Column(Integer, nullable=True)
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    company = relationship("Company", back_populates="users")

    __table_args__ = (
        UniqueConstraint("company_id", "email", name="uq_company_user_email"),
    )


class Brand(Base):
    __tablename__ = "brands"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, default="")
    logo_url = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    company = relationship("Company", back_populates="brands")
    products = relationship("Product", back_populates="brand", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("company_id", "name", name="uq_company_brand_name"),
    )


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    brand_id = Column(Integer, ForeignKey("brands.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    model = Column(String(200), default="", nullable=False)  # empty string, not NULL, so the unique key holds
    description = Column(Text, default="")
    warranty_years = Column(Integer, default=0, nullable=False)
    warranty_months = Column(Integer, default=0, nullable=False)
    required_fields = Column(JSON, default=lambda: dict(DEFAULT_REQUIRED_FIELDS), nullable=False)
    image_url = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    brand = relationship("Brand", back_populates="products")

    __table_args__ = (
        UniqueConstraint("company_id", "brand_id", "name", "model", name="uq_company_product_model"),
    )


class Customer(Base):
    """End customer identified through LINE Login, one row per company"""
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    line_user_id = Column(String(100), nullable=False)
    display_name = Column(String(200))
    picture_url = Column(String(500), nullable=True)
    email = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    last_login = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("company_id", "line_user_id", name="uq_company_line_user"),
    )


class Warranty(Base):
    """
    A registered warranty.

    customer_info and product_info are snapshots taken at registration and
    never rewritten; only status and notes change afterwards.
    """
    __tablename__ = "warranties"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)

    customer_info = Column(JSON, nullable=False)
    product_info = Column(JSON, nullable=False)

    purchase_date = Column(Date, nullable=False)
    warranty_start_date = Column(Date, nullable=False)
    warranty_expiry = Column(Date, nullable=False, index=True)
    receipt_image = Column(String(500), nullable=True)

    status = Column(SQLEnum(WarrantyStatus), default=WarrantyStatus.ACTIVE, nullable=False)
    notes = Column(Text, default="")
    registration_date = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    status_changes = relationship(
        "WarrantyStatusChange",
        back_populates="warranty",
        order_by="WarrantyStatusChange.changed_at",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_warranties_company_registered", "company_id", "registration_date"),
    )


class WarrantyStatusChange(Base):
    """Audit trail of manual warranty status transitions (who moved it, when, why)"""
    __tablename__ = "warranty_status_changes"

    id = Column(Integer, primary_key=True, index=True)
    warranty_id = Column(Integer, ForeignKey("warranties.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    from_status = Column(String(20), nullable=False)
    to_status = Column(String(20), nullable=False)
    changed_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    changed_by_name = Column(String(200))
    reason = Column(Text, default="")
    changed_at = Column(DateTime, default=datetime.utcnow)

    warranty = relationship("Warranty", back_populates="status_changes")
