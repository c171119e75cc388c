"""
Voucher Book Database Models
SQLAlchemy models for voucher books, pages, ad placements and distributions.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List
from sqlalchemy import (
    String, Text, Integer, Boolean, DateTime, JSON,
    ForeignKey, Index, UniqueConstraint, CheckConstraint, event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import relationship, Mapped, mapped_column, declarative_base
import sqlite3
import uuid

Base = declarative_base()


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored by SQLite."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ==================== ENUMS ====================

class VoucherBookStatus(str, Enum):
    DRAFT = "draft"
    READY_FOR_PRINT = "ready_for_print"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class VoucherBookType(str, Enum):
    MONTHLY = "monthly"
    SPECIAL_EDITION = "special_edition"
    REGIONAL = "regional"
    SEASONAL = "seasonal"
    PROMOTIONAL = "promotional"


class PageLayoutType(str, Enum):
    """Cover pages keep the top half for the book banner."""
    COVER = "cover"
    STANDARD = "standard"
    MIXED = "mixed"
    FULL_PAGE = "full_page"
    CUSTOM = "custom"


class AdSize(str, Enum):
    SINGLE = "single"
    QUARTER = "quarter"
    HALF = "half"
    FULL = "full"


class ContentType(str, Enum):
    VOUCHER = "voucher"
    IMAGE = "image"
    AD = "ad"
    SPONSORED = "sponsored"


class DistributionStatus(str, Enum):
    PENDING = "pending"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class BusinessType(str, Enum):
    RESTAURANT = "restaurant"
    CAFE = "cafe"
    RETAIL = "retail"
    SERVICE = "service"
    HOTEL = "hotel"
    OFFICE = "office"
    OTHER = "other"


# ==================== MODELS ====================

class VoucherBook(Base):
    """
    VoucherBook model - a printable book of vouchers and ads.

    Attributes:
        id: Unique identifier (UUID)
        title: Display title
        edition: Optional edition label
        book_type: monthly, special_edition, regional, ...
        year / month: Issue date
        status: draft → ready_for_print → published → archived
        total_pages: Number of pages (page rows are kept in sync)
        pdf_url / pdf_generated_at: Set together by PDF generation
    """

    __tablename__ = "voucher_books"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    edition: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    book_type: Mapped[str] = mapped_column(
        String(30), default=VoucherBookType.MONTHLY.value, nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(
        String(30), default=VoucherBookStatus.DRAFT.value, nullable=False
    )
    total_pages: Mapped[int] = mapped_column(Integer, default=24, nullable=False)

    pdf_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    pdf_generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    extra_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    pages: Mapped[List["VoucherBookPage"]] = relationship(
        "VoucherBookPage",
        back_populates="book",
        cascade="all, delete-orphan",
        order_by="VoucherBookPage.page_number",
    )
    placements: Mapped[List["AdPlacement"]] = relationship(
        "AdPlacement",
        back_populates="book",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint(
            "(pdf_url IS NULL AND pdf_generated_at IS NULL) OR "
            "(pdf_url IS NOT NULL AND pdf_generated_at IS NOT NULL)",
            name="ck_voucher_books_pdf_pair",
        ),
        Index("idx_voucher_books_status", "status"),
        Index("idx_voucher_books_year_month", "year", "month"),
    )

    def __repr__(self):
        return f"<VoucherBook {self.title} ({self.status})>"

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "title": self.title,
            "edition": self.edition,
            "book_type": self.book_type,
            "year": self.year,
            "month": self.month,
            "status": self.status,
            "total_pages": self.total_pages,
            "pdf_url": self.pdf_url,
            "pdf_generated_at": self.pdf_generated_at,
            "published_at": self.published_at,
            "archived_at": self.archived_at,
            "metadata": self.extra_metadata or {},
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class VoucherBookPage(Base):
    """A page of a voucher book; unique page number within the book."""

    __tablename__ = "voucher_book_pages"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    book_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("voucher_books.id", ondelete="CASCADE"), nullable=False
    )
    page_number: Mapped[int] = mapped_column(Integer, nullable=False)
    layout_type: Mapped[str] = mapped_column(
        String(20), default=PageLayoutType.STANDARD.value, nullable=False
    )
    extra_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    book: Mapped["VoucherBook"] = relationship("VoucherBook", back_populates="pages")
    placements: Mapped[List["AdPlacement"]] = relationship(
        "AdPlacement",
        back_populates="page",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("book_id", "page_number", name="uq_pages_book_number"),
        Index("idx_pages_book", "book_id"),
    )

    def __repr__(self):
        return f"<VoucherBookPage {self.page_number} ({self.layout_type})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "page_number": self.page_number,
            "layout_type": self.layout_type,
            "metadata": self.extra_metadata or {},
        }


class AdPlacement(Base):
    """
    AdPlacement model - one content block on the page grid.

    A placement is either pinned (page_id and position both set) or
    waiting for automatic layout (both null). Content columns are filled
    according to content_type.
    """

    __tablename__ = "ad_placements"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    book_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("voucher_books.id", ondelete="CASCADE"), nullable=False
    )
    page_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("voucher_book_pages.id", ondelete="CASCADE"), nullable=True
    )
    position: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    size: Mapped[str] = mapped_column(
        String(10), default=AdSize.SINGLE.value, nullable=False
    )
    content_type: Mapped[str] = mapped_column(String(20), nullable=False)

    voucher_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    provider_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    display_order: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    book: Mapped["VoucherBook"] = relationship("VoucherBook", back_populates="placements")
    page: Mapped[Optional["VoucherBookPage"]] = relationship(
        "VoucherBookPage", back_populates="placements"
    )

    __table_args__ = (
        CheckConstraint(
            "(page_id IS NULL AND position IS NULL) OR "
            "(page_id IS NOT NULL AND position IS NOT NULL)",
            name="ck_ad_placements_pinned_pair",
        ),
        Index("idx_placements_book", "book_id"),
        Index("idx_placements_page", "page_id"),
    )

    def __repr__(self):
        return f"<AdPlacement {self.content_type} {self.size} @ {self.position}>"

    def to_dict(self, page_number: Optional[int] = None) -> dict:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "page_id": self.page_id,
            "page_number": page_number,
            "position": self.position,
            "size": self.size,
            "content_type": self.content_type,
            "voucher_id": self.voucher_id,
            "provider_id": self.provider_id,
            "image_url": self.image_url,
            "title": self.title,
            "description": self.description,
            "display_order": self.display_order,
            "is_active": self.is_active,
        }


class BookDistribution(Base):
    """
    Shipment of printed books to a business location.

    Lifecycle: pending → shipped → delivered, or cancelled. Rows are never
    removed together with their book (RESTRICT).
    """

    __tablename__ = "book_distributions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    book_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("voucher_books.id", ondelete="RESTRICT"), nullable=False
    )

    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    business_type: Mapped[str] = mapped_column(
        String(20), default=BusinessType.OTHER.value, nullable=False
    )
    location_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    contact_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    contact_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    requested_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    shipped_quantity: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(
        String(20), default=DistributionStatus.PENDING.value, nullable=False
    )
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    carrier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    delivery_confirmed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_distributions_book", "book_id"),
        Index("idx_distributions_status", "status"),
    )

    def __repr__(self):
        return f"<BookDistribution {self.business_name} ({self.status})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "business_name": self.business_name,
            "business_type": self.business_type,
            "location_name": self.location_name,
            "contact_name": self.contact_name,
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
            "address": self.address,
            "requested_quantity": self.requested_quantity,
            "shipped_quantity": self.shipped_quantity,
            "status": self.status,
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "shipped_at": self.shipped_at,
            "delivered_at": self.delivered_at,
            "delivery_confirmed_by": self.delivery_confirmed_by,
            "notes": self.notes,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


# ==================== EVENT LISTENERS ====================

@event.listens_for(Engine, "connect")
def enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """SQLite ignores ON DELETE clauses unless foreign keys are switched on."""
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
