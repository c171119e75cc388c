"""
Voucher Book Pydantic Schemas
API validation schemas, tagged placement content and generation results.
"""
import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field, field_validator, model_validator

from .exceptions import ErrorKind
from .models import (
    AdSize,
    BusinessType,
    ContentType,
    DistributionStatus,
    PageLayoutType,
    VoucherBookStatus,
    VoucherBookType,
)


# ==================== CONSTANTS ====================

SPACES_BY_SIZE = {
    AdSize.SINGLE: 1,
    AdSize.QUARTER: 2,
    AdSize.HALF: 4,
    AdSize.FULL: 8,
}

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^[\+]?[\d\s\-\(\)]{10,}$")

MAX_TOTAL_PAGES = 200


# ==================== PLACEMENT CONTENT ====================

class VoucherContent(BaseModel):
    """A voucher block: title, discount, QR code and short code."""
    content_type: Literal["voucher"] = "voucher"
    voucher_id: str = Field(..., min_length=1)


class ImageContent(BaseModel):
    """An image scaled into the slot."""
    content_type: Literal["image"] = "image"
    image_url: str = Field(..., min_length=1, max_length=500)


class AdContent(BaseModel):
    """Free text advertisement."""
    content_type: Literal["ad"] = "ad"
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None


class SponsoredContent(BaseModel):
    """Text block credited to a provider."""
    content_type: Literal["sponsored"] = "sponsored"
    provider_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None


PlacementContent = Annotated[
    Union[VoucherContent, ImageContent, AdContent, SponsoredContent],
    Field(discriminator="content_type"),
]

_CONTENT_COLUMNS = ("voucher_id", "provider_id", "image_url", "title", "description")


def content_from_columns(data: dict) -> Union[VoucherContent, ImageContent, AdContent, SponsoredContent]:
    """Build the tagged content variant from flat placement columns."""
    content_type = ContentType(data["content_type"])
    if content_type == ContentType.VOUCHER:
        return VoucherContent(voucher_id=data["voucher_id"])
    if content_type == ContentType.IMAGE:
        return ImageContent(image_url=data["image_url"])
    if content_type == ContentType.AD:
        return AdContent(title=data["title"], description=data.get("description"))
    return SponsoredContent(
        provider_id=data["provider_id"],
        title=data["title"],
        description=data.get("description"),
    )


def content_to_columns(content) -> dict:
    """Flatten a content variant into placement columns (unused columns cleared)."""
    columns = {name: None for name in _CONTENT_COLUMNS}
    columns.update(content.model_dump(exclude={"content_type"}))
    columns["content_type"] = content.content_type
    return columns


# ==================== BOOK SCHEMAS ====================

class BookBase(BaseModel):
    """Base schema for VoucherBook."""
    title: str = Field(..., min_length=1, max_length=255, description="Book title")
    edition: Optional[str] = Field(None, max_length=100)
    book_type: VoucherBookType = Field(default=VoucherBookType.MONTHLY)
    year: int = Field(..., ge=2000, le=2100)
    month: Optional[int] = Field(None, ge=1, le=12)


class BookCreate(BookBase):
    """Schema for creating a new VoucherBook."""
    total_pages: int = Field(default=24, ge=1, le=MAX_TOTAL_PAGES)
    include_cover: bool = Field(default=False, description="Make page 1 a cover page")
    metadata: Dict = Field(default_factory=dict)


class BookUpdate(BaseModel):
    """Schema for updating a VoucherBook (partial update)."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    edition: Optional[str] = Field(None, max_length=100)
    book_type: Optional[VoucherBookType] = None
    year: Optional[int] = Field(None, ge=2000, le=2100)
    month: Optional[int] = Field(None, ge=1, le=12)
    total_pages: Optional[int] = Field(None, ge=1, le=MAX_TOTAL_PAGES)
    metadata: Optional[Dict] = None


class BookResponse(BookBase):
    """Schema for VoucherBook API response."""
    id: str
    status: VoucherBookStatus
    total_pages: int
    pdf_url: Optional[str] = None
    pdf_generated_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    metadata: Dict = Field(default_factory=dict)
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BookListResponse(BaseModel):
    """Schema for paginated book list response."""
    books: List[BookResponse]
    total: int
    page: int
    limit: int
    pages: int


class BookFilters(BaseModel):
    """Query filters for listing books."""
    status: Optional[VoucherBookStatus] = None
    book_type: Optional[VoucherBookType] = None
    year: Optional[int] = None
    month: Optional[int] = Field(None, ge=1, le=12)
    search: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


class BookStatusUpdate(BaseModel):
    """Request to move a book to another status."""
    status: VoucherBookStatus


class BulkArchiveRequest(BaseModel):
    book_ids: List[str] = Field(..., min_length=1, max_length=100)


class BulkArchiveResult(BaseModel):
    archived: List[str]
    errors: List[dict]


class BookStatistics(BaseModel):
    """Space usage of a book."""
    book_id: str
    total_pages: int
    total_spaces: int
    used_spaces: int
    available_spaces: int
    placement_count: int
    placements_by_type: Dict[str, int]
    placements_by_size: Dict[str, int]
    has_pdf: bool


# ==================== PAGE SCHEMAS ====================

class PageResponse(BaseModel):
    id: str
    book_id: str
    page_number: int
    layout_type: PageLayoutType
    capacity: int
    used_spaces: int
    metadata: Dict = Field(default_factory=dict)


class PageUpdate(BaseModel):
    layout_type: PageLayoutType


# ==================== PLACEMENT SCHEMAS ====================

class PlacementCreate(BaseModel):
    """
    Schema for creating a placement.

    Pinned placements carry both page_number and position; leave both out
    to let the layout engine pick a slot at generation time.
    """
    page_number: Optional[int] = Field(None, ge=1)
    position: Optional[int] = Field(None, ge=1, le=8)
    size: AdSize = Field(default=AdSize.SINGLE)
    content: PlacementContent
    display_order: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def validate_pinned_pair(self):
        if (self.page_number is None) != (self.position is None):
            raise ValueError("page_number and position must be given together")
        return self


class PlacementUpdate(BaseModel):
    """Schema for updating a placement (partial update)."""
    page_number: Optional[int] = Field(None, ge=1)
    position: Optional[int] = Field(None, ge=1, le=8)
    size: Optional[AdSize] = None
    content: Optional[PlacementContent] = None
    display_order: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    unpin: bool = Field(default=False, description="Clear page and position")


class PlacementResponse(BaseModel):
    """Schema for placement API response."""
    id: str
    book_id: str
    page_id: Optional[str] = None
    page_number: Optional[int] = None
    position: Optional[int] = None
    size: AdSize
    spaces_used: int
    content: PlacementContent
    display_order: int
    is_active: bool

    @property
    def is_pinned(self) -> bool:
        return self.page_number is not None and self.position is not None


class PlacementSuggestion(BaseModel):
    page_number: int
    position: int
    size: AdSize
    spaces_used: int


# ==================== UPSTREAM RECORDS ====================

class VoucherSummary(BaseModel):
    """Voucher as returned by the voucher service batch lookup."""
    id: str
    title: Dict[str, str] = Field(default_factory=dict)
    description: Dict[str, str] = Field(default_factory=dict)
    discount_type: Optional[str] = None
    discount_value: Optional[float] = None
    provider_id: Optional[str] = None
    expires_at: Optional[datetime] = None

    def localized_title(self, language: str) -> str:
        return _localized(self.title, language)

    def localized_description(self, language: str) -> str:
        return _localized(self.description, language)

    def discount_label(self) -> str:
        if self.discount_value is None:
            return ""
        if self.discount_type == "percentage":
            return f"{self.discount_value:g}% OFF"
        if self.discount_type == "fixed":
            return f"${self.discount_value:,.2f} OFF"
        return f"{self.discount_value:g}"


def _localized(texts: Dict[str, str], language: str) -> str:
    if language in texts:
        return texts[language]
    if "en" in texts:
        return texts["en"]
    return next(iter(texts.values()), "")


class ProviderSummary(BaseModel):
    id: str
    business_name: str


class ShortCode(BaseModel):
    short_code: str
    checksum: Optional[str] = None
    expires_at: Optional[datetime] = None


# ==================== RESOLVED CONTENT ====================

class ResolvedPlacement(BaseModel):
    """A placement with its slot and everything the renderer draws."""
    placement_id: str
    page_number: int
    position: int
    size: AdSize
    content: PlacementContent
    voucher: Optional[VoucherSummary] = None
    provider_name: Optional[str] = None
    short_code: Optional[str] = None
    qr_payload: Optional[str] = None
    image_bytes: Optional[bytes] = None


class ResolvedPage(BaseModel):
    page_number: int
    layout_type: PageLayoutType = PageLayoutType.STANDARD
    placements: List[ResolvedPlacement] = Field(default_factory=list)


class ResolvedBook(BaseModel):
    book_id: str
    title: str
    edition: Optional[str] = None
    year: int
    month: Optional[int] = None
    pages: List[ResolvedPage]
    warnings: List[str] = Field(default_factory=list)


# ==================== GENERATION ====================

class GenerationStage(str, Enum):
    REQUESTED = "requested"
    LAYING_OUT = "laying_out"
    RESOLVING_CONTENT = "resolving_content"
    RENDERING = "rendering"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


class GenerationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class GenerateOptions(BaseModel):
    force: bool = Field(default=False, description="Regenerate even if a PDF exists")
    priority: GenerationPriority = Field(default=GenerationPriority.NORMAL)


class GenerationResult(BaseModel):
    """Outcome of one generation run. Failures are reported, never raised."""
    success: bool
    book_id: str
    stage: GenerationStage
    pdf_url: Optional[str] = None
    generated_at: Optional[datetime] = None
    page_count: Optional[int] = None
    file_size: Optional[int] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    failed_stage: Optional[GenerationStage] = None
    retry_after: Optional[int] = None
    warnings: List[str] = Field(default_factory=list)
    processing_time_ms: int = 0


class RateLimitDecision(BaseModel):
    allowed: bool
    remaining: int
    retry_after: int = 0


# ==================== DISTRIBUTION SCHEMAS ====================

class DistributionCreate(BaseModel):
    """Schema for creating a distribution."""
    book_id: str
    business_name: str = Field(..., min_length=1, max_length=255)
    business_type: BusinessType = Field(default=BusinessType.OTHER)
    location_name: Optional[str] = Field(None, max_length=255)
    contact_name: Optional[str] = Field(None, max_length=255)
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    address: Optional[str] = None
    requested_quantity: int = Field(..., gt=0, le=100000)
    notes: Optional[str] = None

    @field_validator("business_name")
    @classmethod
    def validate_business_name(cls, v):
        if not v.strip():
            raise ValueError("Business name is required")
        return v.strip()

    @field_validator("contact_email")
    @classmethod
    def validate_email(cls, v):
        if v is not None and not EMAIL_PATTERN.match(v):
            raise ValueError("Invalid email format")
        return v

    @field_validator("contact_phone")
    @classmethod
    def validate_phone(cls, v):
        if v is not None and not PHONE_PATTERN.match(v):
            raise ValueError("Invalid phone number format")
        return v


class DistributionUpdate(BaseModel):
    """Contact and quantity corrections (partial update)."""
    location_name: Optional[str] = Field(None, max_length=255)
    contact_name: Optional[str] = Field(None, max_length=255)
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    address: Optional[str] = None
    requested_quantity: Optional[int] = Field(None, gt=0, le=100000)
    notes: Optional[str] = None

    @field_validator("contact_email")
    @classmethod
    def validate_email(cls, v):
        if v is not None and not EMAIL_PATTERN.match(v):
            raise ValueError("Invalid email format")
        return v

    @field_validator("contact_phone")
    @classmethod
    def validate_phone(cls, v):
        if v is not None and not PHONE_PATTERN.match(v):
            raise ValueError("Invalid phone number format")
        return v


class DistributionShip(BaseModel):
    shipped_quantity: int = Field(..., gt=0)
    tracking_number: Optional[str] = Field(None, max_length=100)
    carrier: Optional[str] = Field(None, max_length=100)


class DistributionDeliver(BaseModel):
    confirmed_by: str = Field(..., min_length=1, max_length=255)
    notes: Optional[str] = None


class DistributionCancel(BaseModel):
    reason: Optional[str] = None


class DistributionResponse(BaseModel):
    id: str
    book_id: str
    business_name: str
    business_type: BusinessType
    location_name: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    address: Optional[str] = None
    requested_quantity: int
    shipped_quantity: int
    status: DistributionStatus
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    delivery_confirmed_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class DistributionListResponse(BaseModel):
    distributions: List[DistributionResponse]
    total: int


class DistributionStatistics(BaseModel):
    """Totals for one business name across books."""
    business_name: str
    total_distributions: int
    total_requested: int
    total_shipped: int
    by_status: Dict[str, int]
