"""
Voucher Book API Router
Admin endpoints for books, pages, placements and PDF generation.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.deps import get_book_service, get_generator, get_requester_id
from api.rate_limiter import limiter, rate_limit_config
from core.voucher_book.exceptions import ErrorKind, VoucherBookError
from core.voucher_book.generator import VoucherBookPDFGenerator
from core.voucher_book.models import AdSize, VoucherBookStatus, VoucherBookType
from core.voucher_book.schemas import (
    BookCreate,
    BookFilters,
    BookListResponse,
    BookResponse,
    BookStatistics,
    BookStatusUpdate,
    BookUpdate,
    BulkArchiveRequest,
    BulkArchiveResult,
    GenerateOptions,
    GenerationResult,
    PageResponse,
    PageUpdate,
    PlacementCreate,
    PlacementResponse,
    PlacementSuggestion,
    PlacementUpdate,
)
from core.voucher_book.service import VoucherBookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/voucher-books", tags=["Voucher Books"])

# HTTP status per error kind
ERROR_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PRECONDITION: 409,
    ErrorKind.VALIDATION: 422,
    ErrorKind.LAYOUT: 422,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.RESOLUTION: 502,
    ErrorKind.STORAGE: 502,
    ErrorKind.RENDER: 500,
}


def voucher_book_error_handler(request: Request, exc: VoucherBookError) -> JSONResponse:
    """Map domain errors to JSON responses by kind."""
    status_code = ERROR_STATUS.get(exc.kind, 400)
    content = {"error": exc.kind.value, "message": exc.message}
    headers = {}
    for attr in ("missing_ids", "conflicting_ids"):
        if getattr(exc, attr, None):
            content[attr] = getattr(exc, attr)
    if exc.kind == ErrorKind.RATE_LIMITED:
        headers["Retry-After"] = str(exc.retry_after)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=status_code, content=content, headers=headers)


# =============================================================================
# Books
# =============================================================================

@router.post("", response_model=BookResponse, status_code=201)
@limiter.limit(rate_limit_config.get_limit("admin"))
async def create_book(
    request: Request,
    data: BookCreate,
    service: VoucherBookService = Depends(get_book_service),
    user_id: str = Depends(get_requester_id),
):
    """
    Create a voucher book in draft status.

    - **title**: Book title
    - **year** / **month**: Issue date
    - **total_pages**: Number of pages (default 24)
    - **include_cover**: Make page 1 a cover page
    """
    return await service.create_book(data, user_id)


@router.get("", response_model=BookListResponse)
@limiter.limit(rate_limit_config.get_limit("admin_read"))
async def list_books(
    request: Request,
    status: Optional[VoucherBookStatus] = Query(None, description="Filter by status"),
    book_type: Optional[VoucherBookType] = Query(None, description="Filter by book type"),
    year: Optional[int] = Query(None),
    month: Optional[int] = Query(None, ge=1, le=12),
    search: Optional[str] = Query(None, description="Search title and edition"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    service: VoucherBookService = Depends(get_book_service),
):
    """List voucher books with optional filtering."""
    filters = BookFilters(
        status=status, book_type=book_type, year=year, month=month,
        search=search, page=page, limit=limit,
    )
    return await service.list_books(filters)


@router.post("/bulk-archive", response_model=BulkArchiveResult)
@limiter.limit(rate_limit_config.get_limit("admin_bulk"))
async def bulk_archive(
    request: Request,
    data: BulkArchiveRequest,
    service: VoucherBookService = Depends(get_book_service),
    user_id: str = Depends(get_requester_id),
):
    """Archive several books; failures are reported per book."""
    return await service.bulk_archive(data.book_ids, user_id)


@router.get("/{book_id}", response_model=BookResponse)
@limiter.limit(rate_limit_config.get_limit("admin_read"))
async def get_book(
    request: Request,
    book_id: str,
    service: VoucherBookService = Depends(get_book_service),
):
    """Get a voucher book by ID."""
    return await service.get_book(book_id)


@router.put("/{book_id}", response_model=BookResponse)
@limiter.limit(rate_limit_config.get_limit("admin"))
async def update_book(
    request: Request,
    book_id: str,
    data: BookUpdate,
    service: VoucherBookService = Depends(get_book_service),
    user_id: str = Depends(get_requester_id),
):
    """Update a draft or ready-for-print book."""
    return await service.update_book(book_id, data, user_id)


@router.delete("/{book_id}")
@limiter.limit(rate_limit_config.get_limit("admin"))
async def delete_book(
    request: Request,
    book_id: str,
    service: VoucherBookService = Depends(get_book_service),
):
    """Delete a draft book with its pages and placements."""
    await service.delete_book(book_id)
    return {"status": "deleted", "id": book_id}


@router.post("/{book_id}/status", response_model=BookResponse)
@limiter.limit(rate_limit_config.get_limit("admin"))
async def change_status(
    request: Request,
    book_id: str,
    data: BookStatusUpdate,
    service: VoucherBookService = Depends(get_book_service),
    user_id: str = Depends(get_requester_id),
):
    """Move a book to another status (publish, roll back, archive)."""
    return await service.change_status(book_id, data.status, user_id)


@router.get("/{book_id}/statistics", response_model=BookStatistics)
@limiter.limit(rate_limit_config.get_limit("admin_read"))
async def get_statistics(
    request: Request,
    book_id: str,
    service: VoucherBookService = Depends(get_book_service),
):
    """Space usage and placement counts."""
    return await service.get_statistics(book_id)


# =============================================================================
# Pages
# =============================================================================

@router.get("/{book_id}/pages", response_model=List[PageResponse])
@limiter.limit(rate_limit_config.get_limit("admin_read"))
async def list_pages(
    request: Request,
    book_id: str,
    service: VoucherBookService = Depends(get_book_service),
):
    return await service.list_pages(book_id)


@router.put("/{book_id}/pages/{page_number}", response_model=PageResponse)
@limiter.limit(rate_limit_config.get_limit("admin"))
async def update_page(
    request: Request,
    book_id: str,
    page_number: int,
    data: PageUpdate,
    service: VoucherBookService = Depends(get_book_service),
):
    """Change a page's layout type."""
    return await service.update_page_layout(book_id, page_number, data.layout_type)


# =============================================================================
# Placements
# =============================================================================

@router.get("/{book_id}/placements", response_model=List[PlacementResponse])
@limiter.limit(rate_limit_config.get_limit("admin_read"))
async def list_placements(
    request: Request,
    book_id: str,
    include_inactive: bool = Query(False),
    service: VoucherBookService = Depends(get_book_service),
):
    return await service.list_placements(book_id, include_inactive)


@router.post("/{book_id}/placements", response_model=PlacementResponse, status_code=201)
@limiter.limit(rate_limit_config.get_limit("admin"))
async def create_placement(
    request: Request,
    book_id: str,
    data: PlacementCreate,
    service: VoucherBookService = Depends(get_book_service),
    user_id: str = Depends(get_requester_id),
):
    """
    Add a placement.

    - **content**: Tagged by content_type (voucher, image, ad, sponsored)
    - **size**: single, quarter, half or full
    - **page_number** / **position**: Pin to a slot, or omit both for automatic layout
    """
    return await service.create_placement(book_id, data, user_id)


@router.get("/{book_id}/placement-suggestions", response_model=List[PlacementSuggestion])
@limiter.limit(rate_limit_config.get_limit("admin_read"))
async def suggest_placements(
    request: Request,
    book_id: str,
    size: Optional[AdSize] = Query(None),
    page_number: Optional[int] = Query(None, ge=1),
    limit: int = Query(10, ge=1, le=100),
    service: VoucherBookService = Depends(get_book_service),
):
    """Free slots where a new placement would fit."""
    return await service.suggest_placements(book_id, size, page_number, limit)


@router.get("/{book_id}/placements/{placement_id}", response_model=PlacementResponse)
@limiter.limit(rate_limit_config.get_limit("admin_read"))
async def get_placement(
    request: Request,
    book_id: str,
    placement_id: str,
    service: VoucherBookService = Depends(get_book_service),
):
    return await service.get_placement(book_id, placement_id)


@router.put("/{book_id}/placements/{placement_id}", response_model=PlacementResponse)
@limiter.limit(rate_limit_config.get_limit("admin"))
async def update_placement(
    request: Request,
    book_id: str,
    placement_id: str,
    data: PlacementUpdate,
    service: VoucherBookService = Depends(get_book_service),
    user_id: str = Depends(get_requester_id),
):
    return await service.update_placement(book_id, placement_id, data, user_id)


@router.delete("/{book_id}/placements/{placement_id}")
@limiter.limit(rate_limit_config.get_limit("admin"))
async def delete_placement(
    request: Request,
    book_id: str,
    placement_id: str,
    service: VoucherBookService = Depends(get_book_service),
):
    await service.delete_placement(book_id, placement_id)
    return {"status": "deleted", "id": placement_id}


# =============================================================================
# PDF generation
# =============================================================================

@router.post("/{book_id}/generate-pdf", response_model=GenerationResult)
@limiter.limit(rate_limit_config.get_limit("generate_pdf"))
async def generate_pdf(
    request: Request,
    book_id: str,
    options: Optional[GenerateOptions] = Body(None),
    generator: VoucherBookPDFGenerator = Depends(get_generator),
    user_id: str = Depends(get_requester_id),
):
    """
    Generate the book's PDF.

    Returns the generation result. Failures keep the result body and use
    the status code of their error kind.
    """
    result = await generator.generate(book_id, user_id, options or GenerateOptions())
    if result.success:
        return result

    headers = {}
    if result.retry_after:
        headers["Retry-After"] = str(result.retry_after)
    return JSONResponse(
        status_code=ERROR_STATUS.get(result.error_kind, 400),
        content=result.model_dump(mode="json"),
        headers=headers,
    )
