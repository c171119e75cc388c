"""
Voucher Book Service
Business logic for books, pages and ad placements.
"""
import logging
import math
from typing import Dict, List, Optional

from core.cache.redis_client import RedisClient

from .exceptions import (
    BookNotFoundError,
    PreconditionError,
    ValidationError,
)
from .layout_engine import LayoutEngine, PageSlots, page_capacity, spaces_for
from .models import AdSize, PageLayoutType, VoucherBookStatus
from .repository import VoucherBookRepository
from .schemas import (
    BookCreate,
    BookFilters,
    BookListResponse,
    BookResponse,
    BookStatistics,
    BookUpdate,
    BulkArchiveResult,
    PageResponse,
    PlacementCreate,
    PlacementResponse,
    PlacementSuggestion,
    PlacementUpdate,
    content_from_columns,
    content_to_columns,
)

logger = logging.getLogger(__name__)

# Allowed status moves; anything may additionally be archived by an admin
STATUS_TRANSITIONS = {
    VoucherBookStatus.DRAFT: {VoucherBookStatus.READY_FOR_PRINT},
    VoucherBookStatus.READY_FOR_PRINT: {VoucherBookStatus.PUBLISHED, VoucherBookStatus.DRAFT},
    VoucherBookStatus.PUBLISHED: {VoucherBookStatus.ARCHIVED},
    VoucherBookStatus.ARCHIVED: set(),
}

EDITABLE_STATUSES = (VoucherBookStatus.DRAFT, VoucherBookStatus.READY_FOR_PRINT)


def book_cache_keys(book_id: str) -> List[str]:
    """Every cache key derived from one book."""
    return [f"voucher_book:{book_id}", f"voucher_book:{book_id}:stats"]


def placement_response(data: dict) -> PlacementResponse:
    """Build the API view of a placement from its flat row dict."""
    return PlacementResponse(
        id=data["id"],
        book_id=data["book_id"],
        page_id=data["page_id"],
        page_number=data["page_number"],
        position=data["position"],
        size=data["size"],
        spaces_used=spaces_for(data["size"]),
        content=content_from_columns(data),
        display_order=data["display_order"],
        is_active=data["is_active"],
    )


class VoucherBookService:
    """
    Service layer for voucher book administration.

    Reads go through the cache handle (cache-aside); every write
    invalidates the keys of the book it touched.
    """

    def __init__(
        self,
        repository: VoucherBookRepository,
        layout_engine: LayoutEngine,
        cache: Optional[RedisClient] = None,
        cache_ttl: int = 300,
    ):
        self.repository = repository
        self.layout = layout_engine
        self.cache = cache
        self.cache_ttl = cache_ttl

    # ==================== CACHE ====================

    async def _cached(self, key: str) -> Optional[dict]:
        if self.cache is None:
            return None
        return await self.cache.get_json(key)

    async def _store(self, key: str, value: dict):
        if self.cache is not None:
            await self.cache.set_json(key, value, ex=self.cache_ttl)

    async def invalidate(self, book_id: str):
        if self.cache is not None:
            await self.cache.delete(*book_cache_keys(book_id))

    # ==================== BOOK OPERATIONS ====================

    async def create_book(self, data: BookCreate, user_id: Optional[str] = None) -> BookResponse:
        """Create a draft book with pages 1..total_pages."""
        book = self.repository.create_book(
            title=data.title,
            edition=data.edition,
            book_type=data.book_type.value,
            year=data.year,
            month=data.month,
            total_pages=data.total_pages,
            metadata=data.metadata,
            created_by=user_id,
            include_cover=data.include_cover,
        )
        return BookResponse.model_validate(book.to_dict())

    async def get_book(self, book_id: str) -> BookResponse:
        """Get book by ID, from cache when possible."""
        key = book_cache_keys(book_id)[0]
        cached = await self._cached(key)
        if cached is not None:
            return BookResponse.model_validate(cached)

        book = self._require_book(book_id)
        response = BookResponse.model_validate(book.to_dict())
        await self._store(key, response.model_dump(mode="json"))
        return response

    async def list_books(self, filters: BookFilters) -> BookListResponse:
        books, total = self.repository.list_books(
            status=filters.status.value if filters.status else None,
            book_type=filters.book_type.value if filters.book_type else None,
            year=filters.year,
            month=filters.month,
            search=filters.search,
            offset=(filters.page - 1) * filters.limit,
            limit=filters.limit,
        )
        return BookListResponse(
            books=[BookResponse.model_validate(b.to_dict()) for b in books],
            total=total,
            page=filters.page,
            limit=filters.limit,
            pages=math.ceil(total / filters.limit) if total else 0,
        )

    async def update_book(
        self, book_id: str, data: BookUpdate, user_id: Optional[str] = None
    ) -> BookResponse:
        """
        Update a draft or ready-for-print book.

        Shrinking total_pages is refused while the dropped pages hold
        placements.
        """
        book = self._require_book(book_id)
        self._require_editable(book, "update")

        fields = data.model_dump(exclude_unset=True)
        if "book_type" in fields and fields["book_type"] is not None:
            fields["book_type"] = fields["book_type"].value
        new_total = fields.get("total_pages")
        if new_total is not None and new_total < book.total_pages:
            stranded = self.repository.count_placements_after_page(book_id, new_total)
            if stranded:
                raise PreconditionError(
                    f"Cannot reduce to {new_total} pages: {stranded} placements "
                    f"are on pages after {new_total}"
                )

        updated = self.repository.update_book(book_id, updated_by=user_id, **fields)
        await self.invalidate(book_id)
        return BookResponse.model_validate(updated.to_dict())

    async def delete_book(self, book_id: str) -> bool:
        """Delete a draft book. Books with distributions are never deleted."""
        book = self._require_book(book_id)
        if book.status != VoucherBookStatus.DRAFT.value:
            raise PreconditionError(
                f"Only draft books can be deleted; this book is {book.status}"
            )
        distributions = self.repository.count_distributions(book_id)
        if distributions:
            raise PreconditionError(
                f"Cannot delete a book with {distributions} distribution records"
            )
        deleted = self.repository.delete_book(book_id)
        await self.invalidate(book_id)
        return deleted

    async def change_status(
        self,
        book_id: str,
        status: VoucherBookStatus,
        user_id: Optional[str] = None,
    ) -> BookResponse:
        """
        Move a book along its lifecycle.

        Publishing needs a generated PDF. Archiving is allowed from any
        other status.
        """
        book = self._require_book(book_id)
        current = VoucherBookStatus(book.status)
        status = VoucherBookStatus(status)

        if status == current:
            raise ValidationError(f"Book is already {current.value}")
        allowed = STATUS_TRANSITIONS[current]
        if status != VoucherBookStatus.ARCHIVED and status not in allowed:
            raise PreconditionError(
                f"Invalid status transition from {current.value} to {status.value}"
            )
        if status == VoucherBookStatus.PUBLISHED and not book.pdf_url:
            raise PreconditionError("Cannot publish a book without a generated PDF")

        updated = self.repository.set_status(
            book_id, status.value, updated_by=user_id, expected_status=current.value
        )
        if updated is None:
            raise PreconditionError("Book status changed concurrently; reload and retry")
        await self.invalidate(book_id)
        return BookResponse.model_validate(updated.to_dict())

    async def bulk_archive(self, book_ids: List[str], user_id: Optional[str] = None) -> BulkArchiveResult:
        archived = []
        errors = []
        for book_id in book_ids:
            try:
                await self.change_status(book_id, VoucherBookStatus.ARCHIVED, user_id)
                archived.append(book_id)
            except (BookNotFoundError, PreconditionError, ValidationError) as e:
                errors.append({"book_id": book_id, "error": e.message, "kind": e.kind.value})
        logger.info(f"Bulk archive: {len(archived)} archived, {len(errors)} failed")
        return BulkArchiveResult(archived=archived, errors=errors)

    async def get_statistics(self, book_id: str) -> BookStatistics:
        key = book_cache_keys(book_id)[1]
        cached = await self._cached(key)
        if cached is not None:
            return BookStatistics.model_validate(cached)

        book = self._require_book(book_id)
        pages = self.repository.list_pages(book_id)
        placements = self.repository.list_placements(book_id)

        by_type: Dict[str, int] = {}
        by_size: Dict[str, int] = {}
        used = 0
        for p in placements:
            by_type[p["content_type"]] = by_type.get(p["content_type"], 0) + 1
            by_size[p["size"]] = by_size.get(p["size"], 0) + 1
            used += spaces_for(p["size"])

        total_spaces = sum(page_capacity(p.layout_type) for p in pages)
        stats = BookStatistics(
            book_id=book_id,
            total_pages=book.total_pages,
            total_spaces=total_spaces,
            used_spaces=used,
            available_spaces=max(total_spaces - used, 0),
            placement_count=len(placements),
            placements_by_type=by_type,
            placements_by_size=by_size,
            has_pdf=bool(book.pdf_url),
        )
        await self._store(key, stats.model_dump(mode="json"))
        return stats

    # ==================== PAGE OPERATIONS ====================

    async def list_pages(self, book_id: str) -> List[PageResponse]:
        self._require_book(book_id)
        slots = self._page_slots(book_id)
        return [
            PageResponse(
                id=page.id,
                book_id=book_id,
                page_number=page.page_number,
                layout_type=page.layout_type,
                capacity=page_capacity(page.layout_type),
                used_spaces=slots[page.page_number].used_spaces,
                metadata=page.extra_metadata or {},
            )
            for page in self.repository.list_pages(book_id)
        ]

    async def update_page_layout(
        self, book_id: str, page_number: int, layout_type: PageLayoutType
    ) -> PageResponse:
        """Change a page's layout; its pinned placements must still fit."""
        book = self._require_book(book_id)
        self._require_editable(book, "change pages of")
        if not self.repository.get_page(book_id, page_number):
            raise BookNotFoundError(f"Page {page_number} not found in book {book_id}")

        trial = self.layout.create_empty_page(page_number, layout_type)
        for p in self.repository.list_placements(book_id, page_number=page_number):
            self.layout.reserve(trial, p["id"], p["position"], p["size"])

        page = self.repository.update_page_layout(book_id, page_number, PageLayoutType(layout_type).value)
        await self.invalidate(book_id)
        return PageResponse(
            id=page.id,
            book_id=book_id,
            page_number=page.page_number,
            layout_type=page.layout_type,
            capacity=trial.capacity,
            used_spaces=trial.used_spaces,
            metadata=page.extra_metadata or {},
        )

    # ==================== PLACEMENT OPERATIONS ====================

    async def list_placements(
        self, book_id: str, include_inactive: bool = False
    ) -> List[PlacementResponse]:
        self._require_book(book_id)
        rows = self.repository.list_placements(book_id, active_only=not include_inactive)
        return [placement_response(row) for row in rows]

    async def get_placement(self, book_id: str, placement_id: str) -> PlacementResponse:
        row = self.repository.get_placement(placement_id)
        if not row or row["book_id"] != book_id:
            raise BookNotFoundError(f"Placement not found: {placement_id}")
        return placement_response(row)

    async def create_placement(
        self, book_id: str, data: PlacementCreate, user_id: Optional[str] = None
    ) -> PlacementResponse:
        """
        Add a placement to a book.

        Pinned placements are checked against the page grid now; unpinned
        ones get their slot when the PDF is generated.
        """
        book = self._require_book(book_id)
        self._require_editable(book, "add placements to")

        page_id = None
        if data.page_number is not None:
            page_id = self._check_slot(book_id, data.page_number, data.position, data.size)

        row = self.repository.create_placement(
            book_id=book_id,
            page_id=page_id,
            position=data.position,
            size=data.size.value,
            columns=content_to_columns(data.content),
            display_order=data.display_order,
            created_by=user_id,
        )
        await self.invalidate(book_id)
        return placement_response(row)

    async def update_placement(
        self,
        book_id: str,
        placement_id: str,
        data: PlacementUpdate,
        user_id: Optional[str] = None,
    ) -> PlacementResponse:
        current = await self.get_placement(book_id, placement_id)
        book = self._require_book(book_id)
        self._require_editable(book, "change placements of")

        changes = data.model_dump(exclude_unset=True, exclude={"content", "unpin", "page_number"})
        if "size" in changes and changes["size"] is not None:
            changes["size"] = changes["size"].value
        if data.content is not None:
            changes.update(content_to_columns(data.content))

        size = AdSize(changes.get("size") or current.size)
        page_number = data.page_number if data.page_number is not None else current.page_number
        position = data.position if data.position is not None else current.position
        active = data.is_active if data.is_active is not None else current.is_active

        if data.unpin:
            changes["page_id"] = None
            changes["position"] = None
        elif page_number is not None or position is not None:
            if page_number is None or position is None:
                raise ValidationError("page_number and position must be given together")
            page = self.repository.get_page(book_id, page_number)
            if not page:
                raise ValidationError(f"Page {page_number} does not exist in book {book_id}")
            if active:
                self._check_slot(book_id, page_number, position, size, ignore_id=placement_id)
            changes["page_id"] = page.id
            changes["position"] = position

        row = self.repository.update_placement(placement_id, updated_by=user_id, **changes)
        await self.invalidate(book_id)
        return placement_response(row)

    async def delete_placement(self, book_id: str, placement_id: str) -> bool:
        await self.get_placement(book_id, placement_id)
        book = self._require_book(book_id)
        self._require_editable(book, "remove placements from")
        deleted = self.repository.delete_placement(placement_id)
        await self.invalidate(book_id)
        return deleted

    async def suggest_placements(
        self,
        book_id: str,
        size: Optional[AdSize] = None,
        page_number: Optional[int] = None,
        limit: int = 10,
    ) -> List[PlacementSuggestion]:
        """
        Free slots for new placements, page by page.

        With a size, one suggestion per page that still fits it; without,
        the first free slot of every size on each page.
        """
        self._require_book(book_id)
        sizes = [AdSize(size)] if size else list(AdSize)
        slots = self._page_slots(book_id)

        suggestions = []
        for number in sorted(slots):
            if page_number is not None and number != page_number:
                continue
            for slot in self.layout.suggest(slots[number], sizes):
                suggestions.append(PlacementSuggestion(
                    page_number=slot.page_number,
                    position=slot.position,
                    size=slot.size,
                    spaces_used=slot.spaces_used,
                ))
                if len(suggestions) >= limit:
                    return suggestions
        return suggestions

    # ==================== HELPERS ====================

    def _require_book(self, book_id: str):
        book = self.repository.get_book(book_id)
        if not book:
            raise BookNotFoundError(f"Voucher book not found: {book_id}")
        return book

    @staticmethod
    def _require_editable(book, action: str):
        if book.status not in {s.value for s in EDITABLE_STATUSES}:
            raise PreconditionError(f"Cannot {action} a {book.status} book")

    def _page_slots(self, book_id: str, ignore_id: Optional[str] = None) -> Dict[int, PageSlots]:
        """Occupancy of every page from its active pinned placements."""
        slots = {
            page.page_number: self.layout.create_empty_page(page.page_number, page.layout_type)
            for page in self.repository.list_pages(book_id)
        }
        for p in self.repository.list_placements(book_id):
            if p["id"] == ignore_id or p["page_number"] is None:
                continue
            self.layout.reserve(slots[p["page_number"]], p["id"], p["position"], p["size"])
        return slots

    def _check_slot(
        self,
        book_id: str,
        page_number: int,
        position: int,
        size,
        ignore_id: Optional[str] = None,
    ) -> str:
        """Validate a pinned slot and return the page id."""
        page = self.repository.get_page(book_id, page_number)
        if not page:
            raise ValidationError(f"Page {page_number} does not exist in book {book_id}")
        slots = self._page_slots(book_id, ignore_id=ignore_id)
        self.layout.reserve(slots[page_number], ignore_id or "new", position, size)
        return page.id
