"""
Voucher Book PDF Generator

Runs one GenerateBookPDF request through its stages:

    requested -> laying_out -> resolving_content -> rendering
              -> uploading -> completed

Any stage may end in ``failed``. Failures are returned as a
GenerationResult with an error kind; nothing is raised to the caller and
the book row is only written by the final conditional update.
"""
import time
from typing import Dict, List, Optional, Protocol

from config.logging_config import get_logger
from core.cache.redis_client import RedisClient

from .content_resolver import ContentResolver
from .exceptions import (
    BookNotFoundError,
    ErrorKind,
    PreconditionError,
    RateLimitedError,
    StorageError,
    VoucherBookError,
)
from .layout_engine import LayoutEngine, LayoutItem, LayoutPlan
from .models import VoucherBookStatus, PageLayoutType, utcnow
from .renderer import RenderedPdf, VoucherBookRenderer
from .repository import GENERATION_ELIGIBLE, VoucherBookRepository
from .schemas import (
    BookResponse,
    GenerateOptions,
    GenerationResult,
    GenerationStage,
    PlacementResponse,
    RateLimitDecision,
)
from .service import book_cache_keys, placement_response
from .storage import FileStorage, StoredFile

logger = get_logger(__name__)


class RateLimiter(Protocol):
    def check(self, caller_id: str) -> RateLimitDecision: ...


class GenerationRun:
    """Mutable state of one run: current stage, warnings, timing."""

    def __init__(self, book_id: str, requester_id: str):
        self.book_id = book_id
        self.requester_id = requester_id
        self.stage = GenerationStage.REQUESTED
        self.started_at = utcnow()
        self._start = time.monotonic()
        self.warnings: List[str] = []

    def advance(self, stage: GenerationStage):
        logger.info(f"Book {self.book_id}: {self.stage.value} -> {stage.value}")
        self.stage = stage

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._start) * 1000)


class VoucherBookPDFGenerator:
    """
    Orchestrates layout, content resolution, rendering and upload.

    No lock is held while rendering. The book row is re-checked by the
    commit itself: it only lands while the book is still eligible and its
    pdf_url is still what this run saw at the start, so two concurrent
    runs for one book cannot both commit.
    """

    def __init__(
        self,
        repository: VoucherBookRepository,
        layout_engine: LayoutEngine,
        resolver: ContentResolver,
        renderer: VoucherBookRenderer,
        storage: FileStorage,
        rate_limiter: Optional[RateLimiter] = None,
        cache: Optional[RedisClient] = None,
        storage_prefix: str = "voucher-books",
    ):
        self.repository = repository
        self.layout = layout_engine
        self.resolver = resolver
        self.renderer = renderer
        self.storage = storage
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.storage_prefix = storage_prefix.strip("/")

    async def generate(
        self,
        book_id: str,
        requester_id: str,
        options: Optional[GenerateOptions] = None,
    ) -> GenerationResult:
        """
        Generate the PDF for a book.

        Args:
            book_id: Book to generate
            requester_id: Caller, used for rate limiting and audit columns
            options: force regeneration and priority

        Returns:
            GenerationResult; success is False on any failure
        """
        options = options or GenerateOptions()
        run = GenerationRun(book_id, requester_id)
        stored: Optional[StoredFile] = None
        logger.info(
            f"PDF generation requested for book {book_id} by {requester_id} "
            f"(force={options.force}, priority={options.priority.value})"
        )

        try:
            self._check_rate_limit(requester_id)
            book = self._check_preconditions(book_id, options)

            run.advance(GenerationStage.LAYING_OUT)
            placements, plan = self._lay_out(book)

            run.advance(GenerationStage.RESOLVING_CONTENT)
            resolved = await self.resolver.resolve(book, placements, plan)
            run.warnings.extend(resolved.warnings)

            run.advance(GenerationStage.RENDERING)
            rendered: RenderedPdf = await self.renderer.render_async(resolved)
            run.warnings.extend(rendered.warnings)

            run.advance(GenerationStage.UPLOADING)
            stored = await self.storage.save_file(
                rendered.content, prefix=f"{self.storage_prefix}/{book.id}"
            )

            generated_at = utcnow()
            committed = self.repository.commit_generated_pdf(
                book.id,
                pdf_url=stored.url,
                generated_at=generated_at,
                previous_pdf_url=book.pdf_url,
                updated_by=requester_id,
            )
            if not committed:
                raise PreconditionError(
                    "Voucher book changed during generation; another request "
                    "may have generated its PDF"
                )

            run.advance(GenerationStage.COMPLETED)
        except Exception as e:
            await self._discard(stored)
            return self._failure(run, e)

        if options.force and book.pdf_url and book.pdf_url != stored.url:
            await self._delete_previous(book.pdf_url, run)
        await self._invalidate(book.id, run)

        logger.info(f"PDF generated for book {book.id}: {stored.url} ({run.elapsed_ms}ms)")
        return GenerationResult(
            success=True,
            book_id=book.id,
            stage=run.stage,
            pdf_url=stored.url,
            generated_at=generated_at,
            page_count=rendered.page_count,
            file_size=stored.size,
            warnings=run.warnings,
            processing_time_ms=run.elapsed_ms,
        )

    # ==================== STAGES ====================

    def _check_rate_limit(self, requester_id: str):
        if self.rate_limiter is None:
            return
        decision = self.rate_limiter.check(requester_id)
        if not decision.allowed:
            raise RateLimitedError(requester_id, decision.retry_after)

    def _check_preconditions(self, book_id: str, options: GenerateOptions) -> BookResponse:
        book = self.repository.get_book(book_id)
        if not book:
            raise BookNotFoundError(f"Voucher book not found: {book_id}")
        if book.status not in GENERATION_ELIGIBLE:
            raise PreconditionError(
                f"Cannot generate PDF for a book in {book.status} status; "
                f"it must be {VoucherBookStatus.DRAFT.value} or "
                f"{VoucherBookStatus.READY_FOR_PRINT.value}"
            )
        if book.pdf_url and not options.force:
            raise PreconditionError(
                "PDF already exists for this voucher book. Use force to regenerate."
            )
        return BookResponse.model_validate(book.to_dict())

    def _lay_out(self, book: BookResponse):
        pages = self.repository.list_pages(book.id)
        layouts: Dict[int, PageLayoutType] = {
            p.page_number: PageLayoutType(p.layout_type) for p in pages
        }
        placements: List[PlacementResponse] = [
            placement_response(p) for p in self.repository.list_placements(book.id)
        ]
        items = [
            LayoutItem(
                item_id=p.id,
                size=p.size,
                page_number=p.page_number,
                position=p.position,
            )
            for p in placements
        ]
        plan: LayoutPlan = self.layout.assign(items, book.total_pages, layouts)
        logger.info(
            f"Book {book.id}: laid out {len(items)} placements on "
            f"{plan.pages_used}/{book.total_pages} pages"
        )
        return placements, plan

    # ==================== CLEANUP ====================

    def _failure(self, run: GenerationRun, error: Exception) -> GenerationResult:
        failed_stage = run.stage
        run.advance(GenerationStage.FAILED)
        if isinstance(error, VoucherBookError):
            kind = error.kind
            message = error.message
        else:
            kind = _STAGE_KINDS.get(failed_stage, ErrorKind.RENDER)
            message = str(error) or error.__class__.__name__

        if kind in (ErrorKind.PRECONDITION, ErrorKind.NOT_FOUND, ErrorKind.RATE_LIMITED):
            logger.warning(f"PDF generation rejected for book {run.book_id}: {message}")
        else:
            logger.error(
                f"PDF generation failed for book {run.book_id} at {failed_stage.value}: {message}",
                exc_info=not isinstance(error, VoucherBookError),
            )

        return GenerationResult(
            success=False,
            book_id=run.book_id,
            stage=run.stage,
            error=message,
            error_kind=kind,
            failed_stage=failed_stage,
            retry_after=getattr(error, "retry_after", None),
            warnings=run.warnings,
            processing_time_ms=run.elapsed_ms,
        )

    async def _discard(self, stored: Optional[StoredFile]):
        """Remove an uploaded file whose commit did not land."""
        if stored is None:
            return
        try:
            await self.storage.delete_file(stored.url)
        except StorageError as e:
            logger.warning(f"Could not remove orphaned file {stored.url}: {e.message}")

    async def _delete_previous(self, pdf_url: str, run: GenerationRun):
        try:
            await self.storage.delete_file(pdf_url)
        except StorageError as e:
            message = f"Previous PDF was not deleted: {e.message}"
            logger.warning(message)
            run.warnings.append(message)

    async def _invalidate(self, book_id: str, run: GenerationRun):
        if self.cache is None:
            return
        try:
            await self.cache.delete(*book_cache_keys(book_id))
        except Exception as e:
            message = f"Cache invalidation failed for book {book_id}: {e}"
            logger.warning(message)
            run.warnings.append(message)


# Kind reported for unexpected exceptions, by the stage they escaped from
_STAGE_KINDS: Dict[GenerationStage, ErrorKind] = {
    GenerationStage.REQUESTED: ErrorKind.PRECONDITION,
    GenerationStage.LAYING_OUT: ErrorKind.LAYOUT,
    GenerationStage.RESOLVING_CONTENT: ErrorKind.RESOLUTION,
    GenerationStage.RENDERING: ErrorKind.RENDER,
    GenerationStage.UPLOADING: ErrorKind.STORAGE,
}
