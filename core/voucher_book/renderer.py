"""
Voucher Book Renderer using ReportLab.

Draws a resolved book onto a canvas one page at a time, in page order,
and placements in position order within a page. Slot geometry comes from
the layout engine, so identical input always gives identical geometry.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from io import BytesIO
from typing import List, Optional

from reportlab.graphics import renderPDF
from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing
from reportlab.lib.colors import HexColor, black, white
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas as pdf_canvas

from .exceptions import RenderError
from .layout_engine import LayoutEngine, SlotBounds
from .models import ContentType, PageLayoutType
from .schemas import ResolvedBook, ResolvedPage, ResolvedPlacement

logger = logging.getLogger(__name__)

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]

BORDER_COLOR = HexColor("#CCCCCC")
ACCENT_COLOR = HexColor("#E4572E")
MUTED_COLOR = HexColor("#777777")

TITLE_FONT = "Helvetica-Bold"
BODY_FONT = "Helvetica"
NOTE_FONT = "Helvetica-Oblique"


@dataclass
class RenderedPdf:
    """PDF bytes plus what was degraded while drawing."""
    content: bytes
    page_count: int
    warnings: List[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.content)


class VoucherBookRenderer:
    """
    Render ResolvedBook to PDF bytes.

    Bad images are replaced by a note in their slot; voucher blocks
    without a short code or a valid QR payload abort the render.
    """

    def __init__(self, layout_engine: LayoutEngine, language: str = "en"):
        self.layout = layout_engine
        self.language = language
        self.page_width = layout_engine.page_width * mm
        self.page_height = layout_engine.page_height * mm

    def render(self, book: ResolvedBook) -> RenderedPdf:
        """
        Render every page of the book.

        Raises:
            RenderError: A voucher block cannot be produced or the
                canvas fails to serialize
        """
        buffer = BytesIO()
        # invariant=1 pins creation date and document id
        canvas = pdf_canvas.Canvas(
            buffer,
            pagesize=(self.page_width, self.page_height),
            invariant=1,
        )
        canvas.setTitle(self._book_title(book))
        canvas.setAuthor("Voucher Book Service")

        warnings: List[str] = []
        pages = sorted(book.pages, key=lambda p: p.page_number)
        for page in pages:
            self._render_page(canvas, book, page, warnings)
            canvas.showPage()

        try:
            canvas.save()
        except Exception as e:
            raise RenderError(f"Failed to write PDF: {e}") from e

        logger.info(f"Rendered voucher book {book.book_id}: {len(pages)} pages")
        return RenderedPdf(content=buffer.getvalue(), page_count=len(pages), warnings=warnings)

    async def render_async(self, book: ResolvedBook) -> RenderedPdf:
        """Render in a worker thread so the event loop stays free."""
        return await asyncio.to_thread(self.render, book)

    # ==================== PAGES ====================

    def _render_page(self, canvas, book: ResolvedBook, page: ResolvedPage, warnings: List[str]):
        if page.layout_type == PageLayoutType.COVER:
            self._draw_cover_banner(canvas, book)

        for placement in sorted(page.placements, key=lambda p: p.position):
            bounds = self.layout.slot_bounds(placement.position, placement.size, page.layout_type)
            self._render_placement(canvas, placement, bounds, warnings)

        canvas.setFont(BODY_FONT, 8)
        canvas.setFillColor(MUTED_COLOR)
        canvas.drawCentredString(self.page_width / 2, 4 * mm, str(page.page_number))
        canvas.setFillColor(black)

    def _draw_cover_banner(self, canvas, book: ResolvedBook):
        margin = self.layout.margin_mm * mm
        banner_height = (self.page_height - 2 * margin) / 2
        top = self.page_height - margin

        canvas.setFillColor(ACCENT_COLOR)
        canvas.rect(margin, top - banner_height, self.page_width - 2 * margin, banner_height, stroke=0, fill=1)

        canvas.setFillColor(white)
        canvas.setFont(TITLE_FONT, 28)
        canvas.drawCentredString(self.page_width / 2, top - banner_height / 2, book.title)
        canvas.setFont(BODY_FONT, 14)
        subtitle = self._issue_label(book)
        if subtitle:
            canvas.drawCentredString(self.page_width / 2, top - banner_height / 2 - 24, subtitle)
        canvas.setFillColor(black)

    # ==================== PLACEMENTS ====================

    def _render_placement(
        self, canvas, placement: ResolvedPlacement, bounds: SlotBounds, warnings: List[str]
    ):
        x, y, width, height = self._to_canvas(bounds)

        canvas.setStrokeColor(BORDER_COLOR)
        canvas.setLineWidth(0.5)
        canvas.rect(x, y, width, height, stroke=1, fill=0)

        content_type = placement.content.content_type
        if content_type == ContentType.VOUCHER.value:
            self._draw_voucher(canvas, placement, x, y, width, height)
        elif content_type == ContentType.IMAGE.value:
            self._draw_image(canvas, placement, x, y, width, height, warnings)
        else:
            self._draw_text_block(canvas, placement, x, y, width, height)

    def _draw_voucher(self, canvas, placement: ResolvedPlacement, x, y, width, height):
        if placement.voucher is None:
            raise RenderError(f"Voucher placement {placement.placement_id} has no voucher data")
        if not placement.short_code:
            raise RenderError(f"Voucher placement {placement.placement_id} has no short code")
        if not placement.qr_payload:
            raise RenderError(f"Voucher placement {placement.placement_id} has no QR payload")

        pad = 3 * mm
        qr_size = min(height - 2 * pad - 10, width / 2 - pad, 60 * mm)
        if qr_size <= 0:
            raise RenderError(f"Slot for voucher placement {placement.placement_id} is too small")

        qr_x = x + width - pad - qr_size
        qr_y = y + pad + 10
        self._draw_qr(canvas, placement, qr_x, qr_y, qr_size)

        canvas.setFont("Courier-Bold", 9)
        canvas.drawCentredString(qr_x + qr_size / 2, y + pad, placement.short_code)

        text_width = width - qr_size - 3 * pad
        voucher = placement.voucher
        cursor = y + height - pad - 12
        cursor = self._draw_wrapped(
            canvas, voucher.localized_title(self.language), x + pad, cursor, text_width, TITLE_FONT, 12, max_lines=3
        )

        discount = voucher.discount_label()
        if discount:
            canvas.setFillColor(ACCENT_COLOR)
            canvas.setFont(TITLE_FONT, 14)
            canvas.drawString(x + pad, cursor - 4, discount)
            canvas.setFillColor(black)
            cursor -= 22

        self._draw_wrapped(
            canvas,
            voucher.localized_description(self.language),
            x + pad,
            cursor,
            text_width,
            BODY_FONT,
            8,
            max_lines=max(int((cursor - y - pad) // 10), 0),
        )

        if voucher.expires_at is not None:
            canvas.setFont(NOTE_FONT, 7)
            canvas.setFillColor(MUTED_COLOR)
            canvas.drawString(x + pad, y + pad, f"Valid until {voucher.expires_at:%Y-%m-%d}")
            canvas.setFillColor(black)

    def _draw_qr(self, canvas, placement: ResolvedPlacement, x, y, size):
        try:
            widget = QrCodeWidget(placement.qr_payload)
            x1, y1, x2, y2 = widget.getBounds()
            drawing = Drawing(
                size, size, transform=[size / (x2 - x1), 0, 0, size / (y2 - y1), 0, 0]
            )
            drawing.add(widget)
            renderPDF.draw(drawing, canvas, x, y)
        except Exception as e:
            raise RenderError(
                f"Invalid QR payload for voucher placement {placement.placement_id}: {e}"
            ) from e

    def _draw_image(self, canvas, placement: ResolvedPlacement, x, y, width, height, warnings: List[str]):
        if placement.image_bytes is None:
            self._annotate(canvas, placement, x, y, width, height, "image unavailable", warnings)
            return
        try:
            image = ImageReader(BytesIO(placement.image_bytes))
            canvas.drawImage(
                image, x, y, width, height, preserveAspectRatio=True, anchor="c", mask="auto"
            )
        except Exception as e:
            self._annotate(canvas, placement, x, y, width, height, f"invalid image ({e})", warnings)

    def _draw_text_block(self, canvas, placement: ResolvedPlacement, x, y, width, height):
        content = placement.content
        pad = 3 * mm
        cursor = y + height - pad - 14
        cursor = self._draw_wrapped(canvas, content.title, x + pad, cursor, width - 2 * pad, TITLE_FONT, 14, max_lines=3)
        if content.description:
            self._draw_wrapped(
                canvas,
                content.description,
                x + pad,
                cursor - 4,
                width - 2 * pad,
                BODY_FONT,
                9,
                max_lines=max(int((cursor - y - 2 * pad) // 11), 0),
            )
        if content.content_type == ContentType.SPONSORED.value:
            canvas.setFont(NOTE_FONT, 7)
            canvas.setFillColor(MUTED_COLOR)
            label = f"Sponsored by {placement.provider_name}" if placement.provider_name else "Sponsored"
            canvas.drawRightString(x + width - pad, y + pad, label)
            canvas.setFillColor(black)

    def _annotate(self, canvas, placement, x, y, width, height, reason: str, warnings: List[str]):
        message = f"Page {placement.page_number}, position {placement.position}: {reason}"
        logger.warning(f"Skipped placement {placement.placement_id}: {reason}")
        warnings.append(message)
        canvas.setFont(NOTE_FONT, 8)
        canvas.setFillColor(MUTED_COLOR)
        canvas.drawCentredString(x + width / 2, y + height / 2, f"[{reason}]"[:80])
        canvas.setFillColor(black)

    # ==================== HELPERS ====================

    def _to_canvas(self, bounds: SlotBounds):
        """Top-left millimetre bounds to bottom-left canvas points."""
        x = bounds.x * mm
        width = bounds.width * mm
        height = bounds.height * mm
        y = self.page_height - bounds.y * mm - height
        return x, y, width, height

    @staticmethod
    def _draw_wrapped(canvas, text, x, top, max_width, font, size, max_lines: int = 0) -> float:
        """Draw wrapped text downwards from top; returns the next baseline."""
        if not text or max_lines <= 0:
            return top
        lines = simpleSplit(text, font, size, max_width)[:max_lines]
        canvas.setFont(font, size)
        leading = size * 1.2
        for line in lines:
            canvas.drawString(x, top, line)
            top -= leading
        return top

    @staticmethod
    def _issue_label(book: ResolvedBook) -> str:
        parts = []
        if book.edition:
            parts.append(book.edition)
        if book.month:
            parts.append(f"{MONTH_NAMES[book.month - 1]} {book.year}")
        else:
            parts.append(str(book.year))
        return " - ".join(parts)

    def _book_title(self, book: ResolvedBook) -> str:
        return f"{book.title} ({self._issue_label(book)})"
