"""
Voucher Book Module
Printable voucher books: page layout, content resolution and PDF generation.

Features:
- Book, page and ad placement administration
- Greedy grid layout (2 x 4 units per page)
- Batch content resolution against voucher, provider and crypto services
- ReportLab rendering with QR codes and short codes
- PDF generation runs with a conditional final commit
- Distribution tracking for printed books

Usage:
    from core.voucher_book import VoucherBookPDFGenerator, GenerateOptions

    result = await generator.generate(book_id, requester_id, GenerateOptions(force=True))
    if not result.success:
        print(result.error_kind, result.error)
"""

from .distribution import BookDistributionService
from .exceptions import ErrorKind, VoucherBookError
from .generator import VoucherBookPDFGenerator
from .layout_engine import LayoutEngine
from .models import VoucherBook, VoucherBookPage, AdPlacement, BookDistribution
from .schemas import GenerateOptions, GenerationResult
from .service import VoucherBookService

__all__ = [
    "BookDistributionService",
    "ErrorKind",
    "VoucherBookError",
    "VoucherBookPDFGenerator",
    "LayoutEngine",
    "VoucherBook",
    "VoucherBookPage",
    "AdPlacement",
    "BookDistribution",
    "GenerateOptions",
    "GenerationResult",
    "VoucherBookService",
]

__version__ = "1.0.0"
