"""
Voucher Book Custom Exceptions
"""

from enum import Enum
from typing import Iterable, Optional


class ErrorKind(str, Enum):
    """Failure category, used by callers to pick a status code."""
    PRECONDITION = "precondition"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    VALIDATION = "validation"
    RESOLUTION = "resolution"
    LAYOUT = "layout"
    RENDER = "render"
    STORAGE = "storage"


class VoucherBookError(Exception):
    """Base exception for voucher book operations"""
    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        if kind is not None:
            self.kind = kind
        self.message = message
        super().__init__(message)


class PreconditionError(VoucherBookError):
    """Book is not in a state that allows the operation"""
    kind = ErrorKind.PRECONDITION


class BookNotFoundError(VoucherBookError):
    """Referenced book, page, placement or distribution does not exist"""
    kind = ErrorKind.NOT_FOUND


class ValidationError(VoucherBookError):
    """Invalid admin input"""
    kind = ErrorKind.VALIDATION


class RateLimitedError(VoucherBookError):
    """Caller exceeded its generation quota"""
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, caller_id: str, retry_after: int):
        self.caller_id = caller_id
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit exceeded for {caller_id}, retry after {retry_after}s"
        )


class ContentResolutionError(VoucherBookError):
    """Upstream content could not be resolved"""
    kind = ErrorKind.RESOLUTION

    def __init__(self, message: str, missing_ids: Iterable[str] = ()):
        self.missing_ids = list(missing_ids)
        super().__init__(message)


class LayoutError(VoucherBookError):
    """Placements cannot be laid out on the book's pages"""
    kind = ErrorKind.LAYOUT


class InsufficientPagesError(LayoutError):
    """Content needs more pages than the book has"""
    def __init__(self, required_pages: int, total_pages: int):
        self.required_pages = required_pages
        self.total_pages = total_pages
        super().__init__(
            f"Insufficient pages: content requires {required_pages} pages "
            f"but the book has {total_pages}"
        )


class PlacementConflictError(LayoutError):
    """Placement overlaps another placement or leaves the grid"""
    def __init__(self, message: str, conflicting_ids: Iterable[str] = ()):
        self.conflicting_ids = list(conflicting_ids)
        super().__init__(message)


class RenderError(VoucherBookError):
    """PDF rendering failed"""
    kind = ErrorKind.RENDER


class StorageError(VoucherBookError):
    """Storing or deleting a file failed"""
    kind = ErrorKind.STORAGE
