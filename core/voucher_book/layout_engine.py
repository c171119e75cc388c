"""
Page Layout Engine

Places content items on a fixed page grid of 2 columns x 4 rows (8 units).
Units are numbered 1..8 row by row:

    +---+---+
    | 1 | 2 |
    +---+---+
    | 3 | 4 |
    +---+---+
    | 5 | 6 |
    +---+---+
    | 7 | 8 |
    +---+---+

A placement always covers a rectangle: SINGLE is one cell, QUARTER one
full row, HALF two full rows and FULL the whole page. Cover pages keep the
top half for the book banner and expose units 1..4 on the bottom half.

Everything here is pure: no I/O, no clock, no randomness.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .exceptions import (
    InsufficientPagesError,
    LayoutError,
    PlacementConflictError,
    ValidationError,
)
from .models import AdSize, PageLayoutType
from .schemas import SPACES_BY_SIZE

GRID_COLUMNS = 2
GRID_ROWS = 4
STANDARD_CAPACITY = GRID_COLUMNS * GRID_ROWS
COVER_CAPACITY = STANDARD_CAPACITY // 2

# Page sizes in millimetres (width, height)
PAGE_FORMATS: Dict[str, Tuple[float, float]] = {
    "A4": (210.0, 297.0),
    "LETTER": (215.9, 279.4),
}

# Cells spanned by each size: (columns, rows)
SIZE_SHAPES = {
    AdSize.SINGLE: (1, 1),
    AdSize.QUARTER: (2, 1),
    AdSize.HALF: (2, 2),
    AdSize.FULL: (2, 4),
}


def spaces_for(size) -> int:
    """Number of grid units a placement of this size occupies."""
    return SPACES_BY_SIZE[AdSize(size)]


def page_capacity(layout_type) -> int:
    if PageLayoutType(layout_type) == PageLayoutType.COVER:
        return COVER_CAPACITY
    return STANDARD_CAPACITY


@dataclass(frozen=True)
class SlotBounds:
    """Slot rectangle in millimetres, origin at the top-left page corner."""
    x: float
    y: float
    width: float
    height: float


@dataclass
class LayoutItem:
    """A content item to place. Pinned items carry page_number and position."""
    item_id: str
    size: AdSize
    page_number: Optional[int] = None
    position: Optional[int] = None

    @property
    def is_pinned(self) -> bool:
        return self.page_number is not None and self.position is not None


@dataclass(frozen=True)
class SlotAssignment:
    item_id: str
    page_number: int
    position: int
    size: AdSize

    @property
    def spaces_used(self) -> int:
        return spaces_for(self.size)

    @property
    def units(self) -> range:
        return range(self.position, self.position + self.spaces_used)


@dataclass
class PageSlots:
    """Occupancy of one page."""
    page_number: int
    layout_type: PageLayoutType = PageLayoutType.STANDARD
    occupied: Set[int] = field(default_factory=set)
    assignments: List[SlotAssignment] = field(default_factory=list)

    @property
    def capacity(self) -> int:
        return page_capacity(self.layout_type)

    @property
    def available_spaces(self) -> List[int]:
        return [u for u in range(1, self.capacity + 1) if u not in self.occupied]

    @property
    def used_spaces(self) -> int:
        return len(self.occupied)


@dataclass
class LayoutPlan:
    """Result of a layout run: every page and every item's slot."""
    pages: List[PageSlots]
    assignments: Dict[str, SlotAssignment]

    @property
    def pages_used(self) -> int:
        used = [p.page_number for p in self.pages if p.assignments]
        return max(used) if used else 0

    def page(self, page_number: int) -> PageSlots:
        return self.pages[page_number - 1]


class LayoutEngine:
    """
    Greedy first-fit layout on the page grid.

    Pinned items are reserved first and validated; the remaining items are
    then placed in input order at the lowest free aligned position of the
    first page that has room.
    """

    def __init__(
        self,
        page_format: str = "A4",
        margin_mm: float = 10.0,
        padding_mm: float = 5.0,
    ):
        if page_format.upper() not in PAGE_FORMATS:
            raise ValueError(f"Unsupported page format: {page_format}")
        self.page_format = page_format.upper()
        self.page_width, self.page_height = PAGE_FORMATS[self.page_format]
        self.margin_mm = margin_mm
        self.padding_mm = padding_mm

    # ==================== GRID RULES ====================

    def create_empty_page(
        self, page_number: int, layout_type: PageLayoutType = PageLayoutType.STANDARD
    ) -> PageSlots:
        return PageSlots(page_number=page_number, layout_type=PageLayoutType(layout_type))

    @staticmethod
    def can_place(
        occupied: Iterable[int],
        position: int,
        size,
        capacity: int = STANDARD_CAPACITY,
    ) -> bool:
        """Check bounds, rectangle alignment and overlap for a placement."""
        size = AdSize(size)
        spaces = spaces_for(size)
        if position < 1 or position + spaces - 1 > capacity:
            return False

        index = position - 1
        row, col = divmod(index, GRID_COLUMNS)
        span_cols, span_rows = SIZE_SHAPES[size]
        if col + span_cols > GRID_COLUMNS:
            return False
        if span_rows > 1 and row % span_rows != 0:
            return False

        taken = set(occupied)
        return not any(unit in taken for unit in range(position, position + spaces))

    def find_position(self, page: PageSlots, size) -> Optional[int]:
        """Lowest position on the page where the size fits, if any."""
        for position in range(1, page.capacity + 1):
            if self.can_place(page.occupied, position, size, page.capacity):
                return position
        return None

    def allocate(self, page: PageSlots, item: LayoutItem) -> Optional[SlotAssignment]:
        """Place an item at the first free position; None when the page is full."""
        position = self.find_position(page, item.size)
        if position is None:
            return None
        return self._occupy(page, item.item_id, position, item.size)

    def reserve(self, page: PageSlots, item_id: str, position: int, size) -> SlotAssignment:
        """Place an item at a fixed position or raise PlacementConflictError."""
        size = AdSize(size)
        spaces = spaces_for(size)
        if spaces > page.capacity:
            raise PlacementConflictError(
                f"{size.value} placement needs {spaces} spaces but page "
                f"{page.page_number} holds {page.capacity}",
                [item_id],
            )
        if self.can_place(page.occupied, position, size, page.capacity):
            return self._occupy(page, item_id, position, size)

        wanted = set(range(position, position + spaces))
        clashing = [a.item_id for a in page.assignments if wanted.intersection(a.units)]
        if clashing:
            raise PlacementConflictError(
                f"Position {position} on page {page.page_number} overlaps existing placements",
                [item_id] + clashing,
            )
        raise PlacementConflictError(
            f"{size.value} placement cannot start at position {position} "
            f"on page {page.page_number}",
            [item_id],
        )

    def _occupy(self, page: PageSlots, item_id: str, position: int, size: AdSize) -> SlotAssignment:
        assignment = SlotAssignment(
            item_id=item_id, page_number=page.page_number, position=position, size=size
        )
        page.occupied.update(assignment.units)
        page.assignments.append(assignment)
        page.assignments.sort(key=lambda a: a.position)
        return assignment

    # ==================== BOOK LAYOUT ====================

    def assign(
        self,
        items: Sequence[LayoutItem],
        total_pages: int,
        layouts: Optional[Dict[int, PageLayoutType]] = None,
    ) -> LayoutPlan:
        """
        Lay out items over pages 1..total_pages.

        Args:
            items: Content items in placement order
            total_pages: Number of pages in the book
            layouts: Layout type per page number (standard when missing)

        Returns:
            LayoutPlan with every item assigned

        Raises:
            PlacementConflictError: Pinned items overlap or leave the grid
            InsufficientPagesError: Content needs more pages than the book has
            LayoutError: A pinned item references a page outside the book
            ValidationError: An item is larger than any page of the book
        """
        layouts = layouts or {}
        pages = [
            self.create_empty_page(n, layouts.get(n, PageLayoutType.STANDARD))
            for n in range(1, total_pages + 1)
        ]
        assignments: Dict[str, SlotAssignment] = {}
        largest_page = max((p.capacity for p in pages), default=STANDARD_CAPACITY)

        for item in items:
            if item.is_pinned:
                if not 1 <= item.page_number <= total_pages:
                    raise LayoutError(
                        f"Placement {item.item_id} is on page {item.page_number} "
                        f"but the book has {total_pages} pages"
                    )
                page = pages[item.page_number - 1]
                assignments[item.item_id] = self.reserve(
                    page, item.item_id, item.position, item.size
                )

        overflow: List[PageSlots] = []
        for item in items:
            if item.is_pinned:
                continue
            if spaces_for(item.size) > largest_page:
                raise ValidationError(
                    f"{AdSize(item.size).value} placement {item.item_id} exceeds page capacity"
                )
            assignment = self._first_fit(pages, item)
            if assignment is None:
                # Keep packing on virtual pages to report how many are needed
                assignment = self._first_fit(overflow, item)
                if assignment is None:
                    extra = self.create_empty_page(total_pages + len(overflow) + 1)
                    overflow.append(extra)
                    assignment = self.allocate(extra, item)
            assignments[item.item_id] = assignment

        if overflow:
            raise InsufficientPagesError(total_pages + len(overflow), total_pages)

        return LayoutPlan(pages=pages, assignments=assignments)

    def _first_fit(self, pages: Sequence[PageSlots], item: LayoutItem) -> Optional[SlotAssignment]:
        for page in pages:
            assignment = self.allocate(page, item)
            if assignment is not None:
                return assignment
        return None

    def suggest(self, page: PageSlots, sizes: Sequence[AdSize] = tuple(AdSize)) -> List[SlotAssignment]:
        """First free position for each size that still fits on the page."""
        suggestions = []
        for size in sizes:
            position = self.find_position(page, size)
            if position is not None:
                suggestions.append(
                    SlotAssignment(
                        item_id="", page_number=page.page_number, position=position, size=AdSize(size)
                    )
                )
        return suggestions

    # ==================== GEOMETRY ====================

    def slot_bounds(
        self,
        position: int,
        size,
        layout_type: PageLayoutType = PageLayoutType.STANDARD,
    ) -> SlotBounds:
        """Slot rectangle for a placement on this engine's page format."""
        return calculate_bounds(
            position,
            size,
            self.page_width,
            self.page_height,
            self.margin_mm,
            self.padding_mm,
            layout_type,
        )


def calculate_bounds(
    position: int,
    size,
    page_width: float,
    page_height: float,
    margin: float,
    padding: float = 5.0,
    layout_type: PageLayoutType = PageLayoutType.STANDARD,
) -> SlotBounds:
    """
    Derive slot bounds from position and size.

    cell_w = (W - 2m) / 2, cell_h = (H - 2m) / 4; the slot is inset by
    half the padding on each side.
    """
    size = AdSize(size)
    if PageLayoutType(layout_type) == PageLayoutType.COVER:
        position += COVER_CAPACITY
    row, col = divmod(position - 1, GRID_COLUMNS)
    span_cols, span_rows = SIZE_SHAPES[size]

    cell_width = (page_width - 2 * margin) / GRID_COLUMNS
    cell_height = (page_height - 2 * margin) / GRID_ROWS
    return SlotBounds(
        x=margin + col * cell_width + padding / 2,
        y=margin + row * cell_height + padding / 2,
        width=span_cols * cell_width - padding,
        height=span_rows * cell_height - padding,
    )
