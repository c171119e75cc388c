"""
Voucher Book Repository
Database access layer for books, pages, placements and distributions.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple
from pathlib import Path
from sqlalchemy import create_engine, func, or_, update, delete
from sqlalchemy.orm import sessionmaker, Session

from .models import (
    Base,
    VoucherBook,
    VoucherBookPage,
    AdPlacement,
    BookDistribution,
    PageLayoutType,
    VoucherBookStatus,
    generate_uuid,
    utcnow,
)

logger = logging.getLogger(__name__)

GENERATION_ELIGIBLE = (
    VoucherBookStatus.DRAFT.value,
    VoucherBookStatus.READY_FOR_PRINT.value,
)


class VoucherBookRepository:
    """
    Repository for voucher book database operations.

    Books and pages come back as detached ORM objects (sessions do not
    expire on commit); placements come back as dicts carrying their page
    number.
    """

    def __init__(self, db_path: str = "data/voucher_books.db"):
        """Initialize repository with database path."""
        self.db_path = str(db_path)
        self._engine = None
        self._session_factory = None

    @property
    def engine(self):
        """Get or create SQLAlchemy engine."""
        if self._engine is None:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._engine = create_engine(
                f"sqlite:///{self.db_path}",
                echo=False,
                connect_args={"check_same_thread": False}
            )
            Base.metadata.create_all(self._engine)
        return self._engine

    @property
    def session_factory(self):
        """Get session factory."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        return self._session_factory

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.session_factory()

    # ==================== BOOK OPERATIONS ====================

    def create_book(
        self,
        title: str,
        year: int,
        month: Optional[int] = None,
        edition: Optional[str] = None,
        book_type: str = "monthly",
        total_pages: int = 24,
        metadata: Optional[dict] = None,
        created_by: Optional[str] = None,
        include_cover: bool = False,
    ) -> VoucherBook:
        """Create a book in draft status together with its page rows."""
        with self.get_session() as session:
            book = VoucherBook(
                id=generate_uuid(),
                title=title,
                edition=edition,
                book_type=book_type,
                year=year,
                month=month,
                status=VoucherBookStatus.DRAFT.value,
                total_pages=total_pages,
                extra_metadata=metadata or {},
                created_by=created_by,
                updated_by=created_by,
            )
            session.add(book)
            for number in range(1, total_pages + 1):
                layout = PageLayoutType.COVER if include_cover and number == 1 else PageLayoutType.STANDARD
                session.add(VoucherBookPage(
                    id=generate_uuid(),
                    book_id=book.id,
                    page_number=number,
                    layout_type=layout.value,
                ))
            session.commit()
            logger.info(f"Created voucher book: {book.title} ({book.id}) with {total_pages} pages")
            return book

    def get_book(self, book_id: str) -> Optional[VoucherBook]:
        """Get book by ID."""
        with self.get_session() as session:
            return session.get(VoucherBook, book_id)

    def list_books(
        self,
        status: Optional[str] = None,
        book_type: Optional[str] = None,
        year: Optional[int] = None,
        month: Optional[int] = None,
        search: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[VoucherBook], int]:
        """List books with optional filters, newest first."""
        with self.get_session() as session:
            query = session.query(VoucherBook)

            if status:
                query = query.filter(VoucherBook.status == status)
            if book_type:
                query = query.filter(VoucherBook.book_type == book_type)
            if year:
                query = query.filter(VoucherBook.year == year)
            if month:
                query = query.filter(VoucherBook.month == month)
            if search:
                query = query.filter(or_(
                    VoucherBook.title.ilike(f"%{search}%"),
                    VoucherBook.edition.ilike(f"%{search}%"),
                ))

            total = query.count()
            books = (
                query.order_by(VoucherBook.year.desc(), VoucherBook.month.desc(), VoucherBook.created_at.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            return books, total

    def update_book(
        self,
        book_id: str,
        updated_by: Optional[str] = None,
        **fields,
    ) -> Optional[VoucherBook]:
        """
        Update book columns. Changing total_pages adds or removes page rows;
        callers check beforehand that removed pages are empty.
        """
        with self.get_session() as session:
            book = session.get(VoucherBook, book_id)
            if not book:
                return None

            if "metadata" in fields:
                fields["extra_metadata"] = fields.pop("metadata")

            new_total = fields.pop("total_pages", None)
            if new_total is not None and new_total != book.total_pages:
                self._resize_pages(session, book, new_total)

            for key, value in fields.items():
                setattr(book, key, value)
            book.updated_by = updated_by
            book.updated_at = utcnow()

            session.commit()
            logger.info(f"Updated voucher book: {book.id}")
            return book

    def _resize_pages(self, session: Session, book: VoucherBook, new_total: int):
        if new_total > book.total_pages:
            for number in range(book.total_pages + 1, new_total + 1):
                session.add(VoucherBookPage(
                    id=generate_uuid(),
                    book_id=book.id,
                    page_number=number,
                    layout_type=PageLayoutType.STANDARD.value,
                ))
        else:
            session.execute(
                delete(VoucherBookPage).where(
                    VoucherBookPage.book_id == book.id,
                    VoucherBookPage.page_number > new_total,
                )
            )
        book.total_pages = new_total

    def set_status(
        self,
        book_id: str,
        status: str,
        updated_by: Optional[str] = None,
        expected_status: Optional[str] = None,
    ) -> Optional[VoucherBook]:
        """
        Move a book to a new status.

        Returns None when the book is gone or no longer in expected_status.
        """
        now = utcnow()
        values = {"status": status, "updated_by": updated_by, "updated_at": now}
        if status == VoucherBookStatus.PUBLISHED.value:
            values["published_at"] = now
        elif status == VoucherBookStatus.ARCHIVED.value:
            values["archived_at"] = now

        with self.get_session() as session:
            stmt = update(VoucherBook).where(VoucherBook.id == book_id)
            if expected_status is not None:
                stmt = stmt.where(VoucherBook.status == expected_status)
            result = session.execute(stmt.values(**values))
            session.commit()
            if result.rowcount == 0:
                return None
            logger.info(f"Voucher book {book_id} status -> {status}")
            return session.get(VoucherBook, book_id)

    def commit_generated_pdf(
        self,
        book_id: str,
        pdf_url: str,
        generated_at: datetime,
        previous_pdf_url: Optional[str] = None,
        updated_by: Optional[str] = None,
    ) -> bool:
        """
        Record a generated PDF in one conditional UPDATE.

        The row changes only while the book is still eligible and its
        pdf_url is still what the caller saw when it started. Returns False
        when another writer got there first.
        """
        if previous_pdf_url is None:
            pdf_condition = VoucherBook.pdf_url.is_(None)
        else:
            pdf_condition = VoucherBook.pdf_url == previous_pdf_url

        with self.get_session() as session:
            result = session.execute(
                update(VoucherBook)
                .where(
                    VoucherBook.id == book_id,
                    VoucherBook.status.in_(GENERATION_ELIGIBLE),
                    pdf_condition,
                )
                .values(
                    status=VoucherBookStatus.READY_FOR_PRINT.value,
                    pdf_url=pdf_url,
                    pdf_generated_at=generated_at,
                    updated_by=updated_by,
                    updated_at=utcnow(),
                )
            )
            session.commit()
            return result.rowcount == 1

    def count_books(self) -> int:
        with self.get_session() as session:
            return session.query(func.count(VoucherBook.id)).scalar()

    def delete_book(self, book_id: str) -> bool:
        """Delete book with its pages and placements."""
        with self.get_session() as session:
            book = session.get(VoucherBook, book_id)
            if not book:
                return False
            session.delete(book)
            session.commit()
            logger.info(f"Deleted voucher book: {book_id}")
            return True

    # ==================== PAGE OPERATIONS ====================

    def list_pages(self, book_id: str) -> List[VoucherBookPage]:
        with self.get_session() as session:
            return (
                session.query(VoucherBookPage)
                .filter(VoucherBookPage.book_id == book_id)
                .order_by(VoucherBookPage.page_number)
                .all()
            )

    def get_page(self, book_id: str, page_number: int) -> Optional[VoucherBookPage]:
        with self.get_session() as session:
            return (
                session.query(VoucherBookPage)
                .filter(
                    VoucherBookPage.book_id == book_id,
                    VoucherBookPage.page_number == page_number,
                )
                .first()
            )

    def update_page_layout(self, book_id: str, page_number: int, layout_type: str) -> Optional[VoucherBookPage]:
        with self.get_session() as session:
            page = (
                session.query(VoucherBookPage)
                .filter(
                    VoucherBookPage.book_id == book_id,
                    VoucherBookPage.page_number == page_number,
                )
                .first()
            )
            if not page:
                return None
            page.layout_type = layout_type
            session.commit()
            return page

    # ==================== PLACEMENT OPERATIONS ====================

    def _placement_rows(self, session: Session):
        return session.query(AdPlacement, VoucherBookPage.page_number).outerjoin(
            VoucherBookPage, AdPlacement.page_id == VoucherBookPage.id
        )

    def list_placements(
        self,
        book_id: str,
        active_only: bool = True,
        page_number: Optional[int] = None,
    ) -> List[Dict]:
        """
        List placements ordered by page, position, then display order.
        Unpinned placements come last, in display order.
        """
        with self.get_session() as session:
            query = self._placement_rows(session).filter(AdPlacement.book_id == book_id)
            if active_only:
                query = query.filter(AdPlacement.is_active == True)
            if page_number is not None:
                query = query.filter(VoucherBookPage.page_number == page_number)
            rows = query.order_by(
                VoucherBookPage.page_number.is_(None),
                VoucherBookPage.page_number,
                AdPlacement.position,
                AdPlacement.display_order,
                AdPlacement.created_at,
            ).all()
            return [placement.to_dict(page_number=number) for placement, number in rows]

    def get_placement(self, placement_id: str) -> Optional[Dict]:
        with self.get_session() as session:
            row = self._placement_rows(session).filter(AdPlacement.id == placement_id).first()
            if not row:
                return None
            placement, number = row
            return placement.to_dict(page_number=number)

    def create_placement(
        self,
        book_id: str,
        page_id: Optional[str],
        position: Optional[int],
        size: str,
        columns: Dict,
        display_order: int = 0,
        created_by: Optional[str] = None,
    ) -> Dict:
        """Create a placement from flat content columns."""
        with self.get_session() as session:
            placement = AdPlacement(
                id=generate_uuid(),
                book_id=book_id,
                page_id=page_id,
                position=position,
                size=size,
                display_order=display_order,
                created_by=created_by,
                updated_by=created_by,
                **columns,
            )
            session.add(placement)
            session.commit()
            placement_id = placement.id
        logger.info(f"Created {columns.get('content_type')} placement {placement_id} in book {book_id}")
        return self.get_placement(placement_id)

    def update_placement(
        self,
        placement_id: str,
        updated_by: Optional[str] = None,
        **fields,
    ) -> Optional[Dict]:
        with self.get_session() as session:
            placement = session.get(AdPlacement, placement_id)
            if not placement:
                return None
            for key, value in fields.items():
                setattr(placement, key, value)
            placement.updated_by = updated_by
            placement.updated_at = utcnow()
            session.commit()
        return self.get_placement(placement_id)

    def delete_placement(self, placement_id: str) -> bool:
        with self.get_session() as session:
            placement = session.get(AdPlacement, placement_id)
            if not placement:
                return False
            session.delete(placement)
            session.commit()
            return True

    def count_placements_after_page(self, book_id: str, page_number: int) -> int:
        """Count placements pinned to pages with a higher number."""
        with self.get_session() as session:
            return (
                session.query(func.count(AdPlacement.id))
                .join(VoucherBookPage, AdPlacement.page_id == VoucherBookPage.id)
                .filter(
                    AdPlacement.book_id == book_id,
                    VoucherBookPage.page_number > page_number,
                )
                .scalar()
            )

    # ==================== DISTRIBUTION OPERATIONS ====================

    def create_distribution(self, **fields) -> BookDistribution:
        with self.get_session() as session:
            distribution = BookDistribution(id=generate_uuid(), **fields)
            session.add(distribution)
            session.commit()
            logger.info(
                f"Created distribution {distribution.id} for book {distribution.book_id} "
                f"to {distribution.business_name}"
            )
            return distribution

    def get_distribution(self, distribution_id: str) -> Optional[BookDistribution]:
        with self.get_session() as session:
            return session.get(BookDistribution, distribution_id)

    def list_distributions(
        self,
        book_id: Optional[str] = None,
        status: Optional[str] = None,
        business_name: Optional[str] = None,
    ) -> List[BookDistribution]:
        with self.get_session() as session:
            query = session.query(BookDistribution)
            if book_id:
                query = query.filter(BookDistribution.book_id == book_id)
            if status:
                query = query.filter(BookDistribution.status == status)
            if business_name:
                query = query.filter(BookDistribution.business_name == business_name)
            return query.order_by(BookDistribution.created_at.desc()).all()

    def update_distribution(
        self,
        distribution_id: str,
        expected_statuses: Sequence[str],
        **values,
    ) -> Optional[BookDistribution]:
        """Update a distribution only while it is in one of expected_statuses."""
        values["updated_at"] = utcnow()
        with self.get_session() as session:
            result = session.execute(
                update(BookDistribution)
                .where(
                    BookDistribution.id == distribution_id,
                    BookDistribution.status.in_(list(expected_statuses)),
                )
                .values(**values)
            )
            session.commit()
            if result.rowcount == 0:
                return None
            return session.get(BookDistribution, distribution_id)

    def delete_distribution(self, distribution_id: str) -> bool:
        with self.get_session() as session:
            distribution = session.get(BookDistribution, distribution_id)
            if not distribution:
                return False
            session.delete(distribution)
            session.commit()
            return True

    def count_distributions(self, book_id: str) -> int:
        with self.get_session() as session:
            return (
                session.query(func.count(BookDistribution.id))
                .filter(BookDistribution.book_id == book_id)
                .scalar()
            )
