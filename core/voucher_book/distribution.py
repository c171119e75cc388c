"""
Book Distribution Service
Tracks shipments of printed voucher books to business locations.

Lifecycle: pending -> shipped -> delivered, with cancel allowed from
pending or shipped. Distributions are never deleted with their book; a
book that has any distribution rows cannot be deleted.
"""
import logging
from typing import Dict, List, Optional

from .exceptions import BookNotFoundError, PreconditionError, ValidationError
from .models import DistributionStatus, VoucherBookStatus, utcnow
from .repository import VoucherBookRepository
from .schemas import (
    DistributionCancel,
    DistributionCreate,
    DistributionDeliver,
    DistributionListResponse,
    DistributionResponse,
    DistributionShip,
    DistributionStatistics,
    DistributionUpdate,
)

logger = logging.getLogger(__name__)

DISTRIBUTION_TRANSITIONS = {
    DistributionStatus.PENDING: {DistributionStatus.SHIPPED, DistributionStatus.CANCELLED},
    DistributionStatus.SHIPPED: {DistributionStatus.DELIVERED, DistributionStatus.CANCELLED},
    DistributionStatus.DELIVERED: set(),
    DistributionStatus.CANCELLED: set(),
}


class BookDistributionService:
    """Service layer for book distributions."""

    def __init__(self, repository: VoucherBookRepository):
        self.repository = repository

    async def create_distribution(
        self, data: DistributionCreate, user_id: Optional[str] = None
    ) -> DistributionResponse:
        """Record a distribution for a published book."""
        book = self.repository.get_book(data.book_id)
        if not book:
            raise BookNotFoundError(f"Voucher book not found: {data.book_id}")
        if book.status != VoucherBookStatus.PUBLISHED.value:
            raise PreconditionError("Only published voucher books can be distributed")

        fields = data.model_dump()
        fields["business_type"] = data.business_type.value
        distribution = self.repository.create_distribution(
            **fields,
            status=DistributionStatus.PENDING.value,
            shipped_quantity=0,
            created_by=user_id,
            updated_by=user_id,
        )
        return DistributionResponse.model_validate(distribution.to_dict())

    async def get_distribution(self, distribution_id: str) -> DistributionResponse:
        return DistributionResponse.model_validate(self._require(distribution_id).to_dict())

    async def list_distributions(
        self,
        book_id: Optional[str] = None,
        status: Optional[DistributionStatus] = None,
        business_name: Optional[str] = None,
    ) -> DistributionListResponse:
        rows = self.repository.list_distributions(
            book_id=book_id,
            status=status.value if status else None,
            business_name=business_name,
        )
        return DistributionListResponse(
            distributions=[DistributionResponse.model_validate(d.to_dict()) for d in rows],
            total=len(rows),
        )

    async def update_distribution(
        self,
        distribution_id: str,
        data: DistributionUpdate,
        user_id: Optional[str] = None,
    ) -> DistributionResponse:
        """Correct contact details; quantity changes only while pending."""
        current = self._require(distribution_id)
        fields = data.model_dump(exclude_unset=True)
        if not fields:
            return DistributionResponse.model_validate(current.to_dict())

        expected = [DistributionStatus.PENDING.value]
        if "requested_quantity" not in fields:
            expected.append(DistributionStatus.SHIPPED.value)
        if current.status not in expected:
            raise PreconditionError(
                f"Cannot update a {current.status} distribution"
                + (" quantity" if "requested_quantity" in fields else "")
            )
        return self._apply(distribution_id, expected, updated_by=user_id, **fields)

    async def ship(
        self, distribution_id: str, data: DistributionShip, user_id: Optional[str] = None
    ) -> DistributionResponse:
        current = self._require(distribution_id)
        self._check_transition(current.status, DistributionStatus.SHIPPED)
        if data.shipped_quantity > current.requested_quantity:
            raise ValidationError("Shipped quantity cannot exceed requested quantity")

        result = self._apply(
            distribution_id,
            [DistributionStatus.PENDING.value],
            status=DistributionStatus.SHIPPED.value,
            shipped_quantity=data.shipped_quantity,
            tracking_number=data.tracking_number,
            carrier=data.carrier,
            shipped_at=utcnow(),
            updated_by=user_id,
        )
        logger.info(f"Distribution {distribution_id} shipped ({data.shipped_quantity} books)")
        return result

    async def confirm_delivery(
        self, distribution_id: str, data: DistributionDeliver, user_id: Optional[str] = None
    ) -> DistributionResponse:
        current = self._require(distribution_id)
        self._check_transition(current.status, DistributionStatus.DELIVERED)

        result = self._apply(
            distribution_id,
            [DistributionStatus.SHIPPED.value],
            status=DistributionStatus.DELIVERED.value,
            delivered_at=utcnow(),
            delivery_confirmed_by=data.confirmed_by,
            notes=data.notes or current.notes,
            updated_by=user_id,
        )
        logger.info(f"Distribution {distribution_id} delivered, confirmed by {data.confirmed_by}")
        return result

    async def cancel(
        self, distribution_id: str, data: DistributionCancel, user_id: Optional[str] = None
    ) -> DistributionResponse:
        current = self._require(distribution_id)
        self._check_transition(current.status, DistributionStatus.CANCELLED)

        notes = current.notes
        if data.reason:
            notes = f"{notes}\nCancelled: {data.reason}" if notes else f"Cancelled: {data.reason}"
        return self._apply(
            distribution_id,
            [DistributionStatus.PENDING.value, DistributionStatus.SHIPPED.value],
            status=DistributionStatus.CANCELLED.value,
            notes=notes,
            updated_by=user_id,
        )

    async def delete_distribution(self, distribution_id: str) -> bool:
        current = self._require(distribution_id)
        if current.status != DistributionStatus.PENDING.value:
            raise PreconditionError("Only pending distributions can be deleted")
        return self.repository.delete_distribution(distribution_id)

    async def get_business_statistics(self) -> List[DistributionStatistics]:
        """Totals per business name, largest requested volume first."""
        totals: Dict[str, DistributionStatistics] = {}
        for d in self.repository.list_distributions():
            stats = totals.get(d.business_name)
            if stats is None:
                stats = DistributionStatistics(
                    business_name=d.business_name,
                    total_distributions=0,
                    total_requested=0,
                    total_shipped=0,
                    by_status={},
                )
                totals[d.business_name] = stats
            stats.total_distributions += 1
            stats.total_requested += d.requested_quantity
            stats.total_shipped += d.shipped_quantity or 0
            stats.by_status[d.status] = stats.by_status.get(d.status, 0) + 1
        return sorted(totals.values(), key=lambda s: (-s.total_requested, s.business_name))

    # ==================== HELPERS ====================

    def _require(self, distribution_id: str):
        distribution = self.repository.get_distribution(distribution_id)
        if not distribution:
            raise BookNotFoundError(f"Book distribution not found: {distribution_id}")
        return distribution

    @staticmethod
    def _check_transition(current: str, target: DistributionStatus):
        if target not in DISTRIBUTION_TRANSITIONS[DistributionStatus(current)]:
            raise PreconditionError(
                f"Invalid status transition from {current} to {target.value}"
            )

    def _apply(self, distribution_id: str, expected: List[str], **values) -> DistributionResponse:
        updated = self.repository.update_distribution(distribution_id, expected, **values)
        if updated is None:
            raise PreconditionError("Distribution changed concurrently; reload and retry")
        return DistributionResponse.model_validate(updated.to_dict())
