"""
Book Distribution API Router
Shipment tracking for printed voucher books.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from api.deps import get_distribution_service, get_requester_id
from api.rate_limiter import limiter, rate_limit_config
from core.voucher_book.distribution import BookDistributionService
from core.voucher_book.models import DistributionStatus
from core.voucher_book.schemas import (
    DistributionCancel,
    DistributionCreate,
    DistributionDeliver,
    DistributionListResponse,
    DistributionResponse,
    DistributionShip,
    DistributionStatistics,
    DistributionUpdate,
)

router = APIRouter(prefix="/api/admin/distributions", tags=["Distributions"])


@router.post("", response_model=DistributionResponse, status_code=201)
@limiter.limit(rate_limit_config.get_limit("distributions"))
async def create_distribution(
    request: Request,
    data: DistributionCreate,
    service: BookDistributionService = Depends(get_distribution_service),
    user_id: str = Depends(get_requester_id),
):
    """Record a distribution of a published book to a business."""
    return await service.create_distribution(data, user_id)


@router.get("", response_model=DistributionListResponse)
@limiter.limit(rate_limit_config.get_limit("distributions"))
async def list_distributions(
    request: Request,
    book_id: Optional[str] = Query(None),
    status: Optional[DistributionStatus] = Query(None),
    business_name: Optional[str] = Query(None, description="Exact business name"),
    service: BookDistributionService = Depends(get_distribution_service),
):
    return await service.list_distributions(book_id, status, business_name)


@router.get("/statistics/businesses", response_model=List[DistributionStatistics])
@limiter.limit(rate_limit_config.get_limit("distributions"))
async def business_statistics(
    request: Request,
    service: BookDistributionService = Depends(get_distribution_service),
):
    """Requested and shipped totals per business."""
    return await service.get_business_statistics()


@router.get("/{distribution_id}", response_model=DistributionResponse)
@limiter.limit(rate_limit_config.get_limit("distributions"))
async def get_distribution(
    request: Request,
    distribution_id: str,
    service: BookDistributionService = Depends(get_distribution_service),
):
    return await service.get_distribution(distribution_id)


@router.put("/{distribution_id}", response_model=DistributionResponse)
@limiter.limit(rate_limit_config.get_limit("distributions"))
async def update_distribution(
    request: Request,
    distribution_id: str,
    data: DistributionUpdate,
    service: BookDistributionService = Depends(get_distribution_service),
    user_id: str = Depends(get_requester_id),
):
    return await service.update_distribution(distribution_id, data, user_id)


@router.post("/{distribution_id}/ship", response_model=DistributionResponse)
@limiter.limit(rate_limit_config.get_limit("distributions"))
async def ship_distribution(
    request: Request,
    distribution_id: str,
    data: DistributionShip,
    service: BookDistributionService = Depends(get_distribution_service),
    user_id: str = Depends(get_requester_id),
):
    return await service.ship(distribution_id, data, user_id)


@router.post("/{distribution_id}/deliver", response_model=DistributionResponse)
@limiter.limit(rate_limit_config.get_limit("distributions"))
async def confirm_delivery(
    request: Request,
    distribution_id: str,
    data: DistributionDeliver,
    service: BookDistributionService = Depends(get_distribution_service),
    user_id: str = Depends(get_requester_id),
):
    return await service.confirm_delivery(distribution_id, data, user_id)


@router.post("/{distribution_id}/cancel", response_model=DistributionResponse)
@limiter.limit(rate_limit_config.get_limit("distributions"))
async def cancel_distribution(
    request: Request,
    distribution_id: str,
    data: DistributionCancel,
    service: BookDistributionService = Depends(get_distribution_service),
    user_id: str = Depends(get_requester_id),
):
    return await service.cancel(distribution_id, data, user_id)


@router.delete("/{distribution_id}")
@limiter.limit(rate_limit_config.get_limit("distributions"))
async def delete_distribution(
    request: Request,
    distribution_id: str,
    service: BookDistributionService = Depends(get_distribution_service),
):
    """Delete a pending distribution."""
    await service.delete_distribution(distribution_id)
    return {"status": "deleted", "id": distribution_id}
