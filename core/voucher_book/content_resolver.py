"""
Content Resolver

Collects everything the renderer needs for a laid out book:
voucher records, provider names, short codes with QR payloads and
image bytes. The upstream lookups are independent and run concurrently.
"""
import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple

import httpx

from .clients import CryptoServiceClient, ProviderServiceClient, VoucherServiceClient
from .exceptions import ContentResolutionError
from .layout_engine import LayoutPlan
from .models import ContentType
from .schemas import (
    BookResponse,
    PlacementResponse,
    ResolvedBook,
    ResolvedPage,
    ResolvedPlacement,
    ShortCode,
    VoucherSummary,
)

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 10 * 1024 * 1024


async def gather_or_cancel(*aws: Awaitable[Any]) -> List[Any]:
    """
    Like asyncio.gather, but the first failure cancels the remaining
    awaitables and waits for them before re-raising.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class ContentResolver:
    """
    Batch-resolves placement content against the upstream services.

    Missing vouchers fail the whole resolution; image download problems
    only produce warnings.
    """

    def __init__(
        self,
        voucher_client: VoucherServiceClient,
        provider_client: ProviderServiceClient,
        crypto_client: CryptoServiceClient,
        language: str = "en",
        fetch_images: bool = True,
        image_timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.voucher_client = voucher_client
        self.provider_client = provider_client
        self.crypto_client = crypto_client
        self.language = language
        self.fetch_images = fetch_images
        self.image_timeout = image_timeout
        self._http_client = http_client

    async def resolve(
        self,
        book: BookResponse,
        placements: Sequence[PlacementResponse],
        plan: LayoutPlan,
    ) -> ResolvedBook:
        """
        Resolve content for every placement in the layout plan.

        Raises:
            ContentResolutionError: No voucher placements, unknown vouchers
                or an upstream service failure
        """
        vouchers = [p for p in placements if p.content.content_type == ContentType.VOUCHER.value]
        sponsored = [p for p in placements if p.content.content_type == ContentType.SPONSORED.value]
        images = [p for p in placements if p.content.content_type == ContentType.IMAGE.value]

        if not vouchers:
            raise ContentResolutionError("No vouchers found for this voucher book")

        warnings: List[str] = []
        # Short codes are minted only once every voucher is known.
        voucher_lookup = asyncio.ensure_future(self._fetch_vouchers(vouchers))
        voucher_map, provider_names, codes, image_data = await gather_or_cancel(
            voucher_lookup,
            self._fetch_provider_names(sponsored),
            self._generate_codes(book.id, vouchers, voucher_lookup),
            self._fetch_images(images, warnings),
        )

        by_id = {p.id: p for p in placements}
        pages = []
        for page in plan.pages:
            resolved = []
            for assignment in page.assignments:
                placement = by_id[assignment.item_id]
                content = placement.content
                short_code, qr_payload = codes.get(placement.id, (None, None))
                resolved.append(ResolvedPlacement(
                    placement_id=placement.id,
                    page_number=assignment.page_number,
                    position=assignment.position,
                    size=assignment.size,
                    content=content,
                    voucher=voucher_map.get(getattr(content, "voucher_id", None)),
                    provider_name=provider_names.get(getattr(content, "provider_id", None)),
                    short_code=short_code,
                    qr_payload=qr_payload,
                    image_bytes=image_data.get(placement.id),
                ))
            pages.append(ResolvedPage(
                page_number=page.page_number,
                layout_type=page.layout_type,
                placements=resolved,
            ))

        logger.info(
            f"Resolved book {book.id}: {len(vouchers)} vouchers, "
            f"{len(sponsored)} sponsored, {len(images)} images"
        )
        return ResolvedBook(
            book_id=book.id,
            title=book.title,
            edition=book.edition,
            year=book.year,
            month=book.month,
            pages=pages,
            warnings=warnings,
        )

    async def _fetch_vouchers(self, placements: Sequence[PlacementResponse]) -> Dict[str, VoucherSummary]:
        ids = list(dict.fromkeys(p.content.voucher_id for p in placements))
        if not ids:
            return {}
        found = await self.voucher_client.get_vouchers_by_ids(ids)
        missing = [vid for vid in ids if vid not in found]
        if missing:
            raise ContentResolutionError(
                f"Vouchers not found: {', '.join(missing)}", missing_ids=missing
            )
        return found

    async def _fetch_provider_names(self, placements: Sequence[PlacementResponse]) -> Dict[str, str]:
        ids = [p.content.provider_id for p in placements]
        if not ids:
            return {}
        providers = await self.provider_client.get_providers(ids)
        return {pid: provider.business_name for pid, provider in providers.items()}

    async def _generate_codes(
        self,
        book_id: str,
        placements: Sequence[PlacementResponse],
        voucher_lookup: Awaitable[Dict[str, VoucherSummary]],
    ) -> Dict[str, Tuple[str, Optional[str]]]:
        """Short code and QR payload per voucher placement."""
        await voucher_lookup
        if not placements:
            return {}
        short_codes: List[ShortCode] = await gather_or_cancel(
            *(self.crypto_client.generate_short_code(p.content.voucher_id) for p in placements)
        )
        items = [
            {"key": p.id, "voucher_id": p.content.voucher_id, "short_code": code.short_code}
            for p, code in zip(placements, short_codes)
        ]
        payloads = await self.crypto_client.generate_batch_qr_payloads(
            items, batch_id=f"book-{book_id}"
        )
        return {
            p.id: (code.short_code, payloads.get(p.id))
            for p, code in zip(placements, short_codes)
        }

    async def _fetch_images(
        self, placements: Sequence[PlacementResponse], warnings: List[str]
    ) -> Dict[str, Optional[bytes]]:
        if not placements or not self.fetch_images:
            return {}
        if self._http_client is not None:
            results = await asyncio.gather(
                *(self._fetch_image(self._http_client, p, warnings) for p in placements)
            )
        else:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.image_timeout), follow_redirects=True
            ) as client:
                results = await asyncio.gather(
                    *(self._fetch_image(client, p, warnings) for p in placements)
                )
        return {p.id: data for p, data in zip(placements, results)}

    async def _fetch_image(
        self, client: httpx.AsyncClient, placement: PlacementResponse, warnings: List[str]
    ) -> Optional[bytes]:
        url = placement.content.image_url
        try:
            response = await client.get(url)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            message = f"Image for placement {placement.id} could not be fetched: {e}"
            logger.warning(message)
            warnings.append(message)
            return None
        if len(response.content) > MAX_IMAGE_BYTES:
            message = f"Image for placement {placement.id} exceeds {MAX_IMAGE_BYTES} bytes"
            logger.warning(message)
            warnings.append(message)
            return None
        return response.content
