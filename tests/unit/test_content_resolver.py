"""Tests for ContentResolver."""

import asyncio

import httpx
import pytest

from core.voucher_book.content_resolver import ContentResolver
from core.voucher_book.exceptions import ContentResolutionError
from core.voucher_book.layout_engine import LayoutItem
from core.voucher_book.models import AdSize
from core.voucher_book.schemas import (
    AdContent,
    BookResponse,
    ImageContent,
    PlacementResponse,
    SponsoredContent,
    VoucherContent,
)


def _placement(pid, content, size=AdSize.SINGLE):
    return PlacementResponse(
        id=pid,
        book_id="book-1",
        size=size,
        spaces_used=1,
        content=content,
        display_order=0,
        is_active=True,
    )


@pytest.fixture
def book(make_book):
    return BookResponse.model_validate(make_book(title="Spring Deals").to_dict())


@pytest.fixture
def plan_for(layout_engine):
    def _plan(placements, total_pages=2):
        items = [LayoutItem(item_id=p.id, size=p.size) for p in placements]
        return layout_engine.assign(items, total_pages)
    return _plan


class TestResolve:

    @pytest.mark.asyncio
    async def test_no_placements(self, resolver, book, plan_for):
        with pytest.raises(ContentResolutionError, match="No vouchers found for this voucher book"):
            await resolver.resolve(book, [], plan_for([]))

    @pytest.mark.asyncio
    async def test_image_only_book_has_no_vouchers(self, resolver, book, plan_for, crypto_client):
        placements = [
            _placement("img", ImageContent(image_url="https://img.test/a.png"), AdSize.FULL),
            _placement("ad", AdContent(title="Open late")),
        ]
        with pytest.raises(ContentResolutionError, match="No vouchers found for this voucher book"):
            await resolver.resolve(book, placements, plan_for(placements))
        assert crypto_client.short_code_calls == []

    @pytest.mark.asyncio
    async def test_vouchers_codes_and_providers(self, resolver, book, plan_for, crypto_client, voucher_client):
        placements = [
            _placement("p1", VoucherContent(voucher_id="voucher-1")),
            _placement("p2", VoucherContent(voucher_id="voucher-1")),
            _placement("p3", SponsoredContent(provider_id="provider-9", title="Brunch")),
            _placement("p4", AdContent(title="Open late")),
        ]

        resolved = await resolver.resolve(book, placements, plan_for(placements))

        # duplicate voucher ids are looked up once
        assert voucher_client.calls == [["voucher-1"]]
        assert crypto_client.batches[0][0] == f"book-{book.id}"
        assert [item["key"] for item in crypto_client.batches[0][1]] == ["p1", "p2"]

        by_id = {p.placement_id: p for p in resolved.pages[0].placements}
        assert by_id["p1"].short_code == "SC-VOUCHE"
        assert by_id["p1"].qr_payload == "https://redeem.test/SC-VOUCHE"
        assert by_id["p1"].voucher.localized_title("en") == "Voucher voucher-1"
        assert by_id["p3"].provider_name == "Cafe provider-9"
        assert by_id["p4"].voucher is None
        assert resolved.title == "Spring Deals"
        assert resolved.warnings == []

    @pytest.mark.asyncio
    async def test_slots_follow_plan(self, resolver, book, plan_for):
        placements = [
            _placement("big", AdContent(title="Full page"), AdSize.FULL),
            _placement("small", VoucherContent(voucher_id="voucher-1")),
        ]
        resolved = await resolver.resolve(book, placements, plan_for(placements))
        assert [[p.placement_id for p in page.placements] for page in resolved.pages] == [
            ["big"],
            ["small"],
        ]
        assert resolved.pages[1].placements[0].position == 1

    @pytest.mark.asyncio
    async def test_missing_vouchers(self, resolver, book, plan_for):
        placements = [
            _placement("p1", VoucherContent(voucher_id="voucher-1")),
            _placement("p2", VoucherContent(voucher_id="missing-a")),
            _placement("p3", VoucherContent(voucher_id="missing-b")),
        ]
        with pytest.raises(ContentResolutionError) as exc:
            await resolver.resolve(book, placements, plan_for(placements))
        assert exc.value.missing_ids == ["missing-a", "missing-b"]
        assert "Vouchers not found: missing-a, missing-b" == exc.value.message

    @pytest.mark.asyncio
    async def test_missing_vouchers_mint_no_codes(self, resolver, book, plan_for, crypto_client):
        placements = [
            _placement("p1", VoucherContent(voucher_id="missing-1")),
            _placement("p2", VoucherContent(voucher_id="voucher-2")),
        ]
        with pytest.raises(ContentResolutionError, match="Vouchers not found: missing-1"):
            await resolver.resolve(book, placements, plan_for(placements))
        assert crypto_client.short_code_calls == []
        assert crypto_client.batches == []

    @pytest.mark.asyncio
    async def test_failure_cancels_other_lookups(self, resolver, provider_client, book, plan_for):
        cancelled = asyncio.Event()

        async def slow_providers(ids):
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        provider_client.get_providers = slow_providers
        placements = [
            _placement("p1", VoucherContent(voucher_id="missing-1")),
            _placement("p2", SponsoredContent(provider_id="provider-9", title="Brunch")),
        ]
        with pytest.raises(ContentResolutionError, match="missing-1"):
            await resolver.resolve(book, placements, plan_for(placements))
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_crypto_failure_propagates(self, resolver, crypto_client, book, plan_for):
        crypto_client.fail_with = "Crypto service error: 503 - down"
        placements = [_placement("p1", VoucherContent(voucher_id="voucher-1"))]
        with pytest.raises(ContentResolutionError, match="503"):
            await resolver.resolve(book, placements, plan_for(placements))


class TestImages:

    def _resolver(self, voucher_client, provider_client, crypto_client, handler):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return ContentResolver(
            voucher_client,
            provider_client,
            crypto_client,
            fetch_images=True,
            http_client=http_client,
        )

    @pytest.mark.asyncio
    async def test_images_fetched(self, voucher_client, provider_client, crypto_client, book, plan_for):
        def handler(request):
            return httpx.Response(200, content=b"png-bytes")

        resolver = self._resolver(voucher_client, provider_client, crypto_client, handler)
        placements = [
            _placement("img", ImageContent(image_url="https://img.test/a.png")),
            _placement("v1", VoucherContent(voucher_id="voucher-1")),
        ]
        resolved = await resolver.resolve(book, placements, plan_for(placements))

        assert resolved.pages[0].placements[0].image_bytes == b"png-bytes"
        assert resolved.warnings == []

    @pytest.mark.asyncio
    async def test_failed_image_is_a_warning(self, voucher_client, provider_client, crypto_client, book, plan_for):
        def handler(request):
            if request.url.path == "/gone.png":
                return httpx.Response(404)
            return httpx.Response(200, content=b"ok")

        resolver = self._resolver(voucher_client, provider_client, crypto_client, handler)
        placements = [
            _placement("gone", ImageContent(image_url="https://img.test/gone.png")),
            _placement("fine", ImageContent(image_url="https://img.test/fine.png")),
            _placement("v1", VoucherContent(voucher_id="voucher-1")),
        ]
        resolved = await resolver.resolve(book, placements, plan_for(placements))

        by_id = {p.placement_id: p for p in resolved.pages[0].placements}
        assert by_id["gone"].image_bytes is None
        assert by_id["fine"].image_bytes == b"ok"
        assert len(resolved.warnings) == 1
        assert "gone" in resolved.warnings[0]

    @pytest.mark.asyncio
    async def test_images_skipped_when_disabled(self, resolver, book, plan_for):
        placements = [
            _placement("img", ImageContent(image_url="https://img.test/a.png")),
            _placement("v1", VoucherContent(voucher_id="voucher-1")),
        ]
        resolved = await resolver.resolve(book, placements, plan_for(placements))
        assert resolved.pages[0].placements[0].image_bytes is None
