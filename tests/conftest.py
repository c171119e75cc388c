"""Shared fixtures: temp-dir database and storage, fake upstream services."""

import pytest

from core.cache.redis_client import RedisClient
from core.voucher_book.content_resolver import ContentResolver
from core.voucher_book.exceptions import ContentResolutionError
from core.voucher_book.generator import VoucherBookPDFGenerator
from core.voucher_book.layout_engine import LayoutEngine
from core.voucher_book.renderer import VoucherBookRenderer
from core.voucher_book.repository import VoucherBookRepository
from core.voucher_book.schemas import ProviderSummary, ShortCode, VoucherSummary
from core.voucher_book.storage import FileStorage


class FakeVoucherClient:
    """Knows every voucher id except those starting with 'missing'."""

    def __init__(self):
        self.calls = []

    async def get_vouchers_by_ids(self, ids):
        self.calls.append(list(ids))
        return {
            vid: VoucherSummary(
                id=vid,
                title={"en": f"Voucher {vid}", "vi": f"Phieu {vid}"},
                description={"en": "Two coffees for the price of one"},
                discount_type="percentage",
                discount_value=20,
                provider_id="provider-1",
            )
            for vid in ids
            if not vid.startswith("missing")
        }


class FakeProviderClient:
    def __init__(self):
        self.calls = []

    async def get_providers(self, ids):
        self.calls.append(list(ids))
        return {pid: ProviderSummary(id=pid, business_name=f"Cafe {pid}") for pid in ids}


class FakeCryptoClient:
    def __init__(self, fail_with=None):
        self.short_code_calls = []
        self.batches = []
        self.fail_with = fail_with

    async def generate_short_code(self, voucher_id):
        if self.fail_with:
            raise ContentResolutionError(self.fail_with)
        self.short_code_calls.append(voucher_id)
        return ShortCode(short_code=f"SC-{voucher_id[:6].upper()}", checksum="ok")

    async def generate_batch_qr_payloads(self, items, batch_id, ttl=None):
        self.batches.append((batch_id, items))
        return {item["key"]: f"https://redeem.test/{item['short_code']}" for item in items}


@pytest.fixture
def repo(tmp_path):
    return VoucherBookRepository(db_path=str(tmp_path / "test_voucher_books.db"))


@pytest.fixture
def layout_engine():
    return LayoutEngine("A4", margin_mm=10, padding_mm=5)


@pytest.fixture
def storage(tmp_path):
    return FileStorage(tmp_path / "files", "http://files.test")


@pytest.fixture
def cache():
    return RedisClient.in_memory()


@pytest.fixture
def voucher_client():
    return FakeVoucherClient()


@pytest.fixture
def provider_client():
    return FakeProviderClient()


@pytest.fixture
def crypto_client():
    return FakeCryptoClient()


@pytest.fixture
def resolver(voucher_client, provider_client, crypto_client):
    return ContentResolver(voucher_client, provider_client, crypto_client, fetch_images=False)


@pytest.fixture
def renderer(layout_engine):
    return VoucherBookRenderer(layout_engine)


@pytest.fixture
def generator(repo, layout_engine, resolver, renderer, storage, cache):
    return VoucherBookPDFGenerator(
        repository=repo,
        layout_engine=layout_engine,
        resolver=resolver,
        renderer=renderer,
        storage=storage,
        cache=cache,
    )


@pytest.fixture
def make_book(repo):
    """Create a draft book directly through the repository."""
    def _make(title="Spring Deals", total_pages=2, **kwargs):
        kwargs.setdefault("year", 2026)
        kwargs.setdefault("month", 4)
        return repo.create_book(title=title, total_pages=total_pages, **kwargs)
    return _make


@pytest.fixture
def add_placement(repo):
    """Insert a placement row; pinned when page_number and position are given."""
    def _add(book_id, content_type="voucher", size="single", page_number=None, position=None, **columns):
        page_id = None
        if page_number is not None:
            page_id = repo.get_page(book_id, page_number).id
        values = {
            "content_type": content_type,
            "voucher_id": None,
            "provider_id": None,
            "image_url": None,
            "title": None,
            "description": None,
        }
        if content_type == "voucher":
            values["voucher_id"] = "voucher-1"
        elif content_type == "image":
            values["image_url"] = "https://img.test/banner.png"
        else:
            values["title"] = "Weekend special"
            if content_type == "sponsored":
                values["provider_id"] = "provider-1"
        values.update(columns)
        return repo.create_placement(
            book_id=book_id,
            page_id=page_id,
            position=position,
            size=size,
            columns=values,
        )
    return _add


@pytest.fixture
def container(tmp_path, resolver):
    """API service container on temp paths, with fake upstream services."""
    from api.deps import ServiceContainer
    from config.settings import Settings

    settings = Settings(
        database_path=tmp_path / "api.db",
        storage_dir=tmp_path / "files",
        storage_public_url="http://testserver/files",
        logs_dir=tmp_path / "logs",
        rate_limit_enabled=False,
        generation_rate_limit="100/minute",
        redis_url=None,
    )
    container = ServiceContainer.from_settings(settings)
    container.generator.resolver = resolver
    return container


@pytest.fixture
def client(container):
    from fastapi.testclient import TestClient
    from api.main import create_app

    return TestClient(create_app(container))
