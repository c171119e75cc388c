"""
Service wiring and dependency getters for API route modules.

Everything is built from one Settings instance into a ServiceContainer
held on ``app.state.container``; there are no module-level service
singletons. Tests build their own container and hand it to create_app.
"""

from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Depends, Request

from api.rate_limiter import GenerationRateLimiter, get_user_identifier
from config.logging_config import get_logger
from config.settings import Settings
from core.cache.redis_client import RedisClient
from core.voucher_book.clients import (
    CryptoServiceClient,
    ProviderServiceClient,
    VoucherServiceClient,
)
from core.voucher_book.content_resolver import ContentResolver
from core.voucher_book.distribution import BookDistributionService
from core.voucher_book.generator import VoucherBookPDFGenerator
from core.voucher_book.layout_engine import LayoutEngine
from core.voucher_book.renderer import VoucherBookRenderer
from core.voucher_book.repository import VoucherBookRepository
from core.voucher_book.service import VoucherBookService
from core.voucher_book.storage import FileStorage

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    """All long-lived collaborators of the API."""
    settings: Settings
    repository: VoucherBookRepository
    cache: RedisClient
    storage: FileStorage
    books: VoucherBookService
    distributions: BookDistributionService
    generator: VoucherBookPDFGenerator
    rate_limiter: GenerationRateLimiter
    http_client: httpx.AsyncClient

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        cache: Optional[RedisClient] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "ServiceContainer":
        """Build every service from settings."""
        cache = cache or RedisClient.in_memory()
        http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.service_timeout_seconds)
        )
        headers = settings.service_headers()

        repository = VoucherBookRepository(settings.database_path)
        layout_engine = LayoutEngine(
            page_format=settings.page_format,
            margin_mm=settings.page_margin_mm,
            padding_mm=settings.slot_padding_mm,
        )
        storage = FileStorage(settings.storage_dir, settings.storage_public_url)
        rate_limiter = GenerationRateLimiter(
            settings.generation_rate_limit, settings.rate_limit_storage_uri
        )

        resolver = ContentResolver(
            VoucherServiceClient(settings.voucher_service_url, headers, client=http_client),
            ProviderServiceClient(settings.provider_service_url, headers, client=http_client),
            CryptoServiceClient(settings.crypto_service_url, headers, client=http_client),
            language=settings.display_language,
            fetch_images=settings.fetch_images,
            image_timeout=settings.image_timeout_seconds,
        )
        generator = VoucherBookPDFGenerator(
            repository=repository,
            layout_engine=layout_engine,
            resolver=resolver,
            renderer=VoucherBookRenderer(layout_engine, language=settings.display_language),
            storage=storage,
            rate_limiter=rate_limiter,
            cache=cache,
            storage_prefix=settings.storage_prefix,
        )

        return cls(
            settings=settings,
            repository=repository,
            cache=cache,
            storage=storage,
            books=VoucherBookService(repository, layout_engine, cache, settings.cache_ttl_seconds),
            distributions=BookDistributionService(repository),
            generator=generator,
            rate_limiter=rate_limiter,
            http_client=http_client,
        )

    @classmethod
    async def create(cls, settings: Settings) -> "ServiceContainer":
        """Build the container, connecting to Redis when configured."""
        cache = await RedisClient.create(settings.redis_url)
        logger.info(f"Cache initialized (real={cache.is_real_redis})")
        return cls.from_settings(settings, cache=cache)

    async def aclose(self):
        await self.http_client.aclose()
        await self.cache.close()


# --- Dependency getters ---

def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_book_service(container: ServiceContainer = Depends(get_container)) -> VoucherBookService:
    return container.books


def get_distribution_service(
    container: ServiceContainer = Depends(get_container),
) -> BookDistributionService:
    return container.distributions


def get_generator(container: ServiceContainer = Depends(get_container)) -> VoucherBookPDFGenerator:
    return container.generator


def get_requester_id(request: Request) -> str:
    """Caller identity used for audit columns and generation quotas."""
    return get_user_identifier(request)
