#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
FastAPI Web Server - REST API for the Voucher Book PDF Service.

Thin orchestration shell: app creation, middleware, router includes,
exception handlers, lifespan and the generated-file static mount.

Usage:
    uvicorn api.main:app --host 0.0.0.0 --port 8000
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

# Load environment variables from .env file
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

from config.logging_config import get_logger, setup_logging
from config.settings import Settings, settings as default_settings

from api.deps import ServiceContainer
from api.rate_limiter import limiter, rate_limit_exceeded_handler
from api.voucher_book_router import router as voucher_book_router, voucher_book_error_handler
from api.distribution_router import router as distribution_router
from api.routes.health import router as health_router
from core.voucher_book.exceptions import VoucherBookError

logger = get_logger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


def create_app(
    container: Optional[ServiceContainer] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the application.

    When a container is passed it is used as is and left open on
    shutdown; otherwise one is built from settings at startup.
    """
    settings = settings or (container.settings if container else default_settings)
    setup_logging(settings.log_level, settings.logs_dir / "voucher_book.log")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if getattr(app.state, "container", None) is None:
            owned = await ServiceContainer.create(settings)
            app.state.container = owned
        logger.info(f"{settings.app_name} {settings.app_version} started")
        yield
        if owned is not None:
            await owned.aclose()
            app.state.container = None
        logger.info(f"{settings.app_name} stopped")

    app = FastAPI(
        title=settings.app_name,
        description="Admin API for voucher books: layout, placements, PDF generation and distribution",
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.container = container

    # Rate limiting
    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(VoucherBookError, voucher_book_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "Retry-After"],
    )
    app.add_middleware(SecurityHeadersMiddleware)

    app.include_router(health_router)
    app.include_router(voucher_book_router)
    app.include_router(distribution_router)

    # Generated PDFs, served under storage_public_url in local deployments
    app.mount("/files", StaticFiles(directory=str(settings.storage_dir)), name="files")

    return app


app = create_app()
