#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Settings - Centralized configuration management
"""

from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings


# Base directory
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings"""

    app_name: str = "Voucher Book PDF Service"
    app_version: str = "1.0.0"

    # ========== Database ==========
    database_path: Path = BASE_DIR / "data" / "voucher_books.db"

    # ========== File Storage ==========
    storage_dir: Path = BASE_DIR / "data" / "files"
    storage_public_url: str = "http://localhost:8000/files"
    storage_prefix: str = "voucher-books"

    # ========== Upstream Services ==========
    voucher_service_url: str = "http://localhost:5025"
    provider_service_url: str = "http://localhost:5025"
    crypto_service_url: str = "http://localhost:5030"
    service_api_key: str = ""
    service_timeout_seconds: float = 30.0

    # ========== Layout & Rendering ==========
    page_format: str = "A4"  # A4 | LETTER
    page_margin_mm: float = 10.0
    slot_padding_mm: float = 5.0
    default_total_pages: int = 24
    spaces_per_page: int = 8
    display_language: str = "en"
    fetch_images: bool = True
    image_timeout_seconds: float = 10.0

    # ========== Cache ==========
    redis_url: Optional[str] = None  # None = in-memory backend
    cache_ttl_seconds: int = 300

    # ========== Rate Limiting ==========
    rate_limit_enabled: bool = True
    rate_limit: str = "60/minute"
    generation_rate_limit: str = "5/minute"
    rate_limit_storage_uri: str = "memory://"

    # ========== Security ==========
    # CORS origins (comma-separated in env, parsed to list)
    cors_origins: str = ""

    # ========== Logging ==========
    log_level: str = "INFO"
    logs_dir: Path = BASE_DIR / "data" / "logs"

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Allow extra fields from .env that aren't defined in model

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Create directories
        for dir_path in [
            self.database_path.parent,
            self.storage_dir,
            self.logs_dir,
        ]:
            dir_path.mkdir(exist_ok=True, parents=True)

    def get_cors_origins(self) -> list:
        """Get CORS origins as a list. Falls back to dev defaults if empty."""
        if self.cors_origins:
            return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
        # Dev defaults
        return [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:8000",
            "http://127.0.0.1:8000",
        ]

    def service_headers(self) -> dict:
        """Headers sent to the voucher, provider and crypto services."""
        headers = {"Accept": "application/json"}
        if self.service_api_key:
            headers["X-API-Key"] = self.service_api_key
        return headers


# Global settings instance
settings = Settings()
