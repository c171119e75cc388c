#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Rate Limiting Module for the Voucher Book API

Two layers:
- slowapi limits on HTTP endpoints, per user/API key/IP
- GenerationRateLimiter, a programmatic per-caller quota checked by the
  PDF generator before any work starts

Usage:
    from api.rate_limiter import limiter, rate_limit_config

    @router.get("/api/endpoint")
    @limiter.limit(rate_limit_config.get_limit("admin"))
    async def endpoint(request: Request):
        ...
"""

import os
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from limits import parse
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from config.logging_config import get_logger
from core.voucher_book.schemas import RateLimitDecision

logger = get_logger(__name__)


@dataclass
class RateLimitConfig:
    """
    Centralized rate limit configuration.

    Limits are defined as "count/period" where:
    - count: number of requests allowed
    - period: time window (second, minute, hour, day)
    """

    # Default limits by endpoint category
    defaults: Dict[str, str] = field(default_factory=lambda: {
        # Health & status - high limit
        "health": "120/minute",

        # Admin reads and writes
        "admin_read": "120/minute",
        "admin": "30/minute",
        "admin_bulk": "10/minute",

        # PDF generation - expensive, also gated per caller by the generator
        "generate_pdf": "10/minute",

        # Distributions
        "distributions": "60/minute",

        # Fallback
        "default": "60/minute",
    })

    # Override limits from environment
    env_overrides: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        """Load overrides from environment variables."""
        # Format: RATE_LIMIT_GENERATE_PDF=20/minute
        for key in self.defaults.keys():
            env_key = f"RATE_LIMIT_{key.upper()}"
            if env_value := os.getenv(env_key):
                self.env_overrides[key] = env_value

        # Global override
        if global_limit := os.getenv("RATE_LIMIT"):
            self.env_overrides["default"] = global_limit

    def get_limit(self, endpoint: str) -> str:
        """
        Get rate limit for an endpoint.

        Args:
            endpoint: Endpoint category name

        Returns:
            Rate limit string (e.g., "10/minute")
        """
        if endpoint in self.env_overrides:
            return self.env_overrides[endpoint]
        if endpoint in self.defaults:
            return self.defaults[endpoint]
        return self.env_overrides.get("default", self.defaults["default"])

    def get_all_limits(self) -> Dict[str, str]:
        """Get all configured limits."""
        result = self.defaults.copy()
        result.update(self.env_overrides)
        return result


# Create global config instance
rate_limit_config = RateLimitConfig()


def get_user_identifier(request: Request) -> str:
    """
    Get unique identifier for rate limiting.

    Priority:
    1. Admin user id header (set by the gateway)
    2. API key (if using API key auth)
    3. IP address (fallback)
    """
    if user_id := request.headers.get("X-User-Id"):
        return f"user:{user_id}"

    if api_key := request.headers.get("X-API-Key"):
        # Use first 8 chars of API key as identifier
        return f"api:{api_key[:8]}"

    return get_remote_address(request)


def create_limiter(
    key_func: Callable = None,
    storage_uri: str = None,
    default_limits: list = None
) -> Limiter:
    """
    Create a configured rate limiter instance.

    Args:
        key_func: Function to extract rate limit key from request
        storage_uri: Redis URI for distributed rate limiting (optional)
        default_limits: Default rate limits to apply

    Returns:
        Configured Limiter instance
    """
    key_function = key_func or get_user_identifier

    redis_url = storage_uri or os.getenv("REDIS_URL")

    limiter_kwargs = {
        "key_func": key_function,
        "default_limits": default_limits or [rate_limit_config.get_limit("default")],
    }

    if redis_url:
        limiter_kwargs["storage_uri"] = redis_url

    return Limiter(**limiter_kwargs)


# Create default limiter instance
limiter = create_limiter()


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """
    Custom handler for rate limit exceeded errors.

    Returns a JSON response with the error, a Retry-After header and the
    limit that was hit.
    """
    limit_value = str(exc.detail) if hasattr(exc, "detail") else "Rate limit exceeded"

    retry_after = 60
    if hasattr(exc, "limit") and exc.limit:
        limit_str = str(exc.limit.limit)
        if "second" in limit_str:
            retry_after = 1
        elif "hour" in limit_str:
            retry_after = 3600
        elif "day" in limit_str:
            retry_after = 86400

    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": "Too many requests. Please slow down.",
            "detail": limit_value,
            "retry_after_seconds": retry_after,
            "timestamp": time.time(),
        },
        headers={
            "Retry-After": str(retry_after),
            "X-RateLimit-Limit": limit_value,
        }
    )


class GenerationRateLimiter:
    """
    Per-caller quota for PDF generation runs.

    Uses a moving window from the ``limits`` package, so callers over the
    limit are rejected immediately and never queued.

    Usage:
        gate = GenerationRateLimiter("5/minute")
        decision = gate.check("user:42")
        if not decision.allowed:
            ...  # retry after decision.retry_after seconds
    """

    def __init__(
        self,
        limit: str = "5/minute",
        storage_uri: str = "memory://",
        clock: Optional[Callable[[], float]] = None,
    ):
        self.limit = parse(limit)
        self.storage = storage_from_string(storage_uri)
        self.strategy = MovingWindowRateLimiter(self.storage)
        self._clock = clock or time.time

    def check(self, caller_id: str) -> RateLimitDecision:
        """Consume one generation slot for caller_id if one is free."""
        allowed = self.strategy.hit(self.limit, "generate_pdf", caller_id)
        reset_at, remaining = self.strategy.get_window_stats(self.limit, "generate_pdf", caller_id)
        retry_after = 0
        if not allowed:
            retry_after = max(int(reset_at - self._clock()) + 1, 1)
            logger.warning(f"Generation rate limit hit for {caller_id}, retry in {retry_after}s")
        return RateLimitDecision(allowed=allowed, remaining=remaining, retry_after=retry_after)

    def reset(self):
        self.storage.reset()
