"""
Health check endpoints.
"""

import time

from fastapi import APIRouter, Depends, Request

from api.deps import ServiceContainer, get_container
from api.rate_limiter import limiter, rate_limit_config

router = APIRouter(tags=["Health"])


@router.get("/health")
@limiter.limit(rate_limit_config.get_limit("health"))
async def health_check(request: Request, container: ServiceContainer = Depends(get_container)):
    """Basic health check endpoint"""
    return {
        "status": "healthy",
        "version": container.settings.app_version,
        "timestamp": time.time(),
    }


@router.get("/api/health/detailed")
@limiter.limit(rate_limit_config.get_limit("health"))
async def detailed_health_check(
    request: Request, container: ServiceContainer = Depends(get_container)
):
    """
    Health of each component.

    Returns:
    - Cache backend reachability (Redis or in-memory)
    - Database connectivity
    - Storage directory availability
    """
    components = {}

    try:
        cache_ok = await container.cache.ping()
    except Exception as e:
        cache_ok = False
        components["cache_error"] = str(e)
    components["cache"] = {
        "healthy": cache_ok,
        "backend": "redis" if container.cache.is_real_redis else "memory",
    }

    try:
        container.repository.count_books()
        components["database"] = {"healthy": True}
    except Exception as e:
        components["database"] = {"healthy": False, "error": str(e)}

    storage_dir = container.storage.root_dir
    components["storage"] = {"healthy": storage_dir.is_dir()}

    healthy = all(c.get("healthy") for c in components.values() if isinstance(c, dict))
    return {
        "status": "healthy" if healthy else "degraded",
        "timestamp": time.time(),
        "components": components,
    }
