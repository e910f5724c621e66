from __future__ import annotations

from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, Depends

from app.api.dependencies import get_cache_service
from app.services.cache_service import TieredCacheService

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check used by load balancers.

    Returns:
        dict: A dictionary with a single "status" key set to "ok".
    """

    return {"status": "ok"}


@router.get("/health/cache")
async def cache_health(
    cache: Annotated[TieredCacheService, Depends(get_cache_service)],
) -> dict:
    """Probe Redis and report cache tier state.

    Always 200: a degraded cache still serves from the local tier.
    """
    await cache.probe()
    stats = await cache.get_stats()
    return {"status": "ok" if stats.remote_available else "degraded", **asdict(stats)}
