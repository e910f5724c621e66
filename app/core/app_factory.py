"""Application factory for the FastAPI app.

Builds the long-lived components (rate limiter, tiered cache, payment
gateway and service) explicitly and stores them on ``app.state``; request
handlers reach them through dependencies instead of module globals. The
lifespan starts their background sweeps, probes Redis once, and tears
everything down on shutdown.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.adapters.cache.redis_store import build_remote_store
from app.adapters.payment.base import AbstractPaymentGateway
from app.adapters.payment.nmi_client import NMIGatewayClient
from app.adapters.rate_limit.base import AbstractRateLimiter
from app.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from app.api.routes import health_router, payments_router
from app.core.config import Settings, settings as default_settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.services.cache_service import TieredCacheService
from app.services.payment_service import PaymentService
from app.utils.encryption import FieldCipher

logger = logging.getLogger(__name__)


def build_rate_limiter(cfg: Settings) -> InMemoryFixedWindowRateLimiter:
    return InMemoryFixedWindowRateLimiter(
        limit=cfg.app.rate_limit_requests,
        interval_seconds=cfg.app.rate_limit_window_seconds,
        max_tracked=cfg.app.rate_limit_max_tracked,
    )


def build_cache_service(cfg: Settings) -> TieredCacheService:
    return TieredCacheService(
        build_remote_store(cfg.redis),
        namespace=cfg.cache.namespace,
        default_ttl=cfg.cache.default_ttl_seconds,
        use_local_fallback=cfg.cache.local_fallback,
        cleanup_interval_seconds=cfg.cache.cleanup_interval_seconds,
        probe_interval_seconds=cfg.cache.probe_interval_seconds,
    )


def build_payment_service(
    cfg: Settings,
    *,
    gateway: AbstractPaymentGateway,
    cache: TieredCacheService,
) -> PaymentService:
    cipher = FieldCipher(cfg.app.encryption_key) if cfg.app.encryption_key else None
    if cipher is None:
        logger.warning("payment.receipts_unencrypted", extra={"hint": "Set APP_ENCRYPTION_KEY"})
    return PaymentService(
        gateway=gateway,
        cache=cache,
        payment_settings=cfg.payment,
        cipher=cipher,
        receipt_ttl_seconds=cfg.cache.receipt_ttl_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    limiter: AbstractRateLimiter = app.state.rate_limiter
    cache: TieredCacheService = app.state.cache_service
    gateway: AbstractPaymentGateway = app.state.payment_gateway

    if isinstance(limiter, InMemoryFixedWindowRateLimiter):
        limiter.start_cleanup()
    cache.start()
    available = await cache.probe()
    logger.info("app.started", extra={"remote_cache_available": available})
    try:
        yield
    finally:
        limiter.destroy()
        await cache.stop()
        await gateway.close()
        logger.info("app.stopped")


def create_app(
    cfg: Settings | None = None,
    *,
    rate_limiter: AbstractRateLimiter | None = None,
    cache_service: TieredCacheService | None = None,
    payment_gateway: AbstractPaymentGateway | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Components can be injected (tests pass fakes); anything omitted is built
    from settings. ``cfg`` is stored on ``app.state.settings`` so request-time
    code reads the same configuration the app was built with.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    if cfg is None:
        cfg = default_settings
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    app = FastAPI(
        title="Storefront Edge API",
        description=(
            "Payment proxy and caching layer for the storefront. Sensitive "
            "endpoints are rate limited per client; data is cached in Redis "
            "with an in-process fallback."
        ),
        version="0.1.0",
        debug=cfg.app.debug,
        lifespan=lifespan,
    )

    # An injected limiter with no tracked clients is falsy (it defines __len__)
    if rate_limiter is None:
        rate_limiter = build_rate_limiter(cfg)
    if cache_service is None:
        cache_service = build_cache_service(cfg)
    if payment_gateway is None:
        payment_gateway = NMIGatewayClient(
            cfg.payment.gateway_url,
            timeout_seconds=cfg.payment.timeout_seconds,
        )

    app.state.settings = cfg
    app.state.rate_limiter = rate_limiter
    app.state.cache_service = cache_service
    app.state.payment_gateway = payment_gateway
    app.state.payment_service = build_payment_service(cfg, gateway=payment_gateway, cache=cache_service)

    app.middleware("http")(request_id_middleware)
    setup_exception_handlers(app)

    app.include_router(payments_router, prefix="/v1")
    app.include_router(health_router)

    return app
