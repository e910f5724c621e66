"""FastAPI dependencies exposing the components owned by the app."""

from __future__ import annotations

from fastapi import Request

from app.services.cache_service import TieredCacheService
from app.services.payment_service import PaymentService


def get_cache_service(request: Request) -> TieredCacheService:
    return request.app.state.cache_service


def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payment_service
