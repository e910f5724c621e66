from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from app.api.dependencies import get_payment_service
from app.core.rate_limit import enforce_rate_limit, get_client_ip
from app.schemas.payment import PaymentRequest, PaymentResponse
from app.services.payment_service import PaymentService

router = APIRouter(tags=["Payments"])


@router.post(
    "/payments",
    response_model=PaymentResponse,
    dependencies=[Depends(enforce_rate_limit)],
)
async def process_payment(
    body: PaymentRequest,
    request: Request,
    service: Annotated[PaymentService, Depends(get_payment_service)],
) -> PaymentResponse:
    """Charge a tokenized card for a checkout order.

    The request is rate limited per client before the body is processed.
    A repeated request for an already approved order returns the stored
    receipt with ``replayed=true`` instead of charging again.

    Returns:
        PaymentResponse: Transaction id, auth code, AVS result and order number.

    Raises:
        ValidationAppError: 400 for malformed input (rendered by global handlers).
        GatewayDeclinedError: 400 with the gateway's decline reason.
        GatewayAppError: 502 when the gateway is unreachable.
    """
    receipt, replayed = await service.process(body, client_ip=get_client_ip(request))
    return PaymentResponse(status=True, data=receipt, replayed=replayed)
