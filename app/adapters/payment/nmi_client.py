"""Form-encoded payment gateway client (NMI-style ``transact.php`` API)."""

from __future__ import annotations

import logging
from urllib.parse import parse_qsl

import httpx

from app.adapters.payment.base import AbstractPaymentGateway, GatewayResult
from app.core.errors import GatewayAppError, GatewayDeclinedError

logger = logging.getLogger(__name__)

APPROVED = "1"


class NMIGatewayClient(AbstractPaymentGateway):
    """Client posting transactions to a form-encoded gateway endpoint.

    Issues exactly one HTTP attempt per ``submit`` call; retries are left to
    the caller.
    """

    def __init__(
        self,
        gateway_url: str,
        *,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the gateway client.

        Args:
            gateway_url: Transaction endpoint URL.
            timeout_seconds: Timeout for requests in seconds.
            client: Optional preconfigured httpx client (tests inject a mock transport).
        """
        self.gateway_url = gateway_url
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def submit(self, fields: dict[str, str]) -> GatewayResult:
        order_id = fields.get("orderid")
        try:
            response = await self._client.post(
                self.gateway_url,
                data=fields,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as exc:
            logger.error(
                "gateway.unreachable",
                extra={"order_id": order_id, "error_type": type(exc).__name__},
            )
            raise GatewayAppError(
                code="gateway_unreachable",
                message="Payment gateway error",
            ) from exc

        if response.status_code != 200:
            logger.error(
                "gateway.http_error",
                extra={"order_id": order_id, "http_status": response.status_code},
            )
            raise GatewayAppError(
                code="gateway_http_error",
                message="Payment gateway error",
                details={"http_status": response.status_code},
            )

        result = dict(parse_qsl(response.text, keep_blank_values=True))

        if result.get("response") != APPROVED:
            reason = result.get("responsetext") or "Payment declined"
            logger.warning(
                "gateway.declined",
                extra={"order_id": order_id, "gateway_code": result.get("response")},
            )
            raise GatewayDeclinedError(
                code="payment_declined",
                message=reason,
                details={"gateway_code": result.get("response", "")},
            )

        return GatewayResult(
            transaction_id=result.get("transactionid", ""),
            auth_code=result.get("authcode") or None,
            avs_response=result.get("avsresponse") or None,
            raw=result,
        )

    async def close(self) -> None:
        await self._client.aclose()
