"""Payment processing service.

Turns a validated checkout request into a single gateway transaction:
- Sanitizes billing/shipping fields before they leave the process
- Builds the gateway field mapping and order description
- Serializes overlapping requests for one order and replays approved receipts
  from cache, so a retried checkout never charges twice within a process
- Stores receipts encrypted when an encryption key is configured
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from app.adapters.payment.base import AbstractPaymentGateway
from app.core.config import PaymentSettings
from app.core.errors import ConfigurationAppError, EncryptionAppError
from app.schemas.payment import Address, BillingAddress, PaymentReceipt, PaymentRequest
from app.services.cache_service import TieredCacheService
from app.utils.encryption import FieldCipher

logger = logging.getLogger(__name__)

RECEIPT_NAMESPACE = "payments:receipts"

_UNSAFE_FIELD_CHARS = re.compile(r"[^\w\s.,\-@]")
_UNSAFE_NAME_CHARS = re.compile(r"[^\w\s-]")


def sanitize_input(value: str | None) -> str:
    """Strip characters the gateway should never receive in free-text fields."""
    return _UNSAFE_FIELD_CHARS.sub("", value) if value else ""


def build_order_description(merchant_name: str, request: PaymentRequest) -> str:
    """Build '<merchant> - Order <n> (<item> x <qty>, ...)'."""
    items = ", ".join(
        f"{_UNSAFE_NAME_CHARS.sub('', item.name)} x {item.quantity}"
        for item in request.order.line_items
    )
    return f"{merchant_name} - Order {request.order.order_number} ({items})"


def _billing_fields(billing: BillingAddress) -> dict[str, str]:
    return {
        "first_name": sanitize_input(billing.first_name),
        "last_name": sanitize_input(billing.last_name),
        "address1": sanitize_input(billing.address1),
        "address2": sanitize_input(billing.address2),
        "city": sanitize_input(billing.city),
        "state": sanitize_input(billing.state),
        "zip": sanitize_input(billing.postcode),
        "country": sanitize_input(billing.country),
        "phone": sanitize_input(billing.phone),
        "email": sanitize_input(billing.email),
    }


@dataclass
class _OrderLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


def _shipping_fields(shipping: Address) -> dict[str, str]:
    return {
        "shipping_firstname": sanitize_input(shipping.first_name),
        "shipping_lastname": sanitize_input(shipping.last_name),
        "shipping_address1": sanitize_input(shipping.address1),
        "shipping_address2": sanitize_input(shipping.address2),
        "shipping_city": sanitize_input(shipping.city),
        "shipping_state": sanitize_input(shipping.state),
        "shipping_country": sanitize_input(shipping.country),
        "shipping_zip": sanitize_input(shipping.postcode),
    }


class PaymentService:
    """Service orchestrating idempotent payment submission."""

    def __init__(
        self,
        *,
        gateway: AbstractPaymentGateway,
        cache: TieredCacheService,
        payment_settings: PaymentSettings,
        cipher: FieldCipher | None = None,
        receipt_ttl_seconds: int = 86400,
    ) -> None:
        """Initialize the payment service.

        Args:
            gateway: Gateway adapter used for the single transaction attempt.
            cache: Cache used to replay approved receipts.
            payment_settings: Gateway credentials and order description settings.
            cipher: Optional cipher for receipts at rest in the cache.
            receipt_ttl_seconds: How long receipts stay replayable.
        """
        self.gateway = gateway
        self.cache = cache
        self.settings = payment_settings
        self.cipher = cipher
        self.receipt_ttl_seconds = receipt_ttl_seconds
        self._order_locks: dict[str, _OrderLock] = {}

    @asynccontextmanager
    async def _order_guard(self, order_number: str) -> AsyncIterator[None]:
        """Serialize processing of one order number within this process."""
        entry = self._order_locks.setdefault(order_number, _OrderLock())
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._order_locks[order_number]

    def build_gateway_fields(self, request: PaymentRequest, *, client_ip: str) -> dict[str, str]:
        """Map a validated request onto gateway fields.

        Raises:
            ConfigurationAppError: If the gateway security key is not configured.
        """
        if not self.settings.security_key:
            logger.error("payment.security_key_missing")
            raise ConfigurationAppError(
                code="payment_configuration_error",
                message="Payment configuration error",
                details={"hint": "Set PAYMENT_SECURITY_KEY"},
            )

        order = request.order
        return {
            "type": "sale",
            "security_key": self.settings.security_key,
            "payment_token": request.token.token,
            "ccnumber": request.token.card.number,
            "ccexp": request.token.card.exp,
            "amount": order.total,
            "currency": self.settings.currency,
            "orderid": order.order_number,
            "order_description": build_order_description(self.settings.merchant_name, request),
            "ipaddress": client_ip,
            "customer_receipt": "true",
            **_billing_fields(order.billing),
            **_shipping_fields(order.shipping),
        }

    async def _get_cached_receipt(self, order_number: str) -> PaymentReceipt | None:
        cached = await self.cache.get(order_number, namespace=RECEIPT_NAMESPACE)
        if not cached:
            return None

        try:
            if self.cipher is not None and isinstance(cached, dict) and "auth_tag" in cached:
                cached = json.loads(self.cipher.decrypt(cached))
            return PaymentReceipt.model_validate(cached)
        except (EncryptionAppError, ValueError) as exc:
            # Unreadable receipt (e.g., rotated key): fall through to a live attempt.
            logger.warning(
                "payment.receipt_unreadable",
                extra={"order_number": order_number, "error_type": type(exc).__name__},
            )
            return None

    async def _store_receipt(self, receipt: PaymentReceipt) -> None:
        payload: Any = receipt.model_dump()
        if self.cipher is not None:
            payload = self.cipher.encrypt(json.dumps(payload))
        await self.cache.set(
            receipt.order_number,
            payload,
            ttl=self.receipt_ttl_seconds,
            namespace=RECEIPT_NAMESPACE,
        )

    async def process(self, request: PaymentRequest, *, client_ip: str) -> tuple[PaymentReceipt, bool]:
        """Charge the order or replay its earlier approval.

        Args:
            request: Validated payment request.
            client_ip: Client address forwarded to the gateway for fraud checks.

        Returns:
            Tuple of (receipt, replayed).

        Raises:
            ConfigurationAppError: If the gateway is not configured.
            GatewayAppError: If the gateway is unreachable or answers non-200.
            GatewayDeclinedError: If the gateway declines the transaction.
        """
        # Overlapping requests for one order run one at a time, so the
        # second one sees the receipt stored by the first.
        async with self._order_guard(request.order.order_number):
            return await self._process_locked(request, client_ip=client_ip)

    async def _process_locked(self, request: PaymentRequest, *, client_ip: str) -> tuple[PaymentReceipt, bool]:
        order_number = request.order.order_number
        logging_id = f"order-{order_number}-{int(time.time() * 1000)}"

        # Step 1: Replay an earlier approval for this order
        cached = await self._get_cached_receipt(order_number)
        if cached is not None:
            logger.info("payment.replayed", extra={"logging_id": logging_id})
            return cached, True

        # Step 2: Single gateway attempt
        fields = self.build_gateway_fields(request, client_ip=client_ip)
        logger.info("payment.attempt_started", extra={"logging_id": logging_id})
        result = await self.gateway.submit(fields)

        receipt = PaymentReceipt(
            transaction_id=result.transaction_id,
            auth_code=result.auth_code,
            avs_response=result.avs_response,
            order_number=order_number,
        )
        logger.info(
            "payment.approved",
            extra={"logging_id": logging_id, "transaction_id": result.transaction_id},
        )

        # Step 3: Remember the approval
        await self._store_receipt(receipt)
        return receipt, False
