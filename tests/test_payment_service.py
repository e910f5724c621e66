"""Tests for payment field mapping and receipt replay."""

import asyncio

import pytest

from app.core.config import PaymentSettings
from app.core.errors import ConfigurationAppError, GatewayDeclinedError
from app.schemas.payment import PaymentRequest
from app.services.cache_service import TieredCacheService
from app.services.payment_service import (
    RECEIPT_NAMESPACE,
    PaymentService,
    build_order_description,
    sanitize_input,
)
from app.utils.encryption import FieldCipher


def _settings(**overrides) -> PaymentSettings:
    values = {"security_key": "sk-test", "merchant_name": "Knife Shop", "currency": "USD"}
    values.update(overrides)
    return PaymentSettings(**values)


def _service(gateway, remote, clock, *, cipher=None, **settings_overrides) -> PaymentService:
    cache = TieredCacheService(remote, clock=clock)
    return PaymentService(
        gateway=gateway,
        cache=cache,
        payment_settings=_settings(**settings_overrides),
        cipher=cipher,
    )


@pytest.fixture
def request_model(payment_payload) -> PaymentRequest:
    return PaymentRequest.model_validate(payment_payload)


class TestSanitizing:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("O'Brien <script>", "OBrien script"),
            ("12 Main St., Apt #4", "12 Main St., Apt 4"),
            ("ada@example.com", "ada@example.com"),
            (None, ""),
            ("", ""),
        ],
    )
    def test_sanitize_input(self, raw, expected: str) -> None:
        assert sanitize_input(raw) == expected

    def test_order_description_lists_items(self, request_model: PaymentRequest) -> None:
        assert (
            build_order_description("Knife Shop", request_model)
            == "Knife Shop - Order 1001 (Chef Knife x 2, Whetstone x 1)"
        )


class TestGatewayFields:
    def test_fields_map_order_and_addresses(self, gateway, remote, clock, request_model) -> None:
        service = _service(gateway, remote, clock)

        fields = service.build_gateway_fields(request_model, client_ip="203.0.113.7")

        assert fields["type"] == "sale"
        assert fields["security_key"] == "sk-test"
        assert fields["payment_token"] == "tok_abc123"
        assert fields["amount"] == "1249.50"
        assert fields["currency"] == "USD"
        assert fields["orderid"] == "1001"
        assert fields["ipaddress"] == "203.0.113.7"
        assert fields["customer_receipt"] == "true"
        assert fields["first_name"] == "Ada"
        assert fields["zip"] == "N1 9GU"
        assert fields["phone"] == "+442079460958"
        assert fields["address2"] == ""
        assert fields["shipping_firstname"] == "Ada"
        assert fields["shipping_zip"] == "N1 9GU"

    def test_missing_security_key_is_configuration_error(self, gateway, remote, clock, request_model) -> None:
        service = _service(gateway, remote, clock, security_key=None)

        with pytest.raises(ConfigurationAppError) as exc_info:
            service.build_gateway_fields(request_model, client_ip="203.0.113.7")

        assert exc_info.value.code == "payment_configuration_error"


class TestProcess:
    @pytest.mark.asyncio
    async def test_approved_payment_is_stored_and_replayed(self, gateway, remote, clock, request_model) -> None:
        service = _service(gateway, remote, clock)

        receipt, replayed = await service.process(request_model, client_ip="203.0.113.7")
        assert replayed is False
        assert receipt.transaction_id == "txn-1001"
        assert receipt.order_number == "1001"

        again, replayed = await service.process(request_model, client_ip="203.0.113.7")
        assert replayed is True
        assert again == receipt
        assert len(gateway.submissions) == 1

    @pytest.mark.asyncio
    async def test_receipt_is_encrypted_at_rest(self, gateway, remote, clock, request_model) -> None:
        service = _service(gateway, remote, clock, cipher=FieldCipher("receipt-secret"))

        await service.process(request_model, client_ip="203.0.113.7")

        stored = remote.data[f"{RECEIPT_NAMESPACE}:1001"]
        assert "txn-1001" not in stored
        assert "auth_tag" in stored

        _, replayed = await service.process(request_model, client_ip="203.0.113.7")
        assert replayed is True
        assert len(gateway.submissions) == 1

    @pytest.mark.asyncio
    async def test_unreadable_receipt_falls_through_to_gateway(self, gateway, remote, clock, request_model) -> None:
        first = _service(gateway, remote, clock, cipher=FieldCipher("old-secret"))
        await first.process(request_model, client_ip="203.0.113.7")

        rotated = PaymentService(
            gateway=gateway,
            cache=first.cache,
            payment_settings=_settings(),
            cipher=FieldCipher("new-secret"),
        )
        _, replayed = await rotated.process(request_model, client_ip="203.0.113.7")

        assert replayed is False
        assert len(gateway.submissions) == 2

    @pytest.mark.asyncio
    async def test_decline_is_not_cached(self, gateway, remote, clock, request_model) -> None:
        gateway.error = GatewayDeclinedError(code="payment_declined", message="DECLINE")
        service = _service(gateway, remote, clock)

        with pytest.raises(GatewayDeclinedError):
            await service.process(request_model, client_ip="203.0.113.7")

        assert f"{RECEIPT_NAMESPACE}:1001" not in remote.data

    @pytest.mark.asyncio
    async def test_replay_survives_remote_outage(self, gateway, remote, clock, request_model) -> None:
        service = _service(gateway, remote, clock)
        await service.process(request_model, client_ip="203.0.113.7")

        remote.failing = True
        _, replayed = await service.process(request_model, client_ip="203.0.113.7")

        assert replayed is True
        assert len(gateway.submissions) == 1

    @pytest.mark.asyncio
    async def test_overlapping_requests_for_one_order_charge_once(
        self, gateway, remote, clock, request_model
    ) -> None:
        """A double-submitted checkout waits for the first attempt and replays it."""
        submit = gateway.submit

        async def slow_submit(fields):
            await asyncio.sleep(0.05)
            return await submit(fields)

        gateway.submit = slow_submit
        service = _service(gateway, remote, clock)

        results = await asyncio.gather(
            service.process(request_model, client_ip="203.0.113.7"),
            service.process(request_model, client_ip="203.0.113.7"),
        )

        assert len(gateway.submissions) == 1
        assert sorted(replayed for _, replayed in results) == [False, True]
        assert results[0][0] == results[1][0]
        assert service._order_locks == {}

    @pytest.mark.asyncio
    async def test_different_orders_each_charge_once(self, gateway, remote, clock, payment_payload) -> None:
        service = _service(gateway, remote, clock)
        second_payload = {**payment_payload, "order": {**payment_payload["order"], "orderNumber": "1002"}}

        results = await asyncio.gather(
            service.process(PaymentRequest.model_validate(payment_payload), client_ip="203.0.113.7"),
            service.process(PaymentRequest.model_validate(second_payload), client_ip="203.0.113.7"),
        )

        assert [receipt.order_number for receipt, _ in results] == ["1001", "1002"]
        assert len(gateway.submissions) == 2
