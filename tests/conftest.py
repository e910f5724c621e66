"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the environment before any settings import so no .env file is
read and no real Redis or gateway is contacted.
"""

import fnmatch
import os
from typing import Any

import pytest

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("PAYMENT_SECURITY_KEY", "test-security-key")
os.environ.setdefault("APP_ENCRYPTION_KEY", "test-encryption-key")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from app.adapters.cache.base import AbstractRemoteStore, RemoteResult  # noqa: E402
from app.adapters.payment.base import AbstractPaymentGateway, GatewayResult  # noqa: E402


class FakeClock:
    """Deterministic clock used to test expiration logic."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class FakeRemoteStore(AbstractRemoteStore):
    """In-memory stand-in for Redis that can be switched into failure mode."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.failing = False
        self.calls: list[str] = []
        self.closed = False

    def _fail(self, op: str) -> RemoteResult[Any] | None:
        self.calls.append(op)
        if self.failing:
            return RemoteResult.failure("ConnectionError: simulated outage")
        return None

    async def get(self, key: str) -> RemoteResult[str]:
        return self._fail("get") or RemoteResult.success(self.data.get(key))

    async def set(self, key: str, value: str, ttl_seconds: int) -> RemoteResult[bool]:
        if failed := self._fail("set"):
            return failed
        self.data[key] = value
        self.ttls[key] = ttl_seconds
        return RemoteResult.success(True)

    async def delete(self, *keys: str) -> RemoteResult[int]:
        if failed := self._fail("delete"):
            return failed
        removed = sum(1 for k in keys if self.data.pop(k, None) is not None)
        return RemoteResult.success(removed)

    async def keys(self, pattern: str) -> RemoteResult[list[str]]:
        if failed := self._fail("keys"):
            return failed
        return RemoteResult.success([k for k in self.data if fnmatch.fnmatchcase(k, pattern)])

    async def ping(self) -> RemoteResult[bool]:
        return self._fail("ping") or RemoteResult.success(True)

    async def info(self, section: str) -> RemoteResult[dict[str, Any]]:
        if failed := self._fail("info"):
            return failed
        return RemoteResult.success({"db0": {"keys": len(self.data), "expires": len(self.ttls)}})

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


class FakeGateway(AbstractPaymentGateway):
    """Gateway double that records submitted fields and replays a scripted outcome."""

    def __init__(self, result: GatewayResult | None = None, error: Exception | None = None) -> None:
        self.result = result or GatewayResult(
            transaction_id="txn-1001",
            auth_code="123456",
            avs_response="Y",
            raw={"response": "1"},
        )
        self.error = error
        self.submissions: list[dict[str, str]] = []
        self.closed = False

    async def submit(self, fields: dict[str, str]) -> GatewayResult:
        self.submissions.append(fields)
        if self.error is not None:
            raise self.error
        return self.result

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def payment_payload() -> dict[str, Any]:
    """Checkout body in the camelCase shape the storefront sends."""
    address = {
        "firstName": "Ada",
        "lastName": "Lovelace",
        "address1": "12 Analytical Way",
        "city": "London",
        "state": "LDN",
        "postcode": "N1 9GU",
        "country": "GB",
    }
    return {
        "token": {"token": "tok_abc123", "card": {"number": "411111******1111", "exp": "1230"}},
        "order": {
            "orderNumber": "1001",
            "billing": {**address, "email": "ada@example.com", "phone": "+44 20 7946 0958"},
            "shipping": address,
            "lineItems": [{"name": "Chef Knife", "quantity": 2}, {"name": "Whetstone", "quantity": 1}],
            "total": "$1,249.50",
        },
    }
