"""Pydantic schemas for payment requests and receipts.

The checkout frontend sends camelCase JSON; models accept either camelCase
aliases or snake_case names and serialize back to camelCase.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
PHONE_REGEX = re.compile(r"^\+?[1-9]\d{1,14}$")
# Formatting characters people type into phone fields
_PHONE_FORMATTING = re.compile(r"[\s().-]")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CardDetails(_CamelModel):
    number: str = Field(..., min_length=1, description="Card number or masked PAN from the tokenizer.")
    exp: str = Field(..., min_length=1, description="Card expiry (MMYY).")


class PaymentToken(_CamelModel):
    """Tokenized card returned by the gateway's client-side library."""

    token: str = Field(..., min_length=1, description="One-time payment token.")
    card: CardDetails


class Address(_CamelModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    address1: str = Field(..., min_length=1, max_length=200)
    address2: str | None = Field(default=None, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    postcode: str = Field(..., min_length=1, max_length=20)
    country: str = Field(..., min_length=2, max_length=2, description="ISO 3166-1 alpha-2 code.")


class BillingAddress(Address):
    email: str = Field(..., max_length=100)
    phone: str = Field(..., max_length=20)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        value = value.strip()
        if not EMAIL_REGEX.match(value):
            raise ValueError("Please enter a valid email address")
        return value

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: str) -> str:
        normalized = _PHONE_FORMATTING.sub("", value)
        if not PHONE_REGEX.match(normalized):
            raise ValueError("Please enter a valid phone number")
        return normalized


class LineItem(_CamelModel):
    name: str = Field(default="Product", max_length=200)
    quantity: int = Field(default=1, ge=1)


class Order(_CamelModel):
    order_number: str = Field(..., min_length=1, max_length=64)
    billing: BillingAddress
    shipping: Address
    line_items: list[LineItem] = Field(default_factory=list)
    total: str = Field(..., description="Order total, e.g. '$129.99'.")

    @field_validator("total")
    @classmethod
    def _check_total(cls, value: str) -> str:
        cleaned = value.strip().replace("$", "").replace(",", "")
        try:
            amount = Decimal(cleaned)
            if not amount.is_finite() or amount <= 0:
                raise ValueError("Order total must be greater than zero")
            cents = amount.quantize(Decimal("0.01"))
            if cents != amount:
                raise ValueError("Order total must have at most 2 decimal places")
            return f"{cents}"
        except InvalidOperation as exc:
            raise ValueError("Order total must be a number") from exc


class PaymentRequest(_CamelModel):
    """Body of ``POST /v1/payments``."""

    token: PaymentToken
    order: Order


class PaymentReceipt(_CamelModel):
    """Non-sensitive summary of an approved transaction."""

    transaction_id: str
    auth_code: str | None = None
    avs_response: str | None = None
    order_number: str


class PaymentResponse(_CamelModel):
    status: bool = True
    data: PaymentReceipt
    replayed: bool = Field(
        default=False,
        description="True if the receipt was replayed from cache instead of charging again.",
    )
