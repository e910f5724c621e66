"""Payment gateway interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class GatewayResult:
    """Parsed gateway response for an approved transaction.

    Attributes:
        transaction_id: Gateway transaction identifier.
        auth_code: Issuer authorization code.
        avs_response: Address verification result code.
        raw: All response fields as returned by the gateway.
    """

    transaction_id: str
    auth_code: str | None
    avs_response: str | None
    raw: dict[str, str] = field(default_factory=dict)


class AbstractPaymentGateway(ABC):
    """Interface for payment gateways that accept a flat field mapping."""

    @abstractmethod
    async def submit(self, fields: dict[str, str]) -> GatewayResult:
        """Submit one transaction attempt.

        Args:
            fields: Gateway request fields (already sanitized).

        Returns:
            GatewayResult for an approved transaction.

        Raises:
            GatewayAppError: If the gateway is unreachable or answers non-200.
            GatewayDeclinedError: If the gateway rejects the transaction.
        """
        raise NotImplementedError

    async def close(self) -> None:
        """Release network resources (no-op by default)."""
        return None
