"""Payment gateway adapters."""

from app.adapters.payment.base import AbstractPaymentGateway, GatewayResult
from app.adapters.payment.nmi_client import NMIGatewayClient

__all__ = ["AbstractPaymentGateway", "GatewayResult", "NMIGatewayClient"]
