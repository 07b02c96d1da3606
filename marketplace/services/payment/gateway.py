# marketplace/services/payment/gateway.py
"""Payment gateway collaborator.

The engine only records what the gateway reports; card / PIX / boleto
details stay on the gateway side.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import requests

from marketplace.config.settings import get_settings
from marketplace.core.exceptions import GatewayError

logger = logging.getLogger(__name__)


@dataclass
class CaptureResult:
    transaction_id: str
    status: str


@dataclass
class RefundResult:
    refund_id: str


class PaymentGateway:
    """Narrow contract of the payment gateway"""

    def capture_payment(self, order_ref: str, amount: Decimal) -> CaptureResult:
        raise NotImplementedError

    def refund(self, transaction_id: str, amount: Decimal) -> RefundResult:
        raise NotImplementedError


class HttpPaymentGateway(PaymentGateway):
    """JSON-over-HTTP gateway client"""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _post(self, path: str, body: dict) -> dict:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            response = requests.post(
                f"{self.base_url}{path}", json=body, headers=headers, timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise GatewayError(f"Payment gateway request to {path} failed: {e}") from e
        except ValueError as e:
            raise GatewayError(f"Payment gateway returned invalid JSON for {path}") from e

    def capture_payment(self, order_ref: str, amount: Decimal) -> CaptureResult:
        data = self._post("/captures", {"order_ref": order_ref, "amount": str(amount)})
        return CaptureResult(transaction_id=data["transaction_id"], status=data.get("status", "paid"))

    def refund(self, transaction_id: str, amount: Decimal) -> RefundResult:
        data = self._post("/refunds", {"transaction_id": transaction_id, "amount": str(amount)})
        return RefundResult(refund_id=data["refund_id"])


def get_payment_gateway(base_url: Optional[str] = None) -> PaymentGateway:
    settings = get_settings()
    base_url = base_url or settings.PAYMENT_GATEWAY_URL
    if not base_url:
        raise GatewayError("Payment gateway is not configured (PAYMENT_GATEWAY_URL)")
    return HttpPaymentGateway(
        base_url,
        api_key=settings.PAYMENT_GATEWAY_API_KEY,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
