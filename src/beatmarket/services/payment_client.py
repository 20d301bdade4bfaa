"""
Payment Processor Client
PayPal REST wrapper: OAuth2 client credentials, orders, capture, refunds and payouts
"""

import uuid
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from ..core.config import get_settings
from ..core.logging import payment_logger
from ..core.result import Result

settings = get_settings()


class CaptureOutcome(BaseModel):
    """Normalized capture response"""
    status: str
    captured_amount: float
    capture_id: Optional[str] = None
    payer_email: Optional[str] = None


def parse_capture(body: Dict[str, Any]) -> CaptureOutcome:
    """Pull amount, capture id and payer out of a capture response"""
    units = body.get("purchase_units") or [{}]
    captures = ((units[0] or {}).get("payments") or {}).get("captures") or [{}]
    capture = captures[0] or {}

    try:
        amount = float((capture.get("amount") or {}).get("value") or 0)
    except (TypeError, ValueError):
        amount = 0.0

    payer_email = (body.get("payer") or {}).get("email_address") or (
        ((body.get("payment_source") or {}).get("paypal") or {}).get("email_address")
    )

    return CaptureOutcome(
        status=str(body.get("status") or ""),
        captured_amount=amount,
        capture_id=capture.get("id"),
        payer_email=payer_email
    )


class PayPalClient:
    """PayPal REST API client"""

    def __init__(
        self,
        client_id: str = settings.PAYPAL_CLIENT_ID,
        client_secret: str = settings.PAYPAL_CLIENT_SECRET,
        base_url: str = settings.PAYPAL_API_BASE,
        timeout: float = 30.0
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        response = await client.post(
            f"{self.base_url}/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Content-Type": "application/x-www-form-urlencoded"}
        )
        if response.status_code >= 400:
            raise httpx.HTTPStatusError(
                f"PayPal auth failed: {response.status_code}",
                request=response.request,
                response=response
            )
        return response.json()["access_token"]

    async def _authorized_post(
        self,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None
    ) -> httpx.Response:
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
            token = await self._access_token(client)
            headers = {
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            }
            if idempotency_key:
                headers["PayPal-Request-Id"] = idempotency_key
            return await client.post(f"{self.base_url}{path}", json=payload or {}, headers=headers)

    async def create_order(
        self,
        reference_id: str,
        amount: float,
        description: str,
        currency: str = settings.PAYMENT_CURRENCY
    ) -> Result[str]:
        """Open a CAPTURE-intent order for an exact amount; returns the order id"""
        payload = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": reference_id,
                    "description": description[:127],
                    "amount": {"currency_code": currency, "value": f"{amount:.2f}"},
                }
            ],
        }

        try:
            response = await self._authorized_post("/v2/checkout/orders", payload)
            body = response.json()
            if response.status_code >= 400 or not body.get("id"):
                payment_logger.log_payment_error(
                    operation="CreateOrder",
                    error=f"HTTP {response.status_code}",
                    response=body
                )
                return Result.err("Failed to create payment order", status_code=502)
            return Result.ok(body["id"])

        except (httpx.HTTPError, ValueError, KeyError) as e:
            payment_logger.log_payment_error(operation="CreateOrder", error=str(e))
            return Result.err("Failed to create payment order", status_code=502)

    async def capture_order(self, order_id: str) -> Result[CaptureOutcome]:
        """Capture an approved order"""
        try:
            response = await self._authorized_post(f"/v2/checkout/orders/{order_id}/capture")
            body = response.json()
            if response.status_code >= 400 or body.get("status") != "COMPLETED":
                payment_logger.log_payment_error(
                    operation="CaptureOrder",
                    error=f"HTTP {response.status_code}",
                    order_id=order_id,
                    status=body.get("status")
                )
                return Result.err("Payment capture failed", status_code=response.status_code)
            return Result.ok(parse_capture(body))

        except (httpx.HTTPError, ValueError, KeyError) as e:
            payment_logger.log_payment_error(operation="CaptureOrder", error=str(e), order_id=order_id)
            return Result.err("Payment capture failed", status_code=502)

    async def refund_capture(self, capture_id: str) -> Result[str]:
        """Refund a capture in full; returns the refund status"""
        try:
            response = await self._authorized_post(
                f"/v2/payments/captures/{capture_id}/refund",
                idempotency_key=f"refund-{capture_id}"
            )
            body = response.json()
            if response.status_code >= 400:
                payment_logger.log_payment_error(
                    operation="RefundCapture",
                    error=f"HTTP {response.status_code}",
                    capture_id=capture_id
                )
                return Result.err("Refund failed", status_code=response.status_code)
            return Result.ok(str(body.get("status") or "PENDING"))

        except (httpx.HTTPError, ValueError, KeyError) as e:
            payment_logger.log_payment_error(operation="RefundCapture", error=str(e), capture_id=capture_id)
            return Result.err("Refund failed", status_code=502)

    async def send_payout(
        self,
        receiver: str,
        amount: float,
        note: str,
        sender_item_id: str,
        currency: str = settings.PAYMENT_CURRENCY
    ) -> Result[str]:
        """Pay the seller share to an email destination; returns the batch id"""
        payload = {
            "sender_batch_header": {
                "sender_batch_id": f"payout-{sender_item_id}-{uuid.uuid4().hex[:8]}",
                "email_subject": "You have a payout from a beat sale",
            },
            "items": [
                {
                    "recipient_type": "EMAIL",
                    "amount": {"value": f"{amount:.2f}", "currency": currency},
                    "receiver": receiver,
                    "note": note[:4000],
                    "sender_item_id": sender_item_id,
                }
            ],
        }

        try:
            response = await self._authorized_post("/v1/payments/payouts", payload)
            body = response.json()
            batch_id = (body.get("batch_header") or {}).get("payout_batch_id")
            if response.status_code >= 400 or not batch_id:
                payment_logger.log_payment_error(
                    operation="Payout",
                    error=f"HTTP {response.status_code}",
                    sender_item_id=sender_item_id
                )
                return Result.err("Payout failed", status_code=response.status_code)
            return Result.ok(batch_id)

        except (httpx.HTTPError, ValueError, KeyError) as e:
            payment_logger.log_payment_error(operation="Payout", error=str(e), sender_item_id=sender_item_id)
            return Result.err("Payout failed", status_code=502)
