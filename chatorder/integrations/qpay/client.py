"""QPay merchant API v2 client using httpx."""

import logging
from typing import TYPE_CHECKING, Any

import httpx

from chatorder.core.config import settings
from chatorder.schemas.order import InvoiceResult, PaymentCheckResult

if TYPE_CHECKING:
    from chatorder.models.order import Order

logger = logging.getLogger(__name__)

# Transport failures plus bodies that are not JSON (ValueError) or not the
# expected shape
RESPONSE_ERRORS = (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError)


class QPayClient:
    """Async client for creating and checking QPay invoices."""

    def __init__(self) -> None:
        self.base_url = settings.qpay_base_url.rstrip("/")
        self.username = settings.qpay_username
        self.password = settings.qpay_password
        self.invoice_code = settings.qpay_invoice_code
        self.callback_url = settings.qpay_callback_url
        self.timeout = settings.qpay_timeout_seconds

    @property
    def is_configured(self) -> bool:
        return bool(self.username and self.password and self.invoice_code)

    async def _get_token(self, client: httpx.AsyncClient) -> str:
        response = await client.post(
            f"{self.base_url}/auth/token",
            auth=(self.username, self.password),
        )
        response.raise_for_status()
        token: str = response.json()["access_token"]
        return token

    async def create_invoice(self, order: "Order", description: str) -> InvoiceResult:
        """Create an invoice for the order's total. Never raises."""
        if not self.is_configured:
            logger.warning("QPay not configured; skipping invoice for order %s", order.id)
            return InvoiceResult(success=False, error="QPay is not configured")

        payload: dict[str, Any] = {
            "invoice_code": self.invoice_code,
            "sender_invoice_no": str(order.id),
            "invoice_receiver_code": order.phone_number,
            "invoice_description": description,
            "amount": order.total_amount,
            "callback_url": f"{self.callback_url}?order_id={order.id}",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                token = await self._get_token(client)
                response = await client.post(
                    f"{self.base_url}/invoice",
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"},
                )
                response.raise_for_status()
                data = response.json()
            urls = data.get("urls") or []
            short_url = data.get("qPay_shortUrl") or (urls[0].get("link") if urls else None)
            return InvoiceResult(
                success=True,
                invoice_id=data.get("invoice_id"),
                qr_payload=data.get("qr_text") or data.get("qr_image"),
                short_url=short_url,
            )
        except RESPONSE_ERRORS as e:
            logger.exception("QPay invoice creation failed for order %s", order.id)
            return InvoiceResult(success=False, error=str(e) or type(e).__name__)

    async def check_status(self, invoice_id: str) -> PaymentCheckResult:
        """Ask QPay whether the invoice has been paid. Never raises."""
        if not self.is_configured:
            return PaymentCheckResult(paid=False)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                token = await self._get_token(client)
                response = await client.post(
                    f"{self.base_url}/payment/check",
                    json={
                        "object_type": "INVOICE",
                        "object_id": invoice_id,
                        "offset": {"page_number": 1, "page_limit": 100},
                    },
                    headers={"Authorization": f"Bearer {token}"},
                )
                response.raise_for_status()
                data = response.json()
            rows = data.get("rows") or []
            paid = any(row.get("payment_status") == "PAID" for row in rows)
            paid_amount = data.get("paid_amount")
            return PaymentCheckResult(
                paid=paid,
                paid_amount=int(paid_amount) if paid_amount is not None else None,
            )
        except RESPONSE_ERRORS:
            logger.exception("QPay payment check failed for invoice %s", invoice_id)
            return PaymentCheckResult(paid=False)
