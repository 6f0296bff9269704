"""
Razorpay REST client (orders and payments).

One instance is built at startup from settings and handed to the routes through
app.state; tests inject an httpx transport instead of patching module globals.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from advisory.core.exceptions import (
    MalformedVendorResponse,
    VendorNotConfigured,
    VendorResponseError,
    VendorTimeout,
    VendorUnavailable,
)

logger = logging.getLogger(__name__)

VENDOR = "razorpay"


class RazorpayClient:
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = (key_id or "").strip()
        self.key_secret = (key_secret or "").strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "RazorpayClient":
        return cls(
            key_id=settings.RAZORPAY_KEY_ID,
            key_secret=settings.RAZORPAY_KEY_SECRET,
            base_url=settings.RAZORPAY_API_BASE,
            timeout=settings.VENDOR_TIMEOUT_SECONDS,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.configured:
            raise VendorNotConfigured(VENDOR, "Payment gateway not configured")

        url = f"{self.base_url}{path}"
        logger.info("[Razorpay] %s %s", method, path)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                auth=(self.key_id, self.key_secret),
                transport=self._transport,
            ) as client:
                r = await client.request(method, url, json=payload)
        except httpx.TimeoutException as e:
            logger.error("[Razorpay] Timeout calling %s: %s", path, e)
            raise VendorTimeout(VENDOR, "Payment gateway timeout") from e
        except httpx.RequestError as e:
            logger.error("[Razorpay] Request error calling %s: %s", path, e)
            raise VendorUnavailable(VENDOR, f"Payment gateway request failed: {e}") from e

        try:
            body = r.json()
        except ValueError:
            body = None

        if r.status_code >= 400:
            logger.warning("[Razorpay] %s %s -> %s: %s", method, path, r.status_code, (r.text or "")[:500])
            message = "Payment gateway error"
            if isinstance(body, dict):
                # Razorpay error shape: {"error": {"code": ..., "description": ...}}
                error = body.get("error") or {}
                if isinstance(error, dict) and error.get("description"):
                    message = error["description"]
            raise VendorResponseError(VENDOR, message, status_code=r.status_code, body=body)

        if not isinstance(body, dict):
            raise MalformedVendorResponse(
                VENDOR, "Payment gateway returned an unexpected response", status_code=r.status_code
            )
        return body

    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Create an order. `amount` is in the smallest currency unit (paise)."""
        payload = {
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        order = await self._request("POST", "/orders", payload)
        logger.info("[Razorpay] Order created: %s", order.get("id"))
        return order

    async def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/payments/{payment_id}")
