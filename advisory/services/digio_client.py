"""
Digio KYC client.

Starts template-based KYC requests (DigiLocker flow) and polls request status.
Webhook verification lives in advisory.services.signatures.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from advisory.core.exceptions import (
    MalformedVendorResponse,
    VendorNotConfigured,
    VendorResponseError,
    VendorTimeout,
    VendorUnavailable,
)
from advisory.models.subscription import KycStatus

logger = logging.getLogger(__name__)

VENDOR = "digio"


@dataclass
class KycSession:
    """What Digio hands back when a KYC request is created."""
    reference_id: str
    url: str
    request_id: Optional[str] = None
    access_token: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None


def _first(data: Dict[str, Any], *keys: str) -> Optional[Any]:
    """First non-empty value for keys, looking at the top level then under "data"."""
    nested = data.get("data") if isinstance(data.get("data"), dict) else {}
    for source in (data, nested):
        for key in keys:
            value = source.get(key)
            if value:
                return value
    return None


def _access_token(data: Dict[str, Any]) -> Optional[str]:
    token = _first(data, "access_token")
    # Digio sends {"access_token": {"id": "GWT...", "valid_till": ...}}
    if isinstance(token, dict):
        return token.get("id")
    return token


def resolve_kyc_status(response: Dict[str, Any]) -> str:
    """
    Collapse a Digio request response into a status string.

    "success" means verified. "approval_pending" with any successful action also
    counts as verified (the user finished, Digio has not closed the request yet).
    Anything else is mapped onto KycStatus when it can be, otherwise returned raw.
    """
    vendor_status = response.get("status")
    actions: List[Dict[str, Any]] = response.get("actions") or []
    has_successful_action = any(
        isinstance(action, dict) and action.get("status") == "success" for action in actions
    )

    if vendor_status == "success":
        return KycStatus.VERIFIED.value
    if vendor_status == "approval_pending" and has_successful_action:
        return KycStatus.VERIFIED.value

    parsed = KycStatus.parse(vendor_status)
    if parsed is not None:
        return parsed.value
    return vendor_status


class DigioClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        template_name: str = "DIGILOKER INTEGRATION",
        redirect_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = (client_id or "").strip()
        self.client_secret = (client_secret or "").strip()
        self.base_url = base_url.rstrip("/")
        self.template_name = template_name
        self.redirect_url = redirect_url
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "DigioClient":
        return cls(
            client_id=settings.DIGIO_CLIENT_ID,
            client_secret=settings.DIGIO_CLIENT_SECRET,
            base_url=settings.digio_base_url,
            template_name=settings.DIGIO_KYC_TEMPLATE,
            redirect_url=settings.kyc_redirect_url,
            timeout=settings.VENDOR_TIMEOUT_SECONDS,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.configured:
            raise VendorNotConfigured(VENDOR, "KYC provider not configured")

        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                auth=(self.client_id, self.client_secret),
                transport=self._transport,
            ) as client:
                r = await client.post(url, json=payload)
        except httpx.TimeoutException as e:
            logger.error("[Digio] Timeout calling %s: %s", path, e)
            raise VendorTimeout(VENDOR, "KYC provider timeout") from e
        except httpx.RequestError as e:
            logger.error("[Digio] Request error calling %s: %s", path, e)
            raise VendorUnavailable(VENDOR, f"KYC provider request failed: {e}") from e

        try:
            body = r.json()
        except ValueError:
            body = None

        if r.status_code >= 400:
            logger.warning("[Digio] POST %s -> %s: %s", path, r.status_code, (r.text or "")[:500])
            message = "KYC provider error"
            if isinstance(body, dict) and body.get("message"):
                message = str(body["message"])
            raise VendorResponseError(VENDOR, message, status_code=r.status_code, body=body)

        if not isinstance(body, dict):
            raise MalformedVendorResponse(
                VENDOR, "KYC provider returned an unexpected response", status_code=r.status_code
            )
        return body

    async def init_kyc(
        self,
        customer_identifier: str,
        customer_name: str,
        reference_id: str,
        notify_customer: bool = True,
        generate_access_token: bool = True,
        request_details: Optional[Dict[str, Any]] = None,
    ) -> KycSession:
        """
        Create a KYC request from the configured template.

        Raises MalformedVendorResponse if Digio does not return both a url and a
        reference_id, since neither the redirect nor the webhook join can work
        without them.
        """
        payload = {
            "customer_identifier": customer_identifier,
            "customer_name": customer_name,
            "reference_id": reference_id,
            "template_name": self.template_name,
            "notify_customer": notify_customer,
            "generate_access_token": generate_access_token,
            "request_details": request_details or {},
        }
        if self.redirect_url:
            payload["redirect_url"] = self.redirect_url

        logger.info("[Digio] Initiating KYC for reference %s", reference_id)
        data = await self._post("/client/kyc/v2/request/with_template", payload)

        url = _first(data, "url", "kyc_url")
        vendor_reference = _first(data, "reference_id")
        if not url or not vendor_reference:
            logger.error(
                "[Digio] KYC response missing url/reference_id for %s: keys=%s",
                reference_id,
                sorted(data.keys()),
            )
            raise MalformedVendorResponse(
                VENDOR, "KYC provider response missing url or reference_id", body=data
            )

        request_id = _first(data, "request_id", "id")
        if not request_id:
            logger.warning("[Digio] No request id in KYC response for %s", reference_id)

        return KycSession(
            reference_id=str(vendor_reference),
            url=str(url),
            request_id=str(request_id) if request_id else None,
            access_token=_access_token(data),
            raw=data,
        )

    async def fetch_kyc_response(self, request_id: str) -> Dict[str, Any]:
        """Current state of a KYC request as Digio reports it."""
        return await self._post(f"/client/kyc/v2/{request_id}/response", {})
