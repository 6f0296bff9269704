from typing import Any, Dict, Optional

from pydantic import BaseModel


class KycInitRequest(BaseModel):
    customer_identifier: Optional[str] = None  # email or mobile number
    customer_name: Optional[str] = None
    reference_id: Optional[str] = None  # subscription id
    notify_customer: bool = True
    generate_access_token: bool = True
    request_details: Optional[Dict[str, Any]] = None


class KycVerifyRequest(BaseModel):
    requestID: Optional[str] = None


class KycWebhookPayload(BaseModel):
    """Body Digio posts once a KYC request reaches a new state."""
    reference_id: str
    status: str
    kyc_details: Optional[Any] = None
