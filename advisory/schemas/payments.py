from typing import Any, Dict, Optional

from pydantic import BaseModel


class CreateOrderRequest(BaseModel):
    # Left loosely typed so the route can answer "Amount must be a valid number"
    # instead of a generic validation error
    amount: Optional[Any] = None
    currency: Optional[str] = None
    receipt: Optional[str] = None
    notes: Optional[Dict[str, Any]] = None


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
