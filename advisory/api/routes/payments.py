"""
Razorpay integration.
Creates orders for the checkout widget and verifies the payment it reports back.
A verified payment whose order notes name a user and plan becomes a subscription.
"""
import logging
import math
import time
from decimal import Decimal, DecimalException, InvalidOperation, ROUND_HALF_UP

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from advisory.api.errors import vendor_http_exception
from advisory.core.exceptions import VendorError
from advisory.core.plans import BillingPeriod, get_plan, parse_billing_period, plan_price
from advisory.db.session import get_db
from advisory.dependencies.clients import get_razorpay_client, get_settings
from advisory.schemas.payments import CreateOrderRequest, VerifyPaymentRequest
from advisory.services.razorpay_client import RazorpayClient
from advisory.services.signatures import verify_payment_signature
from advisory.services.subscriptions import (
    SubscriptionActivationError,
    create_subscription_from_payment,
    serialize_subscription,
)

logger = logging.getLogger(__name__)

router = APIRouter()

ACTIVATION_FAILED_MESSAGE = "Payment succeeded but subscription activation failed. Please contact support."


def _parse_amount(raw) -> Decimal:
    """Amount in rupees from whatever the client sent (number or numeric string)."""
    if isinstance(raw, bool):
        raise ValueError("boolean amount")
    try:
        amount = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"not a number: {raw!r}")
    if not amount.is_finite():
        raise ValueError(f"not a finite number: {raw!r}")
    if amount <= 0:
        raise ValueError(f"not a positive amount: {raw!r}")
    return amount


def _to_paise(amount: Decimal) -> int:
    """Rupees to whole paise, rounding half up. ValueError when out of range."""
    try:
        paise = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except DecimalException:
        raise ValueError(f"amount out of range: {amount}")
    if paise < 1:
        raise ValueError(f"amount below one paisa: {amount}")
    return paise


@router.post("/create-order")
async def create_order(
    body: CreateOrderRequest,
    razorpay: RazorpayClient = Depends(get_razorpay_client),
    settings=Depends(get_settings),
):
    """
    Create a Razorpay order. `amount` is in rupees; Razorpay receives paise.
    When the notes name a plan, the amount must cover that plan's catalog price.
    Returns the vendor order untouched. Nothing is stored locally.
    """
    raw_amount = body.amount
    if raw_amount is None or raw_amount == "" or raw_amount == 0:
        logger.info("[Razorpay] create-order rejected: amount missing")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Amount is required")

    try:
        amount = _parse_amount(raw_amount)
        paise = _to_paise(amount)
    except ValueError:
        logger.info("[Razorpay] create-order rejected: invalid amount %r", raw_amount)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Amount must be a valid number")

    notes = body.notes or {}
    plan = None
    if notes.get("plan_id"):
        plan = get_plan(notes["plan_id"])
        if plan is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown plan: {notes['plan_id']}")
    period = BillingPeriod.MONTHLY
    if notes.get("billing_period"):
        period = parse_billing_period(notes["billing_period"])
        if period is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown billing period: {notes['billing_period']}",
            )
    if plan is not None:
        price = plan_price(plan, period)
        if amount < price:
            logger.info(
                "[Razorpay] create-order rejected: %s below %s price %s for %s",
                amount,
                period.value,
                price,
                notes["plan_id"],
            )
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "message": "Amount is below the price of the selected plan",
                    "planPrice": str(price),
                },
            )

    currency = (body.currency or settings.PAYMENT_CURRENCY).upper()
    receipt = body.receipt or f"rcpt_{math.floor(time.time() * 1000)}"

    try:
        order = await razorpay.create_order(
            amount=paise,
            currency=currency,
            receipt=receipt,
            notes=notes,
        )
    except VendorError as e:
        logger.error("[Razorpay] Error creating order: %s", e)
        raise vendor_http_exception(e, "Error creating order", status.HTTP_500_INTERNAL_SERVER_ERROR)

    return {
        "status": "success",
        "message": "Order created successfully",
        "data": {"order": order},
    }


@router.post("/verify")
async def verify_payment(
    body: VerifyPaymentRequest,
    db: Session = Depends(get_db),
    razorpay: RazorpayClient = Depends(get_razorpay_client),
    settings=Depends(get_settings),
):
    """
    Verify the checkout signature, re-fetch the payment and, when the order notes
    identify a user and plan, activate the subscription it paid for.
    """
    fields = {
        "razorpay_order_id": body.razorpay_order_id,
        "razorpay_payment_id": body.razorpay_payment_id,
        "razorpay_signature": body.razorpay_signature,
    }
    missing = [name for name, value in fields.items() if not (value and value.strip())]
    if missing:
        logger.info("[Razorpay] verify rejected: missing %s", ", ".join(missing))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Missing payment verification parameters", "missing": missing},
        )

    order_id = body.razorpay_order_id.strip()
    payment_id = body.razorpay_payment_id.strip()

    if not settings.RAZORPAY_KEY_SECRET:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment gateway not configured",
        )

    if not verify_payment_signature(order_id, payment_id, body.razorpay_signature, settings.RAZORPAY_KEY_SECRET):
        logger.warning("[Razorpay] Invalid payment signature for order=%s payment=%s", order_id, payment_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payment signature")

    try:
        payment = await razorpay.fetch_payment(payment_id)
    except VendorError as e:
        logger.error("[Razorpay] Error fetching payment %s: %s", payment_id, e)
        raise vendor_http_exception(e, "Error verifying payment", status.HTTP_500_INTERNAL_SERVER_ERROR)

    data = {"payment": payment}

    notes = payment.get("notes") or {}
    if notes.get("user_id") and notes.get("plan_id"):
        try:
            subscription, created = create_subscription_from_payment(db, payment, order_id=order_id)
        except Exception as e:
            db.rollback()
            logger.error(
                "[Razorpay] Payment captured but subscription activation failed "
                "(order=%s payment=%s): %s",
                order_id,
                payment_id,
                e,
                exc_info=not isinstance(e, SubscriptionActivationError),
            )
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail={"message": ACTIVATION_FAILED_MESSAGE, "error": str(e)},
            )
        data["subscription"] = serialize_subscription(subscription)
        if not created:
            logger.info("[Razorpay] Payment %s re-verified; subscription %s already exists", payment_id, subscription.id)

    return {
        "status": "success",
        "message": "Payment verified successfully",
        "data": data,
    }
