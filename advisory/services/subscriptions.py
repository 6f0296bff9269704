"""
Subscription Service
Creates subscriptions from captured payments, records KYC progress and expires
subscriptions whose end date has passed.
"""
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from advisory.core.plans import BillingPeriod, compute_end_date, get_plan, parse_billing_period, plan_price
from advisory.models.subscription import KycStatus, Subscription, SubscriptionStatus
from advisory.utils.dates import normalize_datetime, utcnow

logger = logging.getLogger(__name__)


class SubscriptionActivationError(Exception):
    """A captured payment could not be turned into a subscription."""


class KycReferenceConflict(Exception):
    """A KYC reference id returned by Digio already belongs to another subscription."""


def get_subscription(db: Session, subscription_id: str) -> Optional[Subscription]:
    return db.query(Subscription).filter(Subscription.id == subscription_id).first()


def get_by_payment_id(db: Session, payment_id: str) -> Optional[Subscription]:
    return db.query(Subscription).filter(Subscription.payment_id == payment_id).first()


def find_by_kyc_reference(db: Session, reference_id: str) -> Optional[Subscription]:
    """The subscription a Digio webhook refers to, joined on kyc_reference_id."""
    return db.query(Subscription).filter(Subscription.kyc_reference_id == reference_id).first()


def resolve_start_date(db: Session, user_id: str, plan_id: str, now: datetime) -> datetime:
    """
    A renewal bought before the current period ends starts where that period ends.
    Otherwise the subscription starts now.
    """
    latest = (
        db.query(Subscription)
        .filter(
            Subscription.user_id == user_id,
            Subscription.plan_id == plan_id,
            Subscription.status == SubscriptionStatus.ACTIVE,
        )
        .order_by(Subscription.end_date.desc())
        .first()
    )
    if latest and latest.end_date and latest.end_date > now:
        return latest.end_date
    return now


def create_subscription_from_payment(
    db: Session,
    payment: Dict[str, Any],
    order_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[Subscription, bool]:
    """
    Record the subscription a verified payment paid for.

    The payment's notes must carry user_id and plan_id (set when the order was
    created). Returns (subscription, created). A payment id that is already
    recorded returns the existing row with created=False.

    Raises SubscriptionActivationError when the notes are unusable or the
    amount paid is below the catalog price of the plan and period.
    """
    payment_id = payment.get("id")
    if not payment_id:
        raise SubscriptionActivationError("Payment has no id")

    existing = get_by_payment_id(db, payment_id)
    if existing:
        logger.info("Payment %s already recorded as subscription %s", payment_id, existing.id)
        return existing, False

    notes = payment.get("notes") or {}
    user_id = notes.get("user_id")
    plan_id = notes.get("plan_id")
    if not user_id or not plan_id:
        raise SubscriptionActivationError("Payment notes do not identify a user and plan")

    plan = get_plan(plan_id)
    if plan is None:
        raise SubscriptionActivationError(f"Unknown plan: {plan_id}")

    raw_period = notes.get("billing_period")
    period = parse_billing_period(raw_period) if raw_period else BillingPeriod.MONTHLY
    if period is None:
        raise SubscriptionActivationError(f"Unknown billing period: {raw_period}")

    now = normalize_datetime(now) or utcnow()
    plan_id = str(plan_id).strip().lower()

    # Razorpay amounts are in paise
    try:
        paid = Decimal(str(payment.get("amount") or 0))
    except InvalidOperation:
        raise SubscriptionActivationError(f"Payment amount is not a number: {payment.get('amount')!r}")
    if not paid.is_finite():
        raise SubscriptionActivationError(f"Payment amount is not a number: {payment.get('amount')!r}")
    price = plan_price(plan, period)
    if paid < price * 100:
        raise SubscriptionActivationError(
            f"Payment of {paid} paise is below the {period.value} price of {plan_id} ({price} rupees)"
        )
    amount = (paid / Decimal(100)).quantize(Decimal("0.01"))

    start_date = resolve_start_date(db, str(user_id), plan_id, now)

    subscription = Subscription(
        user_id=str(user_id),
        plan_id=plan_id,
        plan_name=plan["name"],
        billing_period=period.value,
        status=SubscriptionStatus.ACTIVE,
        start_date=start_date,
        end_date=compute_end_date(start_date, period),
        payment_id=payment_id,
        order_id=order_id or payment.get("order_id"),
        amount=amount,
        currency=(payment.get("currency") or "INR").upper(),
        kyc_status=KycStatus.PENDING,
        created_at=now,
        updated_at=now,
    )
    db.add(subscription)
    try:
        db.commit()
    except IntegrityError:
        # Another request recorded the same payment first
        db.rollback()
        existing = get_by_payment_id(db, payment_id)
        if existing:
            return existing, False
        raise
    db.refresh(subscription)

    logger.info(
        "Subscription %s created for user %s (plan=%s, period=%s, ends=%s)",
        subscription.id,
        subscription.user_id,
        subscription.plan_id,
        subscription.billing_period,
        subscription.end_date.isoformat(),
    )
    return subscription, True


def mark_kyc_initiated(
    db: Session,
    subscription_id: str,
    kyc_reference_id: str,
    kyc_request_id: Optional[str],
    now: Optional[datetime] = None,
) -> int:
    """
    Record a started KYC request in one conditional UPDATE.

    Subscriptions whose KYC is already verified are left alone. Returns the number
    of rows updated; 0 means the subscription vanished or was verified between the
    lookup and the write.

    Raises KycReferenceConflict when another subscription already holds
    kyc_reference_id.
    """
    now = normalize_datetime(now) or utcnow()
    try:
        updated = (
            db.query(Subscription)
            .filter(
                Subscription.id == subscription_id,
                Subscription.kyc_status != KycStatus.VERIFIED,
            )
            .update(
                {
                    Subscription.kyc_reference_id: kyc_reference_id,
                    Subscription.kyc_request_id: kyc_request_id,
                    Subscription.kyc_status: KycStatus.INITIATED,
                    Subscription.kyc_initiated_at: now,
                    Subscription.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.error(
            "[Digio] KYC reference %s for subscription %s is already linked to another subscription",
            kyc_reference_id,
            subscription_id,
        )
        raise KycReferenceConflict(kyc_reference_id) from e
    return updated


def apply_kyc_webhook(
    db: Session,
    subscription: Subscription,
    kyc_status: KycStatus,
    details: Any,
    now: Optional[datetime] = None,
) -> Subscription:
    """
    Store the KYC outcome Digio reported.

    Deliveries are applied in arrival order; the last one wins. Overwriting an
    already-terminal status is logged so replays can be spotted.
    """
    now = normalize_datetime(now) or utcnow()
    previous = subscription.kyc_status

    if previous is not None and previous.is_terminal and previous != kyc_status:
        logger.warning(
            "[KYC webhook] Subscription %s KYC status overwritten %s -> %s",
            subscription.id,
            previous.value,
            kyc_status.value,
        )

    subscription.kyc_status = kyc_status
    subscription.kyc_details = details
    if kyc_status.is_terminal:
        subscription.kyc_completed_at = now
    subscription.updated_at = now

    db.commit()
    db.refresh(subscription)
    return subscription


def expire_due_subscriptions(
    db: Session,
    now: Optional[datetime] = None,
    user_id: Optional[str] = None,
) -> List[str]:
    """
    Move every active subscription whose end_date has passed to expired.

    One batched UPDATE, committed once. Optionally limited to one user's
    subscriptions. Returns the ids that changed; an empty list when nothing was due.
    """
    now = normalize_datetime(now) or utcnow()

    due = db.query(Subscription.id).filter(
        Subscription.status == SubscriptionStatus.ACTIVE,
        Subscription.end_date < now,
    )
    if user_id is not None:
        due = due.filter(Subscription.user_id == user_id)
    ids = [row.id for row in due.all()]

    if not ids:
        return []

    (
        db.query(Subscription)
        .filter(
            Subscription.id.in_(ids),
            Subscription.status == SubscriptionStatus.ACTIVE,
        )
        .update(
            {Subscription.status: SubscriptionStatus.EXPIRED, Subscription.updated_at: now},
            synchronize_session=False,
        )
    )
    db.commit()
    return ids


def list_user_subscriptions(db: Session, user_id: str) -> List[Subscription]:
    return (
        db.query(Subscription)
        .filter(Subscription.user_id == user_id)
        .order_by(Subscription.end_date.desc())
        .all()
    )


def days_remaining(subscription: Subscription, now: Optional[datetime] = None) -> int:
    if subscription.status != SubscriptionStatus.ACTIVE:
        return 0
    now = normalize_datetime(now) or utcnow()
    remaining = subscription.end_date - now
    if remaining.total_seconds() <= 0:
        return 0
    return remaining.days + (1 if remaining.seconds or remaining.microseconds else 0)


def serialize_subscription(subscription: Subscription, now: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "id": subscription.id,
        "userId": subscription.user_id,
        "planId": subscription.plan_id,
        "planName": subscription.plan_name,
        "billingPeriod": subscription.billing_period,
        "status": subscription.status.value,
        "startDate": subscription.start_date.isoformat() if subscription.start_date else None,
        "endDate": subscription.end_date.isoformat() if subscription.end_date else None,
        "paymentId": subscription.payment_id,
        "orderId": subscription.order_id,
        "amount": str(subscription.amount) if subscription.amount is not None else None,
        "currency": subscription.currency,
        "kycStatus": subscription.kyc_status.value if subscription.kyc_status else None,
        "kycReferenceId": subscription.kyc_reference_id,
        "kycInitiatedAt": subscription.kyc_initiated_at.isoformat() if subscription.kyc_initiated_at else None,
        "kycCompletedAt": subscription.kyc_completed_at.isoformat() if subscription.kyc_completed_at else None,
        "daysRemaining": days_remaining(subscription, now),
    }
