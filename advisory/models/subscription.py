"""
Subscription model: the one durable record behind payment, KYC and expiry.
"""
import secrets
from enum import Enum
from typing import Optional

from sqlalchemy import Column, String, DateTime, Numeric, JSON, Enum as SQLEnum, Index

from advisory.db.base import Base
from advisory.utils.dates import utcnow


class SubscriptionStatus(str, Enum):
    """Lifecycle of a paid subscription. Only moves forward."""
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class KycStatus(str, Enum):
    """KYC progress for the subscription holder."""
    PENDING = "pending"  # Paid, KYC not started
    INITIATED = "initiated"  # Digio request created, user redirected
    VERIFIED = "verified"
    FAILED = "failed"

    @classmethod
    def parse(cls, value) -> Optional["KycStatus"]:
        """Map a status string (ours or Digio's) onto KycStatus; None if unknown."""
        if value is None:
            return None
        if isinstance(value, KycStatus):
            return value
        return _KYC_STATUS_ALIASES.get(str(value).strip().lower())

    @property
    def is_terminal(self) -> bool:
        return self in (KycStatus.VERIFIED, KycStatus.FAILED)


_KYC_STATUS_ALIASES = {
    "pending": KycStatus.PENDING,
    "initiated": KycStatus.INITIATED,
    "requested": KycStatus.INITIATED,
    "verified": KycStatus.VERIFIED,
    "approved": KycStatus.VERIFIED,
    "success": KycStatus.VERIFIED,
    "failed": KycStatus.FAILED,
    "rejected": KycStatus.FAILED,
}


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def generate_subscription_id() -> str:
    return f"sub_{secrets.token_hex(12)}"


class Subscription(Base):
    __tablename__ = "subscriptions"

    # Internal id; also the reference_id we hand to Digio when starting KYC
    id = Column(String(64), primary_key=True, default=generate_subscription_id)
    user_id = Column(String(128), nullable=False, index=True)
    plan_id = Column(String(64), nullable=False)
    plan_name = Column(String(255), nullable=False)
    billing_period = Column(String(32), nullable=False, default="monthly")
    status = Column(
        SQLEnum(SubscriptionStatus, name="subscription_status", values_callable=_enum_values),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
        index=True,
    )
    start_date = Column(DateTime, nullable=False, default=utcnow)
    end_date = Column(DateTime, nullable=False, index=True)

    # Razorpay references
    payment_id = Column(String(64), nullable=False, unique=True)
    order_id = Column(String(64), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)  # Major units (rupees), as paid
    currency = Column(String(3), nullable=False, default="INR")

    kyc_status = Column(
        SQLEnum(KycStatus, name="kyc_status", values_callable=_enum_values),
        nullable=False,
        default=KycStatus.PENDING,
    )
    # Reference id Digio returned at initiation; webhooks are joined on this column.
    # Unset until initiation succeeds.
    kyc_reference_id = Column(String(128), nullable=True, unique=True)
    # Digio's own request/document id (KID...), used to poll the KYC response
    kyc_request_id = Column(String(128), nullable=True, index=True)
    kyc_details = Column(JSON, nullable=True)
    kyc_initiated_at = Column(DateTime, nullable=True)
    kyc_completed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_subscriptions_user_plan_status", "user_id", "plan_id", "status"),
    )

    def __repr__(self):
        return f"<Subscription(id={self.id}, status='{self.status}', kyc_status='{self.kyc_status}')>"
