from advisory.models.subscription import Subscription, SubscriptionStatus, KycStatus

__all__ = [
    "Subscription",
    "SubscriptionStatus",
    "KycStatus",
]
