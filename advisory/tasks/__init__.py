from advisory.tasks.subscription_tasks import expire_subscriptions

__all__ = [
    'expire_subscriptions'
]
