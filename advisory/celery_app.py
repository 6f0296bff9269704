from celery import Celery

from advisory.core.config import settings

celery_app = Celery(
    "advisory",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["advisory.tasks.subscription_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "expire-subscriptions": {
            "task": "expire_subscriptions",
            "schedule": settings.EXPIRY_SWEEP_INTERVAL_MINUTES * 60.0,
        },
    },
)
