import logging

from advisory.celery_app import celery_app
from advisory.db.session import SessionLocal
from advisory.services.subscriptions import expire_due_subscriptions

logger = logging.getLogger(__name__)


@celery_app.task(name="expire_subscriptions")
def expire_subscriptions():
    """
    Expire every active subscription whose end date has passed.
    Runs on the beat schedule; errors propagate so Celery records the failure.
    """
    db = SessionLocal()
    try:
        ids = expire_due_subscriptions(db)
        if ids:
            logger.info("[Expiry sweep] Expired %d subscription(s): %s", len(ids), ", ".join(ids))
        else:
            logger.info("[Expiry sweep] No subscriptions to expire")
        return {"status": "success", "expired": len(ids), "ids": ids}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
