import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from advisory.core.plans import plan_catalog
from advisory.db.session import get_db
from advisory.dependencies.auth import AuthenticatedUser, get_current_user
from advisory.services.subscriptions import (
    expire_due_subscriptions,
    list_user_subscriptions,
    serialize_subscription,
)
from advisory.utils.dates import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/plans")
async def list_plans():
    return {"success": True, "data": {"plans": plan_catalog()}}


@router.get("/me")
async def my_subscriptions(
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Caller's subscriptions, latest end date first."""
    now = utcnow()
    subscriptions = list_user_subscriptions(db, current_user.uid)
    return {
        "success": True,
        "data": {"subscriptions": [serialize_subscription(s, now) for s in subscriptions]},
    }


@router.post("/expire")
async def expire_my_subscriptions(
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """
    Expire the caller's lapsed subscriptions now instead of waiting for the
    hourly sweep. Lets the dashboard show an accurate status right after login.
    """
    ids = expire_due_subscriptions(db, user_id=current_user.uid)
    if ids:
        logger.info("[Expiry sweep] Expired %d subscription(s) for user %s", len(ids), current_user.uid)
        message = f"Updated {len(ids)} expired subscription(s)"
    else:
        message = "No expired subscriptions found"
    return {"updated": bool(ids), "message": message, "updatedIds": ids}
