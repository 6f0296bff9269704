from datetime import timedelta

import pytest

from advisory.models.subscription import Subscription, SubscriptionStatus
from advisory.services.subscriptions import expire_due_subscriptions
from advisory.tasks import subscription_tasks
from advisory.utils.dates import utcnow


@pytest.fixture
def lapsed(make_subscription):
    now = utcnow()
    return make_subscription(start_date=now - timedelta(days=40), end_date=now - timedelta(days=10))


def test_sweep_expires_only_lapsed_active_subscriptions(db, make_subscription, lapsed):
    now = utcnow()
    current = make_subscription(end_date=now + timedelta(days=3))
    cancelled = make_subscription(status=SubscriptionStatus.CANCELLED, end_date=now - timedelta(days=2))

    expired_ids = expire_due_subscriptions(db)

    assert expired_ids == [lapsed.id]
    db.expire_all()
    assert db.get(Subscription, lapsed.id).status == SubscriptionStatus.EXPIRED
    assert db.get(Subscription, current.id).status == SubscriptionStatus.ACTIVE
    assert db.get(Subscription, cancelled.id).status == SubscriptionStatus.CANCELLED


def test_sweep_is_idempotent(db, lapsed, snapshot):
    assert expire_due_subscriptions(db) == [lapsed.id]
    after_first = snapshot()

    assert expire_due_subscriptions(db) == []
    assert snapshot() == after_first


def test_sweep_boundary_uses_strict_comparison(db, make_subscription):
    now = utcnow()
    subscription = make_subscription(end_date=now)

    assert expire_due_subscriptions(db, now=now) == []
    assert expire_due_subscriptions(db, now=now + timedelta(microseconds=1)) == [subscription.id]


def test_sweep_scoped_to_one_user(db, make_subscription):
    now = utcnow()
    mine = make_subscription(end_date=now - timedelta(days=1))
    theirs = make_subscription(user_id="user_2", end_date=now - timedelta(days=1))

    assert expire_due_subscriptions(db, user_id="user_1") == [mine.id]
    db.expire_all()
    assert db.get(Subscription, theirs.id).status == SubscriptionStatus.ACTIVE


def test_expire_subscriptions_task(session_factory, monkeypatch, lapsed, db):
    monkeypatch.setattr(subscription_tasks, "SessionLocal", session_factory)

    result = subscription_tasks.expire_subscriptions()

    assert result == {"status": "success", "expired": 1, "ids": [lapsed.id]}
    assert subscription_tasks.expire_subscriptions() == {"status": "success", "expired": 0, "ids": []}
    db.expire_all()
    assert db.get(Subscription, lapsed.id).status == SubscriptionStatus.EXPIRED


def test_expire_subscriptions_task_propagates_errors(session_factory, monkeypatch):
    monkeypatch.setattr(subscription_tasks, "SessionLocal", session_factory)

    def boom(db):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(subscription_tasks, "expire_due_subscriptions", boom)

    with pytest.raises(RuntimeError):
        subscription_tasks.expire_subscriptions()
