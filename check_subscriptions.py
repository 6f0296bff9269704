"""Print subscription counts by status and KYC status. Usage: python check_subscriptions.py [user_id]"""
import sys

from sqlalchemy import func

from advisory.db.session import SessionLocal
from advisory.models.subscription import Subscription

db = SessionLocal()
try:
    query = db.query(Subscription.status, Subscription.kyc_status, func.count(Subscription.id))
    if len(sys.argv) > 1:
        query = query.filter(Subscription.user_id == sys.argv[1])
        print(f"Subscriptions for user {sys.argv[1]}:")
    rows = query.group_by(Subscription.status, Subscription.kyc_status).all()

    if rows:
        for status, kyc_status, count in rows:
            print(f"  status={status.value:<10} kyc={kyc_status.value:<10} count={count}")
    else:
        print("No subscriptions found")

    total = db.query(func.count(Subscription.id)).scalar()
    print(f"\nTotal subscriptions in database: {total}")
finally:
    db.close()
