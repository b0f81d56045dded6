from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy import func, select

from prdbuilder.extensions import db
from prdbuilder.models import Subscription
from prdbuilder.models.subscription import ACTIVE_STATUSES
from .plans import monthly_value


def billing_metrics(now: Optional[datetime] = None) -> Dict[str, Any]:
    """Subscription counts and revenue estimates for the admin dashboard."""
    now = now or datetime.now(timezone.utc)
    # SQLite hands back naive datetimes; compare in naive UTC there
    since = (now - timedelta(days=30)).replace(tzinfo=None)

    counts = dict(
        db.session.execute(
            select(Subscription.status, func.count(Subscription.id)).group_by(Subscription.status)
        ).all()
    )
    active = counts.get("active", 0)
    trialing = counts.get("trialing", 0)
    canceled = counts.get("canceled", 0)

    new_last_30 = db.session.execute(
        select(func.count(Subscription.id)).where(Subscription.created_at >= since)
    ).scalar_one()

    active_plans = db.session.execute(
        select(Subscription.plan_id, Subscription.price_id).where(Subscription.status == "active")
    ).all()
    mrr = round(sum(monthly_value(plan, price) for plan, price in active_plans), 2)

    live = sum(counts.get(s, 0) for s in ACTIVE_STATUSES)
    churn_base = live + canceled
    return {
        "active": active,
        "trialing": trialing,
        "canceled": canceled,
        "new_last_30_days": new_last_30,
        "churn_rate": round(canceled / churn_base * 100, 2) if live else 0.0,
        "mrr": mrr,
        "arpa": round(mrr / live, 2) if live else 0.0,
        "generated_at": now.isoformat(),
    }
