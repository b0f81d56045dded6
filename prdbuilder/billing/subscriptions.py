"""
Subscription state upserter.

The only writer of Subscription.status / plan_id / current_period_end.
Checkout completion, subscription webhooks and the manual sync all funnel
through `upsert_subscription`, keyed on the Stripe subscription id.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import current_app
from sqlalchemy import func, select, update

from prdbuilder.extensions import db
from prdbuilder.models import Subscription
from prdbuilder.models.subscription import STATUS_CANCELED
from prdbuilder.services.persistence import commit, execute, upsert
from .plans import resolve_plan_id


def to_datetime(ts: Optional[int]) -> Optional[datetime]:
    return datetime.fromtimestamp(int(ts), tz=timezone.utc) if ts else None


def _first_item(sub_obj: Dict[str, Any]) -> Dict[str, Any]:
    items = (sub_obj.get("items") or {}).get("data") or []
    return items[0] if items else {}


def price_id_of(sub_obj: Dict[str, Any]) -> Optional[str]:
    price = _first_item(sub_obj).get("price") or {}
    return price.get("id") if isinstance(price, dict) else price


def period_end_of(sub_obj: Dict[str, Any]) -> Optional[datetime]:
    # Newer API versions moved the period onto the subscription items
    ts = sub_obj.get("current_period_end") or _first_item(sub_obj).get("current_period_end")
    return to_datetime(ts)


def get_by_stripe_id(stripe_subscription_id: str) -> Optional[Subscription]:
    return db.session.execute(
        select(Subscription)
        .where(Subscription.stripe_subscription_id == stripe_subscription_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def upsert_subscription(
    *,
    workspace_id: str,
    stripe_subscription_id: str,
    plan_id: Optional[str],
    status: str,
    current_period_end: Optional[datetime],
    price_id: Optional[str] = None,
) -> Subscription:
    """
    Insert the row for `stripe_subscription_id`, or overwrite its plan,
    price, status and period end. Repeating a call with the same arguments leaves
    the same single row behind.
    """
    upsert(
        Subscription,
        {
            "workspace_id": workspace_id,
            "stripe_subscription_id": stripe_subscription_id,
            "plan_id": plan_id,
            "price_id": price_id,
            "status": status,
            "current_period_end": current_period_end,
        },
        conflict_on=["stripe_subscription_id"],
        update=lambda excluded: {
            "plan_id": excluded.plan_id,
            "price_id": excluded.price_id,
            "status": excluded.status,
            "current_period_end": excluded.current_period_end,
            "updated_at": func.now(),
        },
    )
    commit("save subscription")
    current_app.logger.info(
        "billing.subscription.upserted",
        extra={
            "workspace_id": workspace_id,
            "stripe_subscription_id": stripe_subscription_id,
            "status": status,
            "plan_id": plan_id,
        },
    )
    return get_by_stripe_id(stripe_subscription_id)


def upsert_from_stripe(sub_obj: Dict[str, Any], *, workspace_id: str, plan_id: Optional[str] = None) -> Subscription:
    """
    Upsert straight from a Stripe subscription object (provider state wins).
    Without an explicit plan, the plan follows the current price so portal
    up/downgrades are picked up; checkout metadata is only the fallback.
    """
    meta_plan = (sub_obj.get("metadata") or {}).get("plan_id")
    price_id = price_id_of(sub_obj)
    return upsert_subscription(
        workspace_id=workspace_id,
        stripe_subscription_id=sub_obj["id"],
        plan_id=plan_id or resolve_plan_id(price_id, default=meta_plan),
        price_id=price_id,
        status=sub_obj.get("status") or "incomplete",
        current_period_end=period_end_of(sub_obj),
    )


def mark_status(stripe_subscription_id: str, status: str) -> bool:
    """Status-only update; unknown ids are a no-op (returns False)."""
    result = execute(
        update(Subscription)
        .where(Subscription.stripe_subscription_id == stripe_subscription_id)
        .values(status=status, updated_at=func.now())
        .execution_options(synchronize_session=False),
        "update subscription status",
    )
    commit("update subscription status")
    if not result.rowcount:
        current_app.logger.info(
            "billing.subscription.unknown",
            extra={"stripe_subscription_id": stripe_subscription_id, "status": status},
        )
        return False
    current_app.logger.info(
        "billing.subscription.status_changed",
        extra={"stripe_subscription_id": stripe_subscription_id, "status": status},
    )
    return True


def mark_canceled(stripe_subscription_id: str) -> bool:
    # Rows are retired, never deleted
    return mark_status(stripe_subscription_id, STATUS_CANCELED)


def current_subscription(workspace_id: str) -> Optional[Subscription]:
    """Most recently updated non-canceled subscription of the workspace."""
    return db.session.execute(
        select(Subscription)
        .where(Subscription.workspace_id == workspace_id, Subscription.status != STATUS_CANCELED)
        .order_by(Subscription.updated_at.desc(), Subscription.id.desc())
        .limit(1)
    ).scalar_one_or_none()
