"""
Manual reconciliation: pull the customer's subscriptions from Stripe and
overwrite local rows with the provider's state. This is the repair path for
webhooks that were dropped or failed.
"""
from dataclasses import dataclass, field
from typing import List

import stripe
from flask import current_app

from prdbuilder.errors import NoBillingCustomerError
from prdbuilder.models import Subscription
from prdbuilder.services import billing as gateway
from .customers import find_by_user
from .subscriptions import upsert_from_stripe


@dataclass
class SyncResult:
    found: int = 0
    synced_count: int = 0
    subscriptions: List[Subscription] = field(default_factory=list)


def sync_from_provider(user) -> SyncResult:
    bc = find_by_user(user.id)
    if bc is None or not bc.stripe_customer_id:
        raise NoBillingCustomerError()

    limit = int(current_app.config.get("BILLING_SYNC_LIMIT", 10))
    try:
        # One page only; customers with more than `limit` subscriptions are not fully synced
        items = gateway.list_subscriptions(customer_id=bc.stripe_customer_id, limit=limit)
    except stripe.StripeError as e:
        current_app.logger.exception(
            "billing.sync.list_failed",
            extra={"user_id": user.id, "stripe_customer_id": bc.stripe_customer_id},
        )
        raise gateway.provider_error(e, "sync subscriptions")

    result = SyncResult(found=len(items))
    for sub_obj in items:
        try:
            row = upsert_from_stripe(sub_obj, workspace_id=bc.workspace_id)
        except Exception:
            current_app.logger.exception(
                "billing.sync.item_failed",
                extra={"user_id": user.id, "stripe_subscription_id": sub_obj.get("id")},
            )
            continue
        result.synced_count += 1
        result.subscriptions.append(row)

    current_app.logger.info(
        "billing.sync.completed",
        extra={"user_id": user.id, "found": result.found, "synced": result.synced_count},
    )
    return result
