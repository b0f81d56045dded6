"""
Stripe webhook ingestion.

Verify -> append to stripe_events -> dispatch by event type. Handler
failures are logged against the event row and never fail the delivery:
the manual sync is the repair path for anything a handler could not apply.
Redeliveries are not deduplicated; every handler is idempotent.
"""
import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import stripe
from flask import current_app

from prdbuilder.errors import ConfigurationError, InvalidSignatureError, NoWorkspaceError, ValidationError
from prdbuilder.extensions import db
from prdbuilder.models import StripeEvent
from prdbuilder.services import billing as gateway
from prdbuilder.services.email import send_payment_failed_email
from prdbuilder.services.persistence import commit
from . import customers
from .subscriptions import get_by_stripe_id, mark_canceled, mark_status, upsert_from_stripe


def _id_of(value: Any) -> Optional[str]:
    # Stripe fields may be ids or expanded objects
    if isinstance(value, dict):
        return value.get("id")
    return value


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    sub = invoice.get("subscription")
    if not sub:
        # Newer API versions nest it under the invoice parent
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        sub = details.get("subscription")
    return _id_of(sub)


def handle_checkout_completed(session: Dict[str, Any]) -> None:
    if session.get("mode") != "subscription":
        return
    sub_id = _id_of(session.get("subscription"))
    if not sub_id:
        current_app.logger.info("billing.webhook.checkout_without_subscription", extra={"session_id": session.get("id")})
        return

    customer_id = _id_of(session.get("customer"))
    metadata = session.get("metadata") or {}
    bc = customers.find_by_stripe_customer(customer_id)
    if bc is None:
        # Registry row not visible yet; rebuild it from the session metadata
        user_id = metadata.get("user_id")
        if not user_id or not customer_id:
            current_app.logger.error(
                "billing.webhook.checkout_unresolved",
                extra={"session_id": session.get("id"), "stripe_customer_id": customer_id},
            )
            return
        try:
            membership = customers.select_billing_workspace(user_id)
        except NoWorkspaceError:
            current_app.logger.error("billing.webhook.checkout_no_workspace", extra={"user_id": user_id})
            return
        bc = customers.link_customer(
            user_id=user_id,
            workspace_id=membership.workspace_id,
            stripe_customer_id=customer_id,
        )

    sub_obj = gateway.retrieve_subscription(sub_id)
    upsert_from_stripe(sub_obj, workspace_id=bc.workspace_id, plan_id=metadata.get("plan_id"))


def handle_subscription_changed(sub_obj: Dict[str, Any]) -> None:
    customer_id = _id_of(sub_obj.get("customer"))
    bc = customers.find_by_stripe_customer(customer_id)
    if bc is None:
        # Dropped; manual sync picks it up once the customer is linked
        current_app.logger.warning(
            "billing.webhook.unknown_customer",
            extra={"stripe_customer_id": customer_id, "stripe_subscription_id": sub_obj.get("id")},
        )
        return
    upsert_from_stripe(sub_obj, workspace_id=bc.workspace_id)


def handle_subscription_deleted(sub_obj: Dict[str, Any]) -> None:
    mark_canceled(sub_obj["id"])


def handle_invoice_succeeded(invoice: Dict[str, Any]) -> None:
    sub_id = _invoice_subscription_id(invoice)
    if sub_id:
        mark_status(sub_id, "active")


def handle_invoice_failed(invoice: Dict[str, Any]) -> None:
    sub_id = _invoice_subscription_id(invoice)
    if not sub_id:
        return
    sub = get_by_stripe_id(sub_id)
    # Read before the update; the commit in mark_status expires the row
    prior_status = sub.status if sub is not None else None
    workspace_id = sub.workspace_id if sub is not None else None
    if not mark_status(sub_id, "past_due"):
        return
    if prior_status == "past_due":
        # Redelivery or a later retry failing; owners were already told
        current_app.logger.info("billing.webhook.payment_failed_already_notified", extra={"stripe_subscription_id": sub_id})
        return
    try:
        send_payment_failed_email(workspace_id, stripe_subscription_id=sub_id)
    except Exception:
        # Status change is already committed; mail problems are only logged
        db.session.rollback()
        current_app.logger.exception("billing.webhook.payment_failed_notify_error", extra={"stripe_subscription_id": sub_id})


HANDLERS: Dict[str, Callable[[Dict[str, Any]], None]] = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_changed,
    "customer.subscription.updated": handle_subscription_changed,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_invoice_succeeded,
    "invoice.payment_failed": handle_invoice_failed,
}


def _verify(raw_body: bytes, signature_header: Optional[str]) -> Dict[str, Any]:
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not configured")
    if not signature_header:
        current_app.logger.error("billing.webhook.no_signature")
        raise InvalidSignatureError("No signature")
    try:
        gateway.verify_event(payload=raw_body, sig_header=signature_header, secret=secret)
        return json.loads(raw_body)
    except (stripe.SignatureVerificationError, ValueError) as e:
        current_app.logger.warning("billing.webhook.signature_invalid", extra={"reason": str(e)})
        raise InvalidSignatureError(str(e) or "Invalid signature")


def ingest(raw_body: bytes, signature_header: Optional[str]) -> StripeEvent:
    """Verify and process one webhook delivery; returns the logged event row."""
    event = _verify(raw_body, signature_header)
    ev_type = event.get("type")
    if not ev_type:
        raise ValidationError("Event has no type", error="Malformed event")

    # Committed before dispatch; handler rollbacks never remove it
    log = StripeEvent(stripe_event_id=event.get("id"), type=ev_type, payload=event)
    db.session.add(log)
    commit("record webhook event")
    current_app.logger.info("billing.webhook.received", extra={"event_type": ev_type, "stripe_event_id": log.stripe_event_id})

    handler = HANDLERS.get(ev_type)
    if handler is None:
        current_app.logger.info("billing.webhook.unhandled", extra={"event_type": ev_type})
        log.notes = "unhandled"
        log.processed_at = datetime.now(timezone.utc)
        commit("record webhook event")
        return log

    obj = (event.get("data") or {}).get("object") or {}
    try:
        handler(obj)
    except Exception as e:
        db.session.rollback()
        log.notes = f"handler_error:{type(e).__name__}"
        commit("record webhook event")
        current_app.logger.exception(
            "billing.webhook.handler_error",
            extra={"event_type": ev_type, "stripe_event_id": log.stripe_event_id},
        )
        return log

    log.processed_at = datetime.now(timezone.utc)
    commit("record webhook event")
    return log
