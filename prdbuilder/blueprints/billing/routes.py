from flask import jsonify, request, current_app, g
from flask_login import current_user
import stripe

from . import bp
from prdbuilder.extensions import limiter
from prdbuilder.errors import NotFoundError, UpstreamProviderError
from prdbuilder.services import billing as billing_service
from prdbuilder.services.policy import login_required_json, require_member
from prdbuilder.billing.checkout import parse_checkout_request, start_checkout
from prdbuilder.billing.customers import find_by_user
from prdbuilder.billing.subscriptions import current_subscription
from prdbuilder.billing.sync import sync_from_provider


@bp.post("/checkout")
@limiter.limit("10/minute")
@login_required_json
def checkout():
    """Create a Checkout Session; the client redirects to the returned URL."""
    price_id, plan_id, billing_cycle = parse_checkout_request(request.get_json(silent=True) or {})
    url = start_checkout(current_user, price_id=price_id, plan_id=plan_id, billing_cycle=billing_cycle)
    return jsonify({"url": url})


@bp.post("/portal")
@limiter.limit("10/minute")
@login_required_json
def portal():
    bc = find_by_user(current_user.id)
    if not bc or not bc.stripe_customer_id:
        raise NotFoundError(
            "No billing customer found. Please subscribe to a plan first.",
            error="No billing customer found",
        )

    try:
        payload = billing_service.create_portal_session(stripe_customer_id=bc.stripe_customer_id)
    except stripe.StripeError as e:
        current_app.logger.exception(
            "billing.portal.session_create_failed",
            extra={"user_id": current_user.id, "stripe_customer_id": bc.stripe_customer_id},
        )
        raise billing_service.provider_error(e, "create portal session")

    url = payload.get("url")
    if not url:
        raise UpstreamProviderError("Could not create portal session", error="Failed to create portal session")
    return jsonify({"url": url})


@bp.post("/sync")
@limiter.limit("10/minute")
@login_required_json
def sync():
    """Pull subscriptions from Stripe for when webhooks were missed."""
    result = sync_from_provider(current_user)
    if not result.found:
        return jsonify({"message": "No subscriptions found in Stripe", "synced": 0, "subscriptions": []})
    if result.synced_count < result.found:
        message = f"Synced {result.synced_count} of {result.found} subscription(s); see logs for failures"
    else:
        message = f"Successfully synced {result.synced_count} subscription(s)"
    return jsonify({
        "message": message,
        "found": result.found,
        "synced": result.synced_count,
        "subscriptions": [s.to_dict() for s in result.subscriptions],
    })


@bp.get("/subscription")
@require_member
def subscription():
    sub = current_subscription(g.workspace_member.workspace_id)
    return jsonify({"subscription": sub.to_dict() if sub else None})
