from typing import Any, Dict, Tuple

import stripe
from flask import current_app

from prdbuilder.errors import InvalidPriceIdError, UpstreamProviderError, ValidationError
from prdbuilder.services import billing as gateway
from .customers import get_or_create_customer
from .plans import BILLING_CYCLES, PRICE_CONFIG_KEYS

PRICE_ID_PREFIX = "price_"


def _price_settings() -> str:
    return ", ".join(sorted(set(PRICE_CONFIG_KEYS.values())))


def parse_checkout_request(data: Dict[str, Any]) -> Tuple[str, str, str]:
    """Validate the checkout JSON body -> (price_id, plan_id, billing_cycle)."""
    details = []
    price_id = data.get("priceId")
    plan_id = data.get("planId")
    billing_cycle = data.get("billingCycle")

    if not isinstance(price_id, str) or not price_id.strip():
        details.append({"field": "priceId", "message": "priceId is required"})
    if not isinstance(plan_id, str) or not plan_id.strip():
        details.append({"field": "planId", "message": "planId is required"})
    if billing_cycle not in BILLING_CYCLES:
        details.append({"field": "billingCycle", "message": "billingCycle must be 'monthly' or 'yearly'"})

    if details:
        raise ValidationError("The checkout request is missing or has invalid fields.", extra={"details": details})
    return price_id.strip(), plan_id.strip(), billing_cycle


def validate_price_id(price_id: str) -> None:
    # Product ids (prod_...) are the usual mix-up when filling the env vars
    if not price_id.startswith(PRICE_ID_PREFIX):
        current_app.logger.error("billing.checkout.invalid_price_id", extra={"price_id": price_id})
        raise InvalidPriceIdError(
            'The price ID must start with "price_". You may be using a Product ID (prod_...) instead. '
            f"Check {_price_settings()} and use the Price IDs from the Stripe Dashboard.",
            extra={"receivedId": price_id, "expectedFormat": "price_xxxxx..."},
        )


def _classify(exc: stripe.StripeError) -> Exception:
    message = getattr(exc, "user_message", None) or str(exc)
    if isinstance(exc, stripe.InvalidRequestError) and "No such price" in str(exc):
        return InvalidPriceIdError(
            f"The Price ID configured in {_price_settings()} does not exist in Stripe.",
            extra={
                "stripeError": message,
                "suggestion": "Run: flask billing prices to list the correct Price IDs",
            },
            original_error=exc,
        )
    return gateway.provider_error(exc, "create checkout session")


def start_checkout(user, *, price_id: str, plan_id: str, billing_cycle: str) -> str:
    """
    Start a hosted Checkout for `price_id`; returns the URL to redirect to.
    Only the customer registry is written; the subscription row arrives later
    through the webhook (or a manual sync).
    """
    validate_price_id(price_id)

    customer_id = get_or_create_customer(user)

    try:
        session = gateway.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            user_id=user.id,
            plan_id=plan_id,
            billing_cycle=billing_cycle,
        )
    except stripe.StripeError as e:
        current_app.logger.exception(
            "billing.checkout.session_create_failed",
            extra={"user_id": user.id, "price_id": price_id, "plan_id": plan_id},
        )
        raise _classify(e)

    url = session.get("url")
    if not url:
        raise UpstreamProviderError("Could not create checkout session", error="Failed to create checkout session")

    current_app.logger.info(
        "billing.checkout.session_created",
        extra={"user_id": user.id, "session_id": session.get("id"), "plan_id": plan_id, "billing_cycle": billing_cycle},
    )
    return url
