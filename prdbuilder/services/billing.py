"""
Thin gateway over the Stripe SDK.

Everything that talks to Stripe goes through here so the reconciliation code
only ever sees plain dicts, and tests only need to replace `StripeClient`.
Stripe SDK exceptions propagate; callers classify them.
"""
from typing import Dict, Any, List, Optional
from urllib.parse import urljoin
from flask import current_app
import stripe
from stripe import StripeClient
import hashlib, json

from prdbuilder.errors import ConfigurationError, UpstreamProviderError


def _client() -> StripeClient:
    key = current_app.config.get("STRIPE_SECRET_KEY")
    if not key:
        raise ConfigurationError("STRIPE_SECRET_KEY is not configured")
    return StripeClient(key)


def _absolute_url(path: str) -> str:
    base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/") + "/"
    return urljoin(base, path.lstrip("/"))


def make_idempotency_key(*parts: Any) -> str:
    raw = "|".join(str(p) for p in parts)
    return "checkout:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]

def _params_hash(d: Dict[str, Any]) -> str:
    # Stable across runs if params identical; changes when you change fields
    return hashlib.sha256(json.dumps(d, sort_keys=True, separators=(",", ":")).encode("utf-8")).hexdigest()[:16]


def as_dict(obj: Any) -> Dict[str, Any]:
    """Stripe objects -> plain (recursive) dicts; dicts pass through."""
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def _list_data(result: Any) -> List[Dict[str, Any]]:
    data = getattr(result, "data", None)
    if data is None and isinstance(result, dict):
        data = result.get("data")
    return [as_dict(item) for item in (data or [])]


def provider_error(exc: Exception, action: str) -> UpstreamProviderError:
    """Wrap a Stripe SDK failure; request errors are the caller's fault (400)."""
    user_msg = getattr(exc, "user_message", None) or str(exc)
    status = 400 if isinstance(exc, stripe.InvalidRequestError) else 502
    return UpstreamProviderError(
        user_msg or f"Stripe request failed: {action}",
        error=f"Failed to {action}",
        status_code=status,
        original_error=exc,
    )


def create_customer(*, email: Optional[str], user_id: str) -> str:
    """Create a Stripe Customer linked back to our user; returns its id."""
    client = _client()
    params: Dict[str, Any] = {"metadata": {"user_id": str(user_id)}}
    if email:
        params["email"] = email
    customer = client.customers.create(params=params)
    return as_dict(customer)["id"]


def create_checkout_session(
    *,
    customer_id: str,
    price_id: str,
    user_id: str,
    plan_id: str,
    billing_cycle: str,
) -> Dict[str, Any]:
    """
    Create a Stripe Checkout Session for a subscription to the given Price.
    Metadata carries enough context for the webhook to resolve the plan
    without a second lookup.
    Returns: {"id": <session_id>, "url": <redirect_url or None>}
    """
    client = _client()
    metadata = {
        "user_id": str(user_id),
        "plan_id": plan_id,
        "billing_cycle": billing_cycle,
    }
    params: Dict[str, Any] = {
        "customer": customer_id,
        "mode": "subscription",
        "payment_method_types": ["card"],
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": _absolute_url("billing?success=true"),
        "cancel_url": _absolute_url("pricing?canceled=true"),
        "metadata": metadata,
        "subscription_data": {"metadata": dict(metadata)},
    }
    # Param-aware idempotency: new key whenever Checkout params change
    idem = make_idempotency_key(
        "checkout", "v1",
        user_id, customer_id, price_id,
        _params_hash(params),
    )
    session = as_dict(client.checkout.sessions.create(params=params, options={"idempotency_key": idem}))
    return {"id": session.get("id"), "url": session.get("url")}


def create_portal_session(*, stripe_customer_id: str) -> Dict[str, Any]:
    """Create a Stripe Customer Portal session for an existing Customer."""
    client = _client()
    params = {
        "customer": stripe_customer_id,
        "return_url": _absolute_url("billing"),
    }
    session = as_dict(client.billing_portal.sessions.create(params=params))
    return {"url": session.get("url")}


def retrieve_subscription(subscription_id: str) -> Dict[str, Any]:
    return as_dict(_client().subscriptions.retrieve(subscription_id))


def list_subscriptions(*, customer_id: str, limit: int = 10) -> List[Dict[str, Any]]:
    """Single page of the customer's subscriptions, every status included."""
    result = _client().subscriptions.list(
        params={"customer": customer_id, "status": "all", "limit": limit},
    )
    return _list_data(result)


def list_active_prices() -> List[Dict[str, Any]]:
    """Active prices annotated with their product name (operator tooling)."""
    client = _client()
    prices = _list_data(client.prices.list(params={"active": True, "limit": 100}))
    products = _list_data(client.products.list(params={"active": True, "limit": 100}))
    names = {p.get("id"): p.get("name") for p in products}
    for price in prices:
        product = price.get("product")
        product_id = product.get("id") if isinstance(product, dict) else product
        price["product_name"] = names.get(product_id) or product_id
    return prices


def verify_event(*, payload: bytes, sig_header: str, secret: str) -> None:
    """Raise stripe.SignatureVerificationError / ValueError unless authentic."""
    stripe.Webhook.construct_event(
        payload=payload.decode("utf-8"),
        sig_header=sig_header,
        secret=secret,
    )
