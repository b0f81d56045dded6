from flask import request, jsonify
from . import bp
from prdbuilder.extensions import csrf, limiter
from prdbuilder.billing.webhooks import ingest

# ----- Stripe Webhook (subscriptions lifecycle) -----
@csrf.exempt
@limiter.exempt
@bp.post("/webhook")
def stripe_webhook():
    """
    Stripe -> /api/stripe/webhook
    Verifies the signature against the raw body, logs the event, reconciles.
    Handler failures still answer 200; only bad signatures are rejected.
    """
    raw_bytes = request.get_data(cache=False, as_text=False)
    ingest(raw_bytes, request.headers.get("Stripe-Signature"))
    return jsonify({"received": True}), 200
