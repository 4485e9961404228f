"""
Billing routes - Stripe checkout, webhook and purchase history.

Handles:
- POST /api/create-checkout-session - Create a Stripe Checkout session for a credit pack
- POST /api/stripe-webhook          - Stripe webhook handler (grants purchased credits)
- GET  /api/purchases               - Caller's purchase history
"""

from flask import Blueprint, request, jsonify, g

from propertyperfect.db import DatabaseError
from propertyperfect.middleware import require_bearer, no_cache
from propertyperfect.services.purchase_service import PurchaseService, PLANS
from propertyperfect.utils.error_handlers import InvalidInput, PersistenceError, make_error_response
from propertyperfect.utils.helpers import clamp_int

bp = Blueprint("billing", __name__)


def _request_origin() -> str:
    """Where Stripe should send the browser back to."""
    origin = request.headers.get("Origin")
    if origin and origin != "null":
        return origin
    return request.host_url.rstrip("/")


@bp.route("/plans", methods=["GET"])
def list_plans():
    plans = [
        {"planType": name, "credits": plan["credits"], "price": plan["price"]}
        for name, plan in PLANS.items()
    ]
    return jsonify({"plans": plans})


@bp.route("/create-checkout-session", methods=["POST"])
@require_bearer
def create_checkout_session():
    """
    Create a Stripe Checkout session.

    Request body:
    {
        "planType": "Professional",
        "credits": 75,
        "price": 49
    }

    Response:
    {
        "sessionId": "cs_...",
        "url": "https://checkout.stripe.com/..."
    }
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidInput("Request body must be a JSON object")

    result = PurchaseService.start_checkout(
        g.user,
        data.get("planType"),
        data.get("credits"),
        data.get("price"),
        _request_origin(),
    )
    return jsonify(result)


@bp.route("/stripe-webhook", methods=["POST"])
def stripe_webhook():
    """
    Handle Stripe webhook events.
    Processes checkout.session.completed to grant credits.

    This endpoint receives the raw POST body with the Stripe-Signature header.
    No bearer authentication (verified via webhook signature).

    Signature/payload problems answer 400. Processing failures answer 500 so
    Stripe retries; a retried event is a no-op once it has been recorded.
    """
    payload = request.get_data()
    signature = request.headers.get("Stripe-Signature")

    try:
        result = PurchaseService.process_webhook(payload, signature)
    except DatabaseError as e:
        print(f"[STRIPE] Webhook processing failed: {e}")
        return make_error_response("WEBHOOK_PROCESSING_FAILED", "Webhook processing failed", 500)

    return jsonify({"received": True, **result})


@bp.route("/purchases", methods=["GET"])
@require_bearer
@no_cache
def list_purchases():
    if g.is_test_user:
        return jsonify({"purchases": []})
    limit = clamp_int(request.args.get("limit"), 1, 100, 20)
    try:
        purchases = PurchaseService.get_purchases(g.user_id, limit=limit)
    except DatabaseError as e:
        raise PersistenceError("Failed to load purchases") from e
    return jsonify({"purchases": purchases})
