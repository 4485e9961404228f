"""
Purchase Service - Handles credit purchases via Stripe.

Flow:
1. start_checkout(user, planType, credits, price, origin) -> {sessionId, url}
2. User completes payment on Stripe
3. process_webhook() handles checkout.session.completed:
   - Creates purchases row
   - Adds ledger entry purchase_credit (+credits)
   - Updates the user's balance (creating the user row if needed)

Idempotency:
- Purchases are keyed by stripe_session_id (unique index)
- The purchase row and the credit grant are one transaction; a replayed
  event hits ON CONFLICT DO NOTHING and grants nothing
"""

from typing import Optional, Dict, Any, List
import json

import stripe

from propertyperfect.config import config
from propertyperfect.db import fetch_one, transaction, query_all, Tables
from propertyperfect.services.user_service import UserService
from propertyperfect.services.wallet_service import WalletService, LedgerEntryType
from propertyperfect.utils.error_handlers import (
    InvalidInput,
    PaymentProviderError,
    ServiceUnavailable,
    SignatureInvalid,
    WebhookNotConfigured,
)
from propertyperfect.utils.helpers import iso

stripe.api_key = config.STRIPE_SECRET_KEY
if config.STRIPE_CONFIGURED:
    print(f"[STRIPE] Stripe configured and ready (mode: {config.STRIPE_MODE})")
else:
    print("[STRIPE] Stripe not configured (missing STRIPE_SECRET_KEY)")


# Credit packs (price in whole dollars)
PLANS = {
    "Starter": {"credits": 25, "price": 19},
    "Professional": {"credits": 75, "price": 49},
    "Agency": {"credits": 300, "price": 149},
}

# Events acknowledged with a log line only
LOGGED_EVENT_TYPES = {
    "payment_intent.succeeded",
    "payment_intent.payment_failed",
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "invoice.payment_succeeded",
    "invoice.payment_failed",
}

PAID_STATUSES = {"paid", "no_payment_required"}


def _as_int(value: Any) -> Optional[int]:
    """Whole-number coercion that rejects bools, fractions and junk."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


class PurchaseService:
    """Service for handling credit purchases via Stripe."""

    @staticmethod
    def is_available() -> bool:
        """Check if purchase functionality is available."""
        return config.STRIPE_CONFIGURED

    # ─────────────────────────────────────────────────────────────
    # Checkout Flow
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def validate_plan(plan_type: Any, credits: Any, price: Any) -> Dict[str, Any]:
        """
        Check a requested pack against the catalogue.

        Raises:
            InvalidInput: On missing fields, unknown plan or mismatched credits/price
        """
        if not plan_type or credits in (None, "", 0) or price in (None, "", 0):
            raise InvalidInput("Missing required fields: planType, credits, price")

        plan = PLANS.get(plan_type) if isinstance(plan_type, str) else None
        if not plan:
            raise InvalidInput("Invalid plan type")

        if _as_int(credits) != plan["credits"] or _as_int(price) != plan["price"]:
            raise InvalidInput("Invalid plan configuration")

        return {"plan_type": plan_type, **plan}

    @staticmethod
    def start_checkout(
        user: Dict[str, Any],
        plan_type: Any,
        credits: Any,
        price: Any,
        origin: str,
    ) -> Dict[str, Any]:
        """
        Create a Stripe Checkout session for a credit pack.

        Returns:
            {"sessionId": "cs_...", "url": "https://checkout.stripe.com/..."}

        Raises:
            InvalidInput: Bad plan request
            ServiceUnavailable: Stripe not configured
            PaymentProviderError: Stripe rejected the request
        """
        plan = PurchaseService.validate_plan(plan_type, credits, price)

        if not PurchaseService.is_available():
            raise ServiceUnavailable("Payments are not configured")

        origin = (origin or "").rstrip("/")
        user_email = user.get("email") or ""

        try:
            session = stripe.checkout.Session.create(
                payment_method_types=["card"],
                mode="payment",
                line_items=[
                    {
                        "price_data": {
                            "currency": config.STRIPE_CURRENCY,
                            "unit_amount": plan["price"] * 100,
                            "product_data": {
                                "name": f"PropertyPerfect {plan['plan_type']} Pack",
                                "description": f"{plan['credits']} photo enhancement credits with LightLab relighting",
                            },
                        },
                        "quantity": 1,
                    }
                ],
                success_url=f"{origin}/dashboard?success=true&session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{origin}/pricing?canceled=true",
                metadata={
                    "userId": user["id"],
                    "userEmail": user_email,
                    "planType": plan["plan_type"],
                    "credits": str(plan["credits"]),
                    "price": str(plan["price"]),
                },
                customer_email=user_email or None,
            )
        except stripe.StripeError as e:
            print(f"[PURCHASE] Stripe error creating checkout: {e}")
            raise PaymentProviderError(getattr(e, "user_message", None) or str(e)) from e

        print(
            f"[PURCHASE] Checkout session created: session={session.id}, "
            f"user={user['id']}, plan={plan['plan_type']}, credits={plan['credits']}"
        )
        return {"sessionId": session.id, "url": session.url}

    # ─────────────────────────────────────────────────────────────
    # Webhook Processing
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def parse_event(payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify (when a secret is configured) and decode a webhook payload.

        Raises:
            SignatureInvalid: Missing/bad signature
            InvalidInput: Payload is not a JSON event
            WebhookNotConfigured: Production without a signing secret
        """
        if config.STRIPE_WEBHOOK_SECRET_CONFIGURED:
            if not signature:
                print("[PURCHASE] Webhook rejected: missing Stripe-Signature header")
                raise SignatureInvalid("Missing signature")
            try:
                stripe.Webhook.construct_event(payload, signature, config.STRIPE_WEBHOOK_SECRET)
            except stripe.SignatureVerificationError as e:
                print(f"[PURCHASE] Webhook signature verification failed: {e}")
                raise SignatureInvalid() from e
            except ValueError as e:
                print(f"[PURCHASE] Webhook JSON parse error: {e}")
                raise InvalidInput("Invalid payload") from e
        elif config.IS_DEV:
            print("[PURCHASE] WARNING: Webhook signature not verified (dev mode, no secret)")
        else:
            print("[PURCHASE] ERROR: STRIPE_WEBHOOK_SECRET not configured in production")
            raise WebhookNotConfigured()

        try:
            event = json.loads(payload)
        except (ValueError, UnicodeDecodeError) as e:
            print(f"[PURCHASE] Webhook JSON parse error: {e}")
            raise InvalidInput("Invalid JSON") from e

        if not isinstance(event, dict) or not event.get("type"):
            raise InvalidInput("Invalid event payload")
        return event

    @staticmethod
    def process_webhook(payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify and handle one Stripe event.

        Raises:
            SignatureInvalid, InvalidInput, WebhookNotConfigured: See parse_event
            DatabaseError: Processing failed (caller answers 500 so Stripe retries)
        """
        event = PurchaseService.parse_event(payload, signature)
        return PurchaseService.handle_event(event)

    @staticmethod
    def handle_event(event: Dict[str, Any]) -> Dict[str, Any]:
        event_type = event.get("type", "unknown")
        obj = (event.get("data") or {}).get("object") or {}
        print(f"[PURCHASE] Webhook received: {event_type} id={event.get('id')}")

        if event_type == "checkout.session.completed":
            result = PurchaseService.handle_checkout_completed(obj)
            return {"event_type": event_type, **result}

        if event_type in LOGGED_EVENT_TYPES:
            print(
                f"[PURCHASE] {event_type}: object={obj.get('id')} "
                f"status={obj.get('status')} amount={obj.get('amount') or obj.get('amount_paid')}"
            )
            return {"event_type": event_type, "processed": False, "reason": "logged"}

        print(f"[PURCHASE] Ignoring event type: {event_type}")
        return {"event_type": event_type, "processed": False, "reason": "unhandled"}

    @staticmethod
    def handle_checkout_completed(session: Dict[str, Any]) -> Dict[str, Any]:
        """
        Handle checkout.session.completed: record the purchase and grant credits.
        Bad metadata and unpaid sessions are logged and skipped.
        """
        session_id = session.get("id")
        metadata = session.get("metadata") or {}
        user_id = metadata.get("userId")
        credits = _as_int(metadata.get("credits"))
        plan_type = metadata.get("planType")

        if not session_id:
            print("[PURCHASE] Checkout session without id - skipped")
            return {"processed": False, "reason": "missing_session_id"}

        if not user_id:
            print(f"[PURCHASE] No user ID in checkout session metadata ({session_id})")
            return {"processed": False, "reason": "missing_user_id"}

        if not credits or credits <= 0:
            print(f"[PURCHASE] No credits in checkout session metadata ({session_id})")
            return {"processed": False, "reason": "missing_credits"}

        payment_status = session.get("payment_status")
        if payment_status not in PAID_STATUSES:
            print(f"[PURCHASE] Session {session_id} not paid (status: {payment_status}) - skipped")
            return {"processed": False, "reason": "not_paid"}

        customer_email = (
            session.get("customer_email")
            or (session.get("customer_details") or {}).get("email")
            or metadata.get("userEmail")
            or None
        )
        amount_cents = session.get("amount_total")
        if amount_cents is None:
            amount_cents = PLANS.get(plan_type, {}).get("price", 0) * 100

        result = PurchaseService.record_purchase(
            user_id=user_id,
            plan_type=plan_type,
            credits=credits,
            amount_cents=int(amount_cents),
            currency=(session.get("currency") or config.STRIPE_CURRENCY).lower(),
            stripe_session_id=session_id,
            customer_email=customer_email,
        )
        return {"processed": not result["was_existing"], **result}

    @staticmethod
    def _insert_purchase(cur, purchase: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Insert a purchase row; None when the session was already recorded."""
        cur.execute(
            f"""
            INSERT INTO {Tables.PURCHASES}
                (user_id, plan_type, credits_purchased, amount_cents, currency,
                 stripe_session_id, customer_email, purchased_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, NOW())
            ON CONFLICT (stripe_session_id) DO NOTHING
            RETURNING *
            """,
            (
                purchase["user_id"],
                purchase["plan_type"],
                purchase["credits_purchased"],
                purchase["amount_cents"],
                purchase["currency"],
                purchase["stripe_session_id"],
                purchase["customer_email"],
            ),
        )
        return fetch_one(cur)

    @staticmethod
    def record_purchase(
        user_id: str,
        plan_type: Optional[str],
        credits: int,
        amount_cents: int,
        currency: str,
        stripe_session_id: str,
        customer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Record a completed purchase and grant credits in a single transaction.

        Returns:
            {"purchase_id", "was_existing", "new_balance"}

        Raises:
            DatabaseError: On transaction failure (nothing is written)
        """
        with transaction() as cur:
            purchase = PurchaseService._insert_purchase(cur, {
                "user_id": user_id,
                "plan_type": plan_type,
                "credits_purchased": credits,
                "amount_cents": amount_cents,
                "currency": currency,
                "stripe_session_id": stripe_session_id,
                "customer_email": customer_email,
            })

            if not purchase:
                print(f"[PURCHASE] Idempotent: session {stripe_session_id} already processed")
                return {"purchase_id": None, "was_existing": True, "new_balance": None}

            purchase_id = str(purchase["id"])
            UserService.ensure_user(user_id, customer_email, cur=cur)
            new_balance = WalletService.credit(
                user_id,
                credits,
                LedgerEntryType.PURCHASE_CREDIT,
                ref_type="purchase",
                ref_id=purchase_id,
                cur=cur,
            )

        print(
            f"[PURCHASE] Successfully processed credit purchase for user {user_id}: "
            f"{credits} credits, purchase={purchase_id}, balance={new_balance}"
        )
        return {"purchase_id": purchase_id, "was_existing": False, "new_balance": new_balance}

    # ─────────────────────────────────────────────────────────────
    # History
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def get_purchases(user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Purchases for a user, most recent first."""
        purchases = query_all(
            f"""
            SELECT id, user_id, plan_type, credits_purchased, amount_cents, currency,
                   stripe_session_id, customer_email, purchased_at
            FROM {Tables.PURCHASES}
            WHERE user_id = %s
            ORDER BY purchased_at DESC
            LIMIT %s
            """,
            (user_id, limit),
        )
        return [PurchaseService._format_purchase(p) for p in purchases]

    @staticmethod
    def _format_purchase(purchase: Dict[str, Any]) -> Dict[str, Any]:
        """Format purchase for API response."""
        return {
            "id": str(purchase["id"]),
            "planType": purchase.get("plan_type"),
            "creditsPurchased": purchase.get("credits_purchased", 0),
            "amount": round((purchase.get("amount_cents") or 0) / 100.0, 2),
            "currency": purchase.get("currency", "usd"),
            "stripeSessionId": purchase.get("stripe_session_id"),
            "purchasedAt": iso(purchase.get("purchased_at")),
        }
