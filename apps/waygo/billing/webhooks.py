"""Stripe webhook receiver.

Stripe posts signed events here. The raw request body is verified against
``STRIPE_WEBHOOK_SECRET`` before anything is parsed or written, and the user
the event belongs to is located by their ``stripe_customer_id``.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

import stripe
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.concurrency import run_in_threadpool

from ..database import USERS, get_db
from ..errors import FunctionsError, NotFound
from ..settings import settings
from ..utils import now_ts
from .plans import plan_for_price
from .stripe_utils import field, object_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Billing"])

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


def find_user_by_customer(db_client, customer_id: str) -> Tuple[Any, Dict[str, Any]]:
    snaps = list(
        db_client.collection(USERS)
        .where("stripe_customer_id", "==", customer_id)
        .limit(1)
        .stream()
    )
    if not snaps:
        raise NotFound("No user found with this Stripe customer ID")
    snap = snaps[0]
    return snap.reference, snap.to_dict() or {}


def handle_checkout_session_completed(db_client, session: Any) -> None:
    customer_id = object_id(field(session, "customer"))
    if not customer_id:
        raise ValueError("No customer found in session")

    user_ref, _ = find_user_by_customer(db_client, customer_id)
    updates: Dict[str, Any] = {"subscription_status": "active", "updated_at": now_ts()}
    # One-time payment sessions carry no subscription.
    subscription_id = object_id(field(session, "subscription"))
    if subscription_id:
        updates["subscription_id"] = subscription_id
    user_ref.update(updates)


def _subscription_price_id(subscription: Any) -> Optional[str]:
    items = field(field(subscription, "items"), "data", [])
    for item in items:
        price_id = object_id(field(item, "price"))
        if price_id:
            return price_id
    return None


def handle_subscription_update(db_client, subscription: Any) -> None:
    customer_id = object_id(field(subscription, "customer"))
    if not customer_id:
        raise ValueError("No customer found in subscription")

    user_ref, _ = find_user_by_customer(db_client, customer_id)
    updates: Dict[str, Any] = {
        "subscription_id": field(subscription, "id"),
        "subscription_status": field(subscription, "status"),
        "updated_at": now_ts(),
    }
    plan = plan_for_price(_subscription_price_id(subscription))
    if plan is not None:
        updates["subscription_plan"] = plan["id"]
    user_ref.update(updates)


def dispatch_event(db_client, event: Any) -> bool:
    """Apply a verified event. Returns False for event types that are ignored."""
    event_type = field(event, "type")
    obj = field(field(event, "data"), "object")
    if event_type == CHECKOUT_COMPLETED:
        handle_checkout_session_completed(db_client, obj)
    elif event_type in {SUBSCRIPTION_UPDATED, SUBSCRIPTION_DELETED}:
        handle_subscription_update(db_client, obj)
    else:
        logger.info("Unhandled event type: %s", event_type)
        return False
    logger.info("Processed Stripe event %s (%s)", field(event, "id"), event_type)
    return True


@router.api_route("/stripeWebhook", methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"])
async def stripe_webhook(request: Request, db_client=Depends(get_db)):
    # Browser preflights (Origin plus Access-Control-Request-Method) are answered
    # by CORSMiddleware before reaching this route.
    if request.method == "OPTIONS":
        return Response(
            status_code=204,
            headers={
                "Access-Control-Allow-Origin": "*",
                "Access-Control-Allow-Methods": "POST",
                "Access-Control-Allow-Headers": "Content-Type, stripe-signature",
            },
        )
    if request.method != "POST":
        return PlainTextResponse("Method Not Allowed", status_code=405)

    sig = request.headers.get("stripe-signature")
    if not sig:
        return PlainTextResponse("No Stripe signature found", status_code=400)

    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("STRIPE_WEBHOOK_SECRET is not set")
        return PlainTextResponse("Server configuration error", status_code=500)

    payload = await request.body()
    try:
        event = stripe.Webhook.construct_event(payload, sig, settings.STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("Rejected Stripe webhook: %s", e)
        return PlainTextResponse(f"Webhook Error: {e}", status_code=400)

    try:
        await run_in_threadpool(dispatch_event, db_client, event)
    except FunctionsError:
        raise
    except Exception as e:
        logger.exception("Webhook error")
        return PlainTextResponse(f"Webhook Error: {e}", status_code=400)

    return JSONResponse({"received": True})
