from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import stripe
from fastapi import APIRouter, Depends

from ..auth import ensure_auth, get_caller
from ..database import USERS, get_db, snapshot_to_dict
from ..errors import FailedPrecondition, Internal, InvalidArgument, NotFound, reported
from ..models import CallableRequest, CallerContext, CancelSubscriptionPayload, CreateSubscriptionPayload
from ..settings import settings
from ..utils import now_ts
from .plans import get_plan, list_plans
from .referrals import claim_referral_discount, reward_referrer
from .stripe_utils import field, request_options

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Billing"])


def _period_bounds(sub: Any) -> tuple[Optional[int], Optional[int]]:
    # Newer API versions carry the billing period on the subscription item.
    start = field(sub, "current_period_start")
    end = field(sub, "current_period_end")
    if start is None or end is None:
        items = field(field(sub, "items"), "data", [])
        if items:
            start = start if start is not None else field(items[0], "current_period_start")
            end = end if end is not None else field(items[0], "current_period_end")
    return start, end


def get_subscription(*, db_client, caller: Optional[CallerContext]) -> Optional[Dict[str, Any]]:
    """Live Stripe view of the caller's subscription, or None when they have none."""
    caller = ensure_auth(caller)
    profile = snapshot_to_dict(db_client.collection(USERS).document(caller.uid).get()) or {}
    subscription_id = profile.get("subscription_id")
    if not subscription_id:
        return None

    try:
        sub = stripe.Subscription.retrieve(subscription_id, **request_options())
    except stripe.StripeError as e:
        logger.error("Error getting subscription %s: %s", subscription_id, e)
        raise Internal("Failed to get subscription")

    start, end = _period_bounds(sub)
    return {
        "stripeStatus": field(sub, "status"),
        "plan": get_plan(profile.get("subscription_plan")),
        "currentPeriodStart": start,
        "currentPeriodEnd": end,
        "cancelAtPeriodEnd": bool(field(sub, "cancel_at_period_end", False)),
        "referralCode": profile.get("referral_code"),
    }


def _ensure_customer(user_ref, caller: CallerContext, profile: Dict[str, Any]) -> str:
    customer_id = profile.get("stripe_customer_id")
    if customer_id:
        return customer_id
    customer = stripe.Customer.create(
        email=profile.get("email") or caller.email,
        name=profile.get("display_name") or profile.get("email") or caller.email,
        metadata={"user_id": caller.uid},
        tax_exempt="none",
        **request_options(),
    )
    customer_id = field(customer, "id")
    # Webhooks resolve the user by this id.
    user_ref.update({"stripe_customer_id": customer_id, "updated_at": now_ts()})
    return customer_id


def create_subscription(
    *,
    db_client,
    caller: Optional[CallerContext],
    plan_id: Optional[str],
    payment_method_id: Optional[str],
    referral_code: Optional[str] = None,
) -> Dict[str, Any]:
    """Subscribe the caller to a plan, creating their Stripe customer on first use.

    A valid referral code (not the caller's own, first use only) applies the
    referral coupon and credits the referrer.
    """
    caller = ensure_auth(caller)
    plan = get_plan(plan_id)
    if plan is None:
        raise InvalidArgument("Invalid plan selected")
    if not payment_method_id:
        raise InvalidArgument("Payment method is required")
    if referral_code and not settings.STRIPE_REFERRAL_COUPON_ID:
        raise FailedPrecondition("Referral coupon not configured. Please set STRIPE_REFERRAL_COUPON_ID.")

    user_ref = db_client.collection(USERS).document(caller.uid)
    profile = snapshot_to_dict(user_ref.get())
    if profile is None:
        raise NotFound("User not found")

    try:
        customer_id = _ensure_customer(user_ref, caller, profile)
        stripe.PaymentMethod.attach(payment_method_id, customer=customer_id, **request_options())
        stripe.Customer.modify(
            customer_id,
            invoice_settings={"default_payment_method": payment_method_id},
            tax_exempt="none",
            **request_options(),
        )

        referrer_id = claim_referral_discount(db_client, caller.uid, referral_code)
        params: Dict[str, Any] = {
            "customer": customer_id,
            "items": [{"price": plan["stripe_price_id"]}],
            "default_payment_method": payment_method_id,
            "expand": ["latest_invoice.confirmation_secret"],
            "metadata": {
                "user_id": caller.uid,
                "plan_id": plan["id"],
                "referral_code": referral_code or "",
                "referral_code_used": "true" if referrer_id else "false",
            },
        }
        if referrer_id:
            params["discounts"] = [{"coupon": settings.STRIPE_REFERRAL_COUPON_ID}]
        if settings.STRIPE_AUTOMATIC_TAX:
            params["automatic_tax"] = {"enabled": True}
        sub = stripe.Subscription.create(**params, **request_options())
    except stripe.StripeError as e:
        logger.error("Error creating subscription for %s: %s", caller.uid, e)
        raise Internal("Failed to create subscription")

    user_ref.update({
        "subscription_id": field(sub, "id"),
        "subscription_status": field(sub, "status"),
        "subscription_plan": plan["id"],
        "updated_at": now_ts(),
    })
    if referrer_id:
        reward_referrer(db_client, referrer_id=referrer_id, referral_code=referral_code, referred_user_id=caller.uid)

    confirmation = field(field(sub, "latest_invoice"), "confirmation_secret")
    return {
        "subscriptionId": field(sub, "id"),
        "clientSecret": field(confirmation, "client_secret"),
        "status": field(sub, "status"),
        "referralApplied": referrer_id is not None,
        "discountAmount": plan["price"] * settings.REFERRAL_DISCOUNT_PERCENTAGE / 100 if referrer_id else 0,
    }


def cancel_subscription(*, db_client, caller: Optional[CallerContext], immediately: bool = False) -> Dict[str, Any]:
    caller = ensure_auth(caller)
    user_ref = db_client.collection(USERS).document(caller.uid)
    profile = snapshot_to_dict(user_ref.get()) or {}
    subscription_id = profile.get("subscription_id")
    if not subscription_id:
        raise NotFound("Subscription not found")

    try:
        if immediately:
            stripe.Subscription.cancel(subscription_id, **request_options())
        else:
            stripe.Subscription.modify(subscription_id, cancel_at_period_end=True, **request_options())
    except stripe.StripeError as e:
        logger.error("Error canceling subscription %s: %s", subscription_id, e)
        raise Internal("Failed to cancel subscription")

    if immediately:
        user_ref.update({"subscription_status": "canceled", "updated_at": now_ts()})
    return {"success": True, "immediately": immediately}


# ============================================================================
# Callable endpoints
# ============================================================================

@router.post("/getPricingPlans")
def get_pricing_plans():
    return {"result": list_plans()}


@router.post("/getSubscription")
def get_subscription_endpoint(caller: CallerContext = Depends(get_caller), db_client=Depends(get_db)):
    with reported("getSubscription"):
        return {"result": get_subscription(db_client=db_client, caller=caller)}


@router.post("/cancelSubscription")
def cancel_subscription_endpoint(
    req: CallableRequest[CancelSubscriptionPayload],
    caller: CallerContext = Depends(get_caller),
    db_client=Depends(get_db),
):
    data = req.data or CancelSubscriptionPayload()
    with reported("cancelSubscription"):
        return {"result": cancel_subscription(db_client=db_client, caller=caller, immediately=data.immediately)}


@router.post("/createSubscription")
def create_subscription_endpoint(
    req: CallableRequest[CreateSubscriptionPayload],
    caller: CallerContext = Depends(get_caller),
    db_client=Depends(get_db),
):
    data = req.data or CreateSubscriptionPayload()
    with reported("createSubscription"):
        result = create_subscription(
            db_client=db_client,
            caller=caller,
            plan_id=data.plan_id,
            payment_method_id=data.payment_method_id,
            referral_code=data.referral_code,
        )
    return {"result": result}
