from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..settings import settings

UNLIMITED = -1


def pricing_plans() -> Dict[str, Dict[str, Any]]:
    """Subscription plans keyed by plan id. Stripe price ids come from settings."""
    return {
        "professional": {
            "id": "professional",
            "name": "Professional",
            "price": 100,
            "stripe_price_id": settings.STRIPE_PROFESSIONAL_PRICE_ID,
            "features": [
                "Up to 25 drivers",
                "Advanced load management",
                "Route optimization",
                "Real-time tracking",
                "Customer portal access",
                "Mobile app access",
                "Priority support",
                "Analytics dashboard",
            ],
            "driver_limit": 25,
            "load_limit": 1000,
        },
        "enterprise": {
            "id": "enterprise",
            "name": "Enterprise",
            "price": 200,
            "stripe_price_id": settings.STRIPE_ENTERPRISE_PRICE_ID,
            "features": [
                "Unlimited drivers",
                "Advanced load management",
                "Route optimization",
                "Real-time tracking",
                "Customer portal access",
                "Mobile app access",
                "White-label options",
                "Custom integrations",
                "Dedicated support",
                "Advanced analytics",
                "API access",
            ],
            "driver_limit": UNLIMITED,
            "load_limit": UNLIMITED,
        },
    }


def get_plan(plan_id: Any) -> Optional[Dict[str, Any]]:
    return pricing_plans().get(str(plan_id or "").strip().lower())


def plan_for_price(price_id: Any) -> Optional[Dict[str, Any]]:
    for plan in pricing_plans().values():
        if price_id and plan["stripe_price_id"] == price_id:
            return plan
    return None


def list_plans() -> List[Dict[str, Any]]:
    return list(pricing_plans().values())
