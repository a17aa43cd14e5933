from __future__ import annotations

from typing import Any, Dict, Optional

from ..settings import settings


def field(obj: Any, key: str, default: Any = None) -> Any:
    """Read ``key`` from a StripeObject (or dict); missing and null both give ``default``."""
    try:
        value = obj[key]
    except (KeyError, TypeError):
        return default
    return default if value is None else value


def object_id(value: Any) -> Optional[str]:
    # Stripe sends either an id string or an expanded object.
    if isinstance(value, str):
        return value or None
    return field(value, "id")


def request_options() -> Dict[str, Any]:
    opts: Dict[str, Any] = {"api_key": settings.STRIPE_SECRET_KEY}
    if settings.STRIPE_API_VERSION:
        opts["stripe_version"] = settings.STRIPE_API_VERSION
    return opts
