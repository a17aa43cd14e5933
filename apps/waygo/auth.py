# File: apps/waygo/auth.py
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Iterable, Optional

from fastapi import Depends, Header
from firebase_admin import auth as firebase_auth

from .database import init_firebase
from .errors import Internal, PermissionDenied, Unauthenticated
from .models import CallerContext, Role
from .settings import settings

logger = logging.getLogger(__name__)


async def _to_thread(fn, timeout_s: float = 25.0):
    """Run blocking SDK calls off the event loop with a soft timeout."""
    return await asyncio.wait_for(asyncio.to_thread(fn), timeout=timeout_s)


# Process-local cache of verified tokens to reduce repeated Admin SDK calls.
_TOKEN_CACHE: dict[str, tuple[float, dict]] = {}


def _cache_get(cache: dict, key: str):
    item = cache.get(key)
    if not item:
        return None
    expires_at, value = item
    if expires_at < time.time():
        cache.pop(key, None)
        return None
    return value


def _cache_set(cache: dict, key: str, value: dict, ttl_s: float):
    cache[key] = (time.time() + float(ttl_s), value)


def caller_from_claims(decoded_token: Dict[str, Any]) -> CallerContext:
    uid = str(decoded_token.get("uid") or decoded_token.get("sub") or "").strip()
    if not uid:
        raise Unauthenticated("Invalid token structure")
    company_id = decoded_token.get("companyId") or decoded_token.get("company_id")
    return CallerContext(
        uid=uid,
        role=Role.parse(decoded_token.get("role")),
        company_id=str(company_id) if company_id else None,
        email=decoded_token.get("email"),
        claims=dict(decoded_token),
    )


async def get_caller(authorization: Optional[str] = Header(None)) -> CallerContext:
    """Verify the Firebase ID token and return the caller's context."""
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthenticated("Authentication required")

    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise Unauthenticated("Authentication required")

    try:
        decoded_token = _cache_get(_TOKEN_CACHE, token)
        if not decoded_token:
            init_firebase()
            decoded_token = await _to_thread(lambda: firebase_auth.verify_id_token(token))
            _cache_set(_TOKEN_CACHE, token, decoded_token, ttl_s=settings.TOKEN_CACHE_TTL_SECONDS)
    except asyncio.TimeoutError:
        raise Internal("Auth service timeout")
    except Exception as e:
        logger.info("ID token rejected: %s", e)
        raise Unauthenticated("Invalid or expired token")

    return caller_from_claims(decoded_token)


# ============================================================================
# RBAC
# ============================================================================

def ensure_auth(caller: Optional[CallerContext]) -> CallerContext:
    if caller is None or not caller.uid:
        raise Unauthenticated("Authentication required")
    return caller


def ensure_role(caller: Optional[CallerContext], allowed_roles: Iterable[Role]) -> CallerContext:
    """Return the caller if its role claim is in ``allowed_roles``.

    A missing role claim is a permission failure, not an empty permission set
    that happens to match nothing.
    """
    caller = ensure_auth(caller)
    if caller.role is None or caller.role not in set(allowed_roles):
        raise PermissionDenied("Insufficient permissions")
    return caller


def ensure_same_tenant(caller: CallerContext, company_id: Any, message: str = "Cannot access this resource") -> None:
    if not caller.company_id or str(company_id or "") != caller.company_id:
        raise PermissionDenied(message)


def require_role(*allowed_roles: Role):
    """Dependency that rejects callers outside ``allowed_roles`` before the handler runs."""
    async def role_check(caller: CallerContext = Depends(get_caller)) -> CallerContext:
        return ensure_role(caller, allowed_roles)
    return role_check
