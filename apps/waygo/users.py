from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from firebase_admin import auth as firebase_auth

from .auth import ensure_auth, ensure_role, ensure_same_tenant, get_caller, require_role
from .database import USERS, get_db, log_action, run_in_transaction, snapshot_to_dict
from .errors import InvalidArgument, NotFound, reported
from .models import CallableRequest, CallerContext, Role, UpdateUserRolePayload, UserDetailsPayload
from .settings import settings
from .utils import generate_referral_code, now_ts

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Users"])

REFERRAL_ROLES = (Role.DRIVER, Role.DISPATCHER, Role.ADMIN)


def provision_user_profile(*, db_client, caller: Optional[CallerContext]) -> Dict[str, Any]:
    """Create the caller's profile and role claims on first sign-in.

    Existing profiles are returned unchanged.
    """
    caller = ensure_auth(caller)
    user_ref = db_client.collection(USERS).document(caller.uid)
    existing = snapshot_to_dict(user_ref.get())
    if existing is not None:
        return {"success": True, "created": False, "profile": {"id": caller.uid, **existing}}

    role = Role.parse(settings.DEFAULT_USER_ROLE) or Role.DRIVER
    company_id = settings.DEFAULT_COMPANY_ID
    email = caller.email
    display_name = caller.claims.get("name") or (email.split("@")[0] if email else None)
    now = now_ts()
    profile = {
        "uid": caller.uid,
        "email": email,
        "display_name": display_name,
        "phone_number": caller.claims.get("phone_number"),
        "company_id": company_id,
        "role": role.value,
        "is_active": True,
        "is_available": True,
        "current_load_id": None,
        "email_verified": bool(caller.claims.get("email_verified")),
        "disabled": False,
        "created_at": now,
        "updated_at": now,
    }
    user_ref.set(profile)
    firebase_auth.set_custom_user_claims(caller.uid, {"role": role.value, "companyId": company_id})
    logger.info("Created profile for %s", caller.uid)
    return {"success": True, "created": True, "profile": {"id": caller.uid, **profile}}


def get_user_profile(*, db_client, caller: Optional[CallerContext]) -> Dict[str, Any]:
    caller = ensure_auth(caller)
    profile = snapshot_to_dict(db_client.collection(USERS).document(caller.uid).get())
    if profile is None:
        raise NotFound("User profile not found")
    return {"id": caller.uid, **profile}


def admin_get_user_details(*, db_client, caller: Optional[CallerContext], user_id: Optional[str]) -> Dict[str, Any]:
    """Profile merged with the Firebase Auth record. Admins of the same company only."""
    caller = ensure_role(caller, (Role.ADMIN,))
    if not user_id:
        raise InvalidArgument("User ID is required")

    profile = snapshot_to_dict(db_client.collection(USERS).document(user_id).get())
    if profile is None:
        raise NotFound("User profile not found")
    ensure_same_tenant(caller, profile.get("company_id"), "Cannot access this user")

    try:
        record = firebase_auth.get_user(user_id)
    except firebase_auth.UserNotFoundError:
        raise NotFound("User not found")

    meta = record.user_metadata
    return {
        "id": user_id,
        **profile,
        "email": record.email,
        "email_verified": record.email_verified,
        "disabled": record.disabled,
        "metadata": {
            "creation_time": getattr(meta, "creation_timestamp", None),
            "last_sign_in_time": getattr(meta, "last_sign_in_timestamp", None),
        },
    }


def update_user_role(
    *,
    db_client,
    caller: Optional[CallerContext],
    target_user_id: Optional[str],
    new_role: Optional[str],
) -> Dict[str, Any]:
    caller = ensure_role(caller, (Role.ADMIN,))
    if not target_user_id or not new_role:
        raise InvalidArgument("User ID and new role are required")
    role = Role.parse(new_role)
    if role is None:
        raise InvalidArgument("Invalid role specified")

    user_ref = db_client.collection(USERS).document(target_user_id)
    profile = snapshot_to_dict(user_ref.get())
    if profile is None:
        raise NotFound("User profile not found")
    ensure_same_tenant(caller, profile.get("company_id"), "Cannot access this user")

    try:
        record = firebase_auth.get_user(target_user_id)
    except firebase_auth.UserNotFoundError:
        raise NotFound("User not found")

    # Keep the target's other claims (notably companyId).
    claims = dict(record.custom_claims or {})
    claims.update({"role": role.value, "companyId": profile.get("company_id")})
    firebase_auth.set_custom_user_claims(target_user_id, claims)

    user_ref.update({"role": role.value, "updated_at": now_ts()})
    log_action(db_client, caller.uid, "USER_ROLE_UPDATED", f"{target_user_id} -> {role.value}")
    return {"success": True, "message": "User role updated successfully"}


def get_or_create_referral_code(*, db_client, caller: Optional[CallerContext]) -> Dict[str, Any]:
    caller = ensure_role(caller, REFERRAL_ROLES)
    user_ref = db_client.collection(USERS).document(caller.uid)

    def _get_or_create(transaction) -> Dict[str, Any]:
        profile = snapshot_to_dict(user_ref.get(transaction=transaction))
        if profile is None:
            raise NotFound("User profile not found")
        if profile.get("referral_code"):
            return {"success": True, "referralCode": profile["referral_code"], "created": False}

        code = generate_referral_code()
        transaction.update(user_ref, {"referral_code": code, "updated_at": now_ts()})
        return {"success": True, "referralCode": code, "created": True}

    return run_in_transaction(db_client, _get_or_create)


# ============================================================================
# Callable endpoints
# ============================================================================

@router.post("/onUserCreateFreight")
def on_user_create_freight(caller: CallerContext = Depends(get_caller), db_client=Depends(get_db)):
    with reported("onUserCreateFreight"):
        return {"result": provision_user_profile(db_client=db_client, caller=caller)}


@router.post("/getUserProfileFreight")
def get_user_profile_freight(caller: CallerContext = Depends(get_caller), db_client=Depends(get_db)):
    with reported("getUserProfileFreight"):
        return {"result": get_user_profile(db_client=db_client, caller=caller)}


@router.post("/adminGetUserDetails")
def admin_get_user_details_endpoint(
    req: CallableRequest[UserDetailsPayload],
    caller: CallerContext = Depends(require_role(Role.ADMIN)),
    db_client=Depends(get_db),
):
    data = req.data or UserDetailsPayload()
    with reported("adminGetUserDetails"):
        return {"result": admin_get_user_details(db_client=db_client, caller=caller, user_id=data.user_id)}


@router.post("/updateUserRoleAdmin")
def update_user_role_admin(
    req: CallableRequest[UpdateUserRolePayload],
    caller: CallerContext = Depends(require_role(Role.ADMIN)),
    db_client=Depends(get_db),
):
    data = req.data or UpdateUserRolePayload()
    with reported("updateUserRoleAdmin"):
        result = update_user_role(
            db_client=db_client,
            caller=caller,
            target_user_id=data.target_user_id,
            new_role=data.new_role,
        )
    return {"result": result}


@router.post("/getOrCreateReferralCode")
def get_or_create_referral_code_endpoint(
    caller: CallerContext = Depends(require_role(*REFERRAL_ROLES)),
    db_client=Depends(get_db),
):
    with reported("getOrCreateReferralCode"):
        return {"result": get_or_create_referral_code(db_client=db_client, caller=caller)}
