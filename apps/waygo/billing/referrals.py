from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from ..auth import ensure_auth, get_caller
from ..database import ACCOUNTS, REFERRALS, USERS, get_db, run_in_transaction, snapshot_to_dict
from ..errors import NotFound, reported
from ..models import CallerContext
from ..settings import settings
from ..utils import now_ts

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Billing"])


def find_referrer(db_client, referral_code: str) -> Optional[str]:
    snaps = list(
        db_client.collection(USERS)
        .where("referral_code", "==", referral_code)
        .limit(1)
        .stream()
    )
    return snaps[0].id if snaps else None


def claim_referral_discount(db_client, user_id: str, referral_code: Optional[str]) -> Optional[str]:
    """Mark ``user_id`` as having used a referral discount.

    Returns the referrer's uid, or None when the code is unknown, is the
    user's own, or the user already had a referral discount.
    """
    if not referral_code:
        return None
    referrer_id = find_referrer(db_client, referral_code)
    if referrer_id is None or referrer_id == user_id:
        return None

    user_ref = db_client.collection(USERS).document(user_id)

    def _claim(transaction) -> Optional[str]:
        profile = snapshot_to_dict(user_ref.get(transaction=transaction)) or {}
        if profile.get("referral_discount_applied"):
            return None
        transaction.update(user_ref, {"referral_discount_applied": True, "updated_at": now_ts()})
        return referrer_id

    return run_in_transaction(db_client, _claim)


def reward_referrer(db_client, *, referrer_id: str, referral_code: str, referred_user_id: str) -> None:
    """Credit the referrer's account and record the referral."""
    account_ref = db_client.collection(ACCOUNTS).document(referrer_id)
    referral_ref = db_client.collection(REFERRALS).document()
    reward = settings.REFERRAL_REWARD_AMOUNT

    def _reward(transaction) -> None:
        account = snapshot_to_dict(account_ref.get(transaction=transaction)) or {}
        transaction.set(account_ref, {"credits": float(account.get("credits") or 0) + reward}, merge=True)
        transaction.set(referral_ref, {
            "referrer_id": referrer_id,
            "referred_user_id": referred_user_id,
            "referral_code": referral_code,
            "reward_amount": reward,
            "created_at": now_ts(),
        })

    run_in_transaction(db_client, _reward)
    logger.info("Referral reward of %s credited to %s", reward, referrer_id)


def get_referral_stats(*, db_client, caller: Optional[CallerContext]) -> Dict[str, Any]:
    caller = ensure_auth(caller)
    profile = snapshot_to_dict(db_client.collection(USERS).document(caller.uid).get())
    if profile is None:
        raise NotFound("User not found")

    referral_code = profile.get("referral_code")
    if not referral_code:
        return {"referralCode": None, "totalReferrals": 0, "totalRewards": 0, "availableCredits": 0, "referralUsers": []}

    referrals = [
        s.to_dict() or {}
        for s in db_client.collection(REFERRALS).where("referrer_id", "==", caller.uid).stream()
    ]
    account = snapshot_to_dict(db_client.collection(ACCOUNTS).document(caller.uid).get()) or {}
    return {
        "referralCode": referral_code,
        "totalReferrals": len(referrals),
        "totalRewards": sum(float(r.get("reward_amount") or 0) for r in referrals),
        "availableCredits": float(account.get("credits") or 0),
        "referralUsers": [r.get("referred_user_id") for r in referrals],
    }


@router.post("/getReferralStats")
def get_referral_stats_endpoint(caller: CallerContext = Depends(get_caller), db_client=Depends(get_db)):
    with reported("getReferralStats"):
        return {"result": get_referral_stats(db_client=db_client, caller=caller)}
