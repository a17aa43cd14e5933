from fastapi import APIRouter

from .referrals import router as referrals_router
from .subscriptions import router as subscriptions_router
from .webhooks import router as webhooks_router

router = APIRouter()
router.include_router(webhooks_router)
router.include_router(subscriptions_router)
router.include_router(referrals_router)

__all__ = ["router"]
