from __future__ import annotations

import logging
import os
import time
from functools import lru_cache
from typing import Any, Callable, Dict, Optional, TypeVar

import firebase_admin
from firebase_admin import credentials, firestore

from .settings import settings

logger = logging.getLogger(__name__)

# Firestore collections
LOADS = "freight_loads"
USERS = "users_freight"
VEHICLES = "vehicles_freight"
DVIR_REPORTS = "dvir_reports_freight"
EXPENSES = "expense_reports_freight"
AUDIT_LOGS = "audit_logs"
ACCOUNTS = "accounts_freight"
REFERRALS = "referrals_freight"

T = TypeVar("T")


def init_firebase() -> firebase_admin.App:
    """Initialize the default Firebase app once.

    Uses the service-account file when present, otherwise application-default
    credentials (Cloud Run / Functions runtime).
    """
    if firebase_admin._apps:
        return firebase_admin.get_app()

    path = settings.FIREBASE_CREDENTIALS_PATH
    if path and os.path.exists(path):
        cred = credentials.Certificate(path)
    else:
        cred = credentials.ApplicationDefault()

    options: Dict[str, Any] = {}
    if settings.FIREBASE_PROJECT_ID:
        options["projectId"] = settings.FIREBASE_PROJECT_ID
    return firebase_admin.initialize_app(cred, options or None)


@lru_cache(maxsize=1)
def get_db():
    """Firestore client; also the FastAPI dependency routers use."""
    init_firebase()
    return firestore.client()


def run_in_transaction(db_client, fn: Callable[[Any], T]) -> T:
    """Run ``fn(transaction)`` atomically.

    Read-write conflicts are retried by the SDK; ``fn`` must do all reads
    before its first write and must not have side effects outside the
    transaction.
    """

    @firestore.transactional
    def _run(transaction):
        return fn(transaction)

    return _run(db_client.transaction())


def snapshot_to_dict(snap) -> Optional[Dict[str, Any]]:
    if not getattr(snap, "exists", False):
        return None
    return snap.to_dict() or {}


# Helper to log actions
def log_action(db_client, user_id: str, action: str, details: str, ip: Optional[str] = None) -> None:
    try:
        db_client.collection(AUDIT_LOGS).add({
            "user_id": user_id,
            "action": action,
            "details": details,
            "ip_address": ip,
            "timestamp": time.time(),
        })
    except Exception as e:
        logger.warning("Audit log error: %s", e)
