from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from firebase_admin import firestore

from ..auth import ensure_role, ensure_same_tenant
from ..database import EXPENSES, LOADS, log_action, run_in_transaction, snapshot_to_dict
from ..errors import FailedPrecondition, InvalidArgument, NotFound, PermissionDenied
from ..models import CallerContext, LoadStatus, Role
from ..utils import now_ts, parse_period
from .models import ExpenseStatus, SettlementSummary
from .service import compute_settlement
from .state import ExpenseStateError, assert_transition

logger = logging.getLogger(__name__)

EXPENSE_ROLES = (Role.ADMIN, Role.DISPATCHER)
SETTLEMENT_ROLES = (Role.ADMIN, Role.DISPATCHER, Role.DRIVER)

MAX_PAGE_SIZE = 100
MAX_SETTLEMENT_LOADS = 100


def _parse_expense_status(value: Any) -> ExpenseStatus:
    try:
        return ExpenseStatus(str(value or "").strip().lower())
    except ValueError:
        raise InvalidArgument(f"Invalid expense status: {value}")


def get_expense_details(*, db_client, caller: Optional[CallerContext], expense_id: Optional[str]) -> Dict[str, Any]:
    caller = ensure_role(caller, EXPENSE_ROLES)
    if not expense_id:
        raise InvalidArgument("Expense ID is required")
    expense = snapshot_to_dict(db_client.collection(EXPENSES).document(expense_id).get())
    if expense is None:
        raise NotFound("Expense report not found")
    ensure_same_tenant(caller, expense.get("company_id"), "Cannot access this expense report.")
    return {"id": expense_id, **expense}


def update_expense_status(
    *,
    db_client,
    caller: Optional[CallerContext],
    expense_id: Optional[str],
    status: Optional[str],
    rejection_reason: Optional[str] = None,
) -> Dict[str, Any]:
    """Move an expense report through its review workflow.

    The current status is read and the transition checked in the same
    transaction as the write, so two reviewers cannot both act on a pending
    report.
    """
    caller = ensure_role(caller, EXPENSE_ROLES)
    if not expense_id or not status:
        raise InvalidArgument("Expense ID and status are required")
    new_status = _parse_expense_status(status)

    expense_ref = db_client.collection(EXPENSES).document(expense_id)

    def _update(transaction) -> ExpenseStatus:
        expense = snapshot_to_dict(expense_ref.get(transaction=transaction))
        if expense is None:
            raise NotFound("Expense report not found")
        ensure_same_tenant(caller, expense.get("company_id"), "Cannot access this expense report.")

        current = _parse_expense_status(expense.get("status") or ExpenseStatus.PENDING.value)
        try:
            assert_transition(current, new_status, rejection_reason)
        except ExpenseStateError as e:
            raise FailedPrecondition(str(e))

        now = now_ts()
        updates: Dict[str, Any] = {"status": new_status.value, "updated_at": now}
        if new_status in {ExpenseStatus.APPROVED, ExpenseStatus.REJECTED}:
            updates.update({
                "approved_by": caller.uid,
                "approved_at": now,
                "rejection_reason": (rejection_reason or None) if new_status == ExpenseStatus.REJECTED else None,
            })
        elif new_status == ExpenseStatus.PAID:
            updates["paid_at"] = now
        transaction.update(expense_ref, updates)
        return current

    previous = run_in_transaction(db_client, _update)
    log_action(
        db_client,
        caller.uid,
        "EXPENSE_STATUS_UPDATED",
        f"Expense {expense_id}: {previous.value} -> {new_status.value}",
    )
    return {"success": True, "message": "Expense status updated successfully"}


def _count(query) -> int:
    results = query.count().get()
    try:
        return int(results[0][0].value)
    except (IndexError, TypeError, AttributeError):
        return 0


def list_expenses(
    *,
    db_client,
    caller: Optional[CallerContext],
    company_id: Optional[str],
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Dict[str, Any]:
    caller = ensure_role(caller, EXPENSE_ROLES)
    if not company_id:
        raise InvalidArgument("Company ID is required")
    ensure_same_tenant(caller, company_id, "Unauthorized company access")
    page = max(1, int(page or 1))
    limit = max(1, min(int(limit or 20), MAX_PAGE_SIZE))

    query = db_client.collection(EXPENSES).where("company_id", "==", company_id)
    if status:
        query = query.where("status", "==", _parse_expense_status(status).value)
    query = query.order_by("created_at", direction=firestore.Query.DESCENDING)

    total = _count(query)
    expenses: List[Dict[str, Any]] = []
    for snap in query.offset((page - 1) * limit).limit(limit).stream():
        expenses.append({"id": snap.id, **(snap.to_dict() or {})})

    return {"expenses": expenses, "total": total, "page": page, "limit": limit}


def get_driver_settlements(
    *,
    db_client,
    caller: Optional[CallerContext],
    driver_id: Optional[str],
    period: Optional[str],
    company_id: Optional[str],
) -> SettlementSummary:
    """Summarise a driver's completed loads and approved expenses for a ``YYYY-MM`` month."""
    caller = ensure_role(caller, SETTLEMENT_ROLES)
    ensure_same_tenant(caller, company_id, "Unauthorized company access")
    bounds = parse_period(period)
    if bounds is None:
        raise InvalidArgument("Period must be in YYYY-MM format")

    if caller.role == Role.DRIVER:
        driver_id = driver_id or caller.uid
        if driver_id != caller.uid:
            raise PermissionDenied("Drivers can only view their own settlements")
    if not driver_id:
        raise InvalidArgument("Driver ID is required")

    start, end = (b.timestamp() for b in bounds)

    loads_query = (
        db_client.collection(LOADS)
        .where("company_id", "==", company_id)
        .where("assigned_driver_id", "==", driver_id)
        .where("status", "==", LoadStatus.COMPLETED.value)
        .where("created_at", ">=", start)
        .where("created_at", "<", end)
        .limit(MAX_SETTLEMENT_LOADS)
    )
    loads = [{"id": snap.id, **(snap.to_dict() or {})} for snap in loads_query.stream()]

    expenses_query = (
        db_client.collection(EXPENSES)
        .where("company_id", "==", company_id)
        .where("driver_id", "==", driver_id)
        .where("status", "==", ExpenseStatus.APPROVED.value)
        .where("created_at", ">=", start)
        .where("created_at", "<", end)
    )
    expenses = [{"id": snap.id, **(snap.to_dict() or {})} for snap in expenses_query.stream()]

    logger.info("Settlement for driver %s in %s: %d loads, %d expenses", driver_id, period, len(loads), len(expenses))
    return compute_settlement(driver_id=driver_id, period=str(period), loads=loads, expenses=expenses)
