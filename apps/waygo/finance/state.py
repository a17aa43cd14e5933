from __future__ import annotations

from typing import Optional

from .models import ExpenseStatus


class ExpenseStateError(ValueError):
    pass


def can_transition(current: ExpenseStatus, new: ExpenseStatus) -> bool:
    allowed: dict[ExpenseStatus, set[ExpenseStatus]] = {
        ExpenseStatus.PENDING: {ExpenseStatus.APPROVED, ExpenseStatus.REJECTED},
        ExpenseStatus.REJECTED: {ExpenseStatus.PENDING},
        ExpenseStatus.APPROVED: {ExpenseStatus.PAID},
        ExpenseStatus.PAID: set(),
    }
    return new in allowed.get(current, set())


def assert_transition(current: ExpenseStatus, new: ExpenseStatus, rejection_reason: Optional[str] = None) -> None:
    if current == new:
        return
    if not can_transition(current, new):
        raise ExpenseStateError(f"Invalid expense transition: {current.value} -> {new.value}")
    if new == ExpenseStatus.REJECTED and not str(rejection_reason or "").strip():
        raise ExpenseStateError("A rejection reason is required")
