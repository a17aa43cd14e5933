from __future__ import annotations

from fastapi import APIRouter, Depends

from ..auth import require_role
from ..database import get_db
from ..errors import reported
from ..models import CallableRequest, CallerContext
from .models import (
    DriverSettlementsPayload,
    ExpenseDetailsPayload,
    ListExpensesPayload,
    UpdateExpenseStatusPayload,
)
from .repo import (
    EXPENSE_ROLES,
    SETTLEMENT_ROLES,
    get_driver_settlements,
    get_expense_details,
    list_expenses,
    update_expense_status,
)


router = APIRouter(prefix="", tags=["Finance"])


@router.post("/adminGetExpenseDetails")
def admin_get_expense_details(
    req: CallableRequest[ExpenseDetailsPayload],
    caller: CallerContext = Depends(require_role(*EXPENSE_ROLES)),
    db_client=Depends(get_db),
):
    data = req.data or ExpenseDetailsPayload()
    with reported("adminGetExpenseDetails"):
        return {"result": get_expense_details(db_client=db_client, caller=caller, expense_id=data.expense_id)}


@router.post("/adminUpdateExpenseStatus")
def admin_update_expense_status(
    req: CallableRequest[UpdateExpenseStatusPayload],
    caller: CallerContext = Depends(require_role(*EXPENSE_ROLES)),
    db_client=Depends(get_db),
):
    data = req.data or UpdateExpenseStatusPayload()
    with reported("adminUpdateExpenseStatus"):
        result = update_expense_status(
            db_client=db_client,
            caller=caller,
            expense_id=data.expense_id,
            status=data.status,
            rejection_reason=data.rejection_reason,
        )
    return {"result": result}


@router.post("/adminGetExpenses")
def admin_get_expenses(
    req: CallableRequest[ListExpensesPayload],
    caller: CallerContext = Depends(require_role(*EXPENSE_ROLES)),
    db_client=Depends(get_db),
):
    data = req.data or ListExpensesPayload()
    with reported("adminGetExpenses"):
        result = list_expenses(
            db_client=db_client,
            caller=caller,
            company_id=data.company_id,
            status=data.status,
            page=data.page,
            limit=data.limit,
        )
    return {"result": result}


@router.post("/getDriverSettlements")
def get_driver_settlements_endpoint(
    req: CallableRequest[DriverSettlementsPayload],
    caller: CallerContext = Depends(require_role(*SETTLEMENT_ROLES)),
    db_client=Depends(get_db),
):
    data = req.data or DriverSettlementsPayload()
    with reported("getDriverSettlements"):
        summary = get_driver_settlements(
            db_client=db_client,
            caller=caller,
            driver_id=data.driver_id,
            period=data.period,
            company_id=data.company_id,
        )
    return {"result": summary.to_result()}
