from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..models import Payload


class ExpenseStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


class ExpenseDetailsPayload(Payload):
    expense_id: Optional[str] = None


class UpdateExpenseStatusPayload(Payload):
    expense_id: Optional[str] = None
    status: Optional[str] = None
    rejection_reason: Optional[str] = None


class ListExpensesPayload(Payload):
    company_id: Optional[str] = None
    status: Optional[str] = None
    page: int = 1
    limit: int = 20


class DriverSettlementsPayload(Payload):
    driver_id: Optional[str] = None
    period: Optional[str] = None
    company_id: Optional[str] = None


class SettlementLoad(BaseModel):
    load_id: str
    load_number: Optional[str] = None
    rate: float = 0.0
    fuel_surcharge: float = 0.0
    completed_at: Optional[float] = None


class SettlementSummary(BaseModel):
    driver_id: str
    period: str
    load_count: int
    gross_pay: float
    expenses_total: float
    net_pay: float
    loads: List[SettlementLoad] = Field(default_factory=list)
    expense_ids: List[str] = Field(default_factory=list)

    def to_result(self) -> Dict[str, Any]:
        return {
            "driverId": self.driver_id,
            "period": self.period,
            "loadCount": self.load_count,
            "grossPay": self.gross_pay,
            "expensesTotal": self.expenses_total,
            "netPay": self.net_pay,
            "loads": [ld.model_dump() for ld in self.loads],
            "expenseIds": list(self.expense_ids),
        }
