from __future__ import annotations

from typing import Any, Dict, List

from .models import SettlementLoad, SettlementSummary


def _amount(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def compute_settlement(
    *,
    driver_id: str,
    period: str,
    loads: List[Dict[str, Any]],
    expenses: List[Dict[str, Any]],
) -> SettlementSummary:
    """Gross pay is rate plus fuel surcharge over completed loads; approved expenses come off the top."""
    gross_pay = 0.0
    settlement_loads: List[SettlementLoad] = []
    for load in loads:
        rate = _amount(load.get("rate"))
        fuel = _amount(load.get("fuel_surcharge"))
        gross_pay += rate + fuel
        settlement_loads.append(
            SettlementLoad(
                load_id=str(load.get("id") or load.get("load_id") or ""),
                load_number=load.get("load_number"),
                rate=round(rate, 2),
                fuel_surcharge=round(fuel, 2),
                completed_at=load.get("completed_at"),
            )
        )

    expenses_total = sum(_amount(e.get("amount")) for e in expenses)

    return SettlementSummary(
        driver_id=driver_id,
        period=period,
        load_count=len(settlement_loads),
        gross_pay=round(gross_pay, 2),
        expenses_total=round(expenses_total, 2),
        net_pay=round(gross_pay - expenses_total, 2),
        loads=settlement_loads,
        expense_ids=[str(e.get("id")) for e in expenses if e.get("id")],
    )
