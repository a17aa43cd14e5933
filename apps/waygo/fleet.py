from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from .auth import ensure_auth, ensure_role, ensure_same_tenant, get_caller, require_role
from .database import DVIR_REPORTS, USERS, VEHICLES, get_db, log_action, run_in_transaction, snapshot_to_dict
from .errors import InvalidArgument, NotFound, PermissionDenied, reported
from .models import AddVehiclePayload, CallableRequest, CallerContext, DvirReportPayload, Role
from .utils import now_ts

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Fleet"])


def add_vehicle(*, db_client, caller: Optional[CallerContext], vehicle: Dict[str, Any]) -> Dict[str, Any]:
    caller = ensure_role(caller, (Role.ADMIN,))
    company_id = vehicle.get("company_id")
    if not company_id:
        raise InvalidArgument("Company ID is required")
    ensure_same_tenant(caller, company_id, "You can only add vehicles to your own company.")

    vehicle_ref = db_client.collection(VEHICLES).document()
    now = now_ts()
    vehicle_ref.set({
        **vehicle,
        "id": vehicle_ref.id,
        "created_by": caller.uid,
        "created_at": now,
        "updated_at": now,
    })
    log_action(db_client, caller.uid, "VEHICLE_ADDED", f"Vehicle {vehicle_ref.id} added")
    return {"success": True, "vehicleId": vehicle_ref.id}


def _has_open_defects(report: Dict[str, Any]) -> bool:
    return any(str(d.get("severity") or "").lower() in {"major", "critical"} for d in report.get("defects") or [])


def submit_dvir_report(*, db_client, caller: Optional[CallerContext], report: Dict[str, Any]) -> Dict[str, Any]:
    """Store a driver vehicle inspection report and link it from the vehicle."""
    caller = ensure_auth(caller)
    vehicle_id = report.get("vehicle_id")
    if not vehicle_id:
        raise InvalidArgument("Vehicle ID is required")

    driver = snapshot_to_dict(db_client.collection(USERS).document(caller.uid).get())
    if driver is None:
        raise NotFound("Driver profile not found.")

    vehicle_ref = db_client.collection(VEHICLES).document(vehicle_id)
    report_ref = db_client.collection(DVIR_REPORTS).document()

    def _submit(transaction) -> None:
        vehicle = snapshot_to_dict(vehicle_ref.get(transaction=transaction))
        if vehicle is None:
            raise NotFound("Vehicle not found")
        if not driver.get("company_id") or vehicle.get("company_id") != driver.get("company_id"):
            raise PermissionDenied("Cannot inspect this vehicle")

        now = now_ts()
        transaction.set(report_ref, {
            **report,
            "id": report_ref.id,
            "driver_id": caller.uid,
            "driver_name": driver.get("display_name"),
            "company_id": driver.get("company_id"),
            "defects_found": bool(report.get("defects")),
            "date": now,
        })
        vehicle_update: Dict[str, Any] = {"last_dvir_id": report_ref.id, "updated_at": now}
        if _has_open_defects(report):
            vehicle_update["status"] = "maintenance"
        transaction.update(vehicle_ref, vehicle_update)

    run_in_transaction(db_client, _submit)
    return {"success": True, "dvirId": report_ref.id}


# ============================================================================
# Callable endpoints
# ============================================================================

@router.post("/adminAddVehicle")
def admin_add_vehicle(
    req: CallableRequest[AddVehiclePayload],
    caller: CallerContext = Depends(require_role(Role.ADMIN)),
    db_client=Depends(get_db),
):
    vehicle = (req.data or AddVehiclePayload()).model_dump(exclude_none=True)
    with reported("adminAddVehicle"):
        return {"result": add_vehicle(db_client=db_client, caller=caller, vehicle=vehicle)}


@router.post("/submitDVIRReportFreight")
def submit_dvir_report_freight(
    req: CallableRequest[DvirReportPayload],
    caller: CallerContext = Depends(get_caller),
    db_client=Depends(get_db),
):
    report = (req.data or DvirReportPayload()).model_dump(exclude_none=True)
    with reported("submitDVIRReportFreight"):
        return {"result": submit_dvir_report(db_client=db_client, caller=caller, report=report)}
