from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends

from .auth import ensure_auth, ensure_role, ensure_same_tenant, get_caller, require_role
from .database import LOADS, USERS, get_db, log_action, run_in_transaction, snapshot_to_dict
from .errors import FailedPrecondition, InvalidArgument, NotFound, PermissionDenied, reported
from .models import (
    AddLoadDocumentPayload,
    AssignDriverPayload,
    CallableRequest,
    CallerContext,
    LoadStatus,
    Role,
    StopStatus,
    UpdateLoadStatusPayload,
)
from .utils import now_ts

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Loads"])

ASSIGN_ROLES = (Role.ADMIN, Role.DISPATCHER)
STATUS_ROLES = (Role.ADMIN, Role.DISPATCHER, Role.DRIVER)


def _is_assigned(load: Dict[str, Any]) -> bool:
    status = str(load.get("status") or "").strip().lower()
    return status == LoadStatus.ASSIGNED.value or bool(load.get("assigned_driver_id"))


def _ensure_driver_owns_load(caller: CallerContext, load: Dict[str, Any]) -> None:
    # Drivers may only touch loads assigned to them.
    if caller.role == Role.DRIVER and load.get("assigned_driver_id") != caller.uid:
        raise PermissionDenied("You are not the assigned driver for this load")


def replace_stop_status(stops: Any, stop_id: str, stop_status: str) -> List[Dict[str, Any]]:
    """Return a copy of ``stops`` with only ``stop_id``'s status replaced."""
    if not isinstance(stops, list):
        return []
    out: List[Dict[str, Any]] = []
    for stop in stops:
        if isinstance(stop, dict) and stop.get("id") == stop_id:
            out.append({**stop, "status": stop_status})
        else:
            out.append(stop)
    return out


def assign_driver_to_load(
    *,
    db_client,
    caller: Optional[CallerContext],
    load_id: Optional[str],
    driver_id: Optional[str],
) -> Dict[str, Any]:
    """Atomically bind a driver to an unassigned load of the caller's company."""
    caller = ensure_role(caller, ASSIGN_ROLES)
    if not load_id or not driver_id:
        raise InvalidArgument("Load ID and Driver ID are required")

    load_ref = db_client.collection(LOADS).document(load_id)
    driver_ref = db_client.collection(USERS).document(driver_id)

    def _assign(transaction) -> None:
        load = snapshot_to_dict(load_ref.get(transaction=transaction))
        if load is None:
            raise NotFound("Load not found")
        ensure_same_tenant(caller, load.get("company_id"), "Cannot access this load")
        if _is_assigned(load):
            raise FailedPrecondition("Load is already assigned to a driver")

        driver = snapshot_to_dict(driver_ref.get(transaction=transaction))
        if driver is None:
            raise NotFound("Driver not found")
        if driver.get("company_id") != caller.company_id or Role.parse(driver.get("role")) != Role.DRIVER:
            raise PermissionDenied("Invalid driver assignment")

        now = now_ts()
        transaction.update(load_ref, {
            "assigned_driver_id": driver_id,
            "status": LoadStatus.ASSIGNED.value,
            "updated_at": now,
        })
        transaction.update(driver_ref, {
            "current_load_id": load_id,
            "is_available": False,
            "updated_at": now,
        })

    run_in_transaction(db_client, _assign)
    log_action(db_client, caller.uid, "LOAD_DRIVER_ASSIGNED", f"Driver {driver_id} assigned to load {load_id}")
    return {"success": True, "message": "Driver assigned to load successfully"}


def update_load_status(
    *,
    db_client,
    caller: Optional[CallerContext],
    load_id: Optional[str],
    status: Optional[str],
    stop_id: Optional[str] = None,
    stop_status: Optional[str] = None,
    notes: Optional[str] = None,
    location: Any = None,
) -> Dict[str, Any]:
    """Move a load to ``status`` and append one status-history entry.

    When both ``stop_id`` and ``stop_status`` are given, that stop's status is
    replaced too; other stops are left untouched. The whole document update is
    one transactional write.
    """
    caller = ensure_role(caller, STATUS_ROLES)
    if not load_id or not status:
        raise InvalidArgument("Load ID and status are required")
    try:
        new_status = LoadStatus(str(status).strip().lower())
    except ValueError:
        raise InvalidArgument(f"Invalid load status: {status}")
    new_stop_status: Optional[StopStatus] = None
    if stop_id and stop_status:
        try:
            new_stop_status = StopStatus(str(stop_status).strip().lower())
        except ValueError:
            raise InvalidArgument(f"Invalid stop status: {stop_status}")

    load_ref = db_client.collection(LOADS).document(load_id)

    def _update(transaction) -> Dict[str, Any]:
        load = snapshot_to_dict(load_ref.get(transaction=transaction))
        if load is None:
            raise NotFound("Load not found")
        ensure_same_tenant(caller, load.get("company_id"), "Cannot access this load")
        _ensure_driver_owns_load(caller, load)

        now = now_ts()
        entry = {
            "status": new_status.value,
            "timestamp": now,
            "updated_by": caller.uid,
            "notes": notes,
            "location": location,
        }
        history = list(load.get("status_history") or [])
        history.append(entry)

        updates: Dict[str, Any] = {
            "status": new_status.value,
            "status_history": history,
            "updated_at": now,
        }
        if new_stop_status is not None:
            updates["stops"] = replace_stop_status(load.get("stops"), stop_id, new_stop_status.value)

        transaction.update(load_ref, updates)
        return entry

    entry = run_in_transaction(db_client, _update)
    return {"success": True, "status": entry["status"], "historyEntry": entry}


def add_document_to_load(
    *,
    db_client,
    caller: Optional[CallerContext],
    load_id: Optional[str],
    document_info: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    caller = ensure_auth(caller)
    if not load_id or not document_info:
        raise InvalidArgument("Load ID and document info are required")

    load_ref = db_client.collection(LOADS).document(load_id)
    doc_id = str(uuid.uuid4())

    def _add(transaction) -> None:
        load = snapshot_to_dict(load_ref.get(transaction=transaction))
        if load is None:
            raise NotFound("Load not found")
        ensure_same_tenant(caller, load.get("company_id"), "Cannot access this load")
        _ensure_driver_owns_load(caller, load)

        now = now_ts()
        record = {
            **document_info,
            "id": doc_id,
            "uploaded_by": caller.uid,
            "uploaded_at": now,
        }
        documents = list(load.get("documents") or [])
        documents.append(record)
        transaction.update(load_ref, {"documents": documents, "updated_at": now})

    run_in_transaction(db_client, _add)
    return {"success": True, "documentId": doc_id}


# ============================================================================
# Callable endpoints
# ============================================================================

@router.post("/assignDriverToFreightLoad")
def assign_driver_to_freight_load(
    req: CallableRequest[AssignDriverPayload],
    caller: CallerContext = Depends(require_role(*ASSIGN_ROLES)),
    db_client=Depends(get_db),
):
    data = req.data or AssignDriverPayload()
    with reported("assignDriverToFreightLoad"):
        result = assign_driver_to_load(db_client=db_client, caller=caller, load_id=data.load_id, driver_id=data.driver_id)
    return {"result": result}


@router.post("/updateFreightLoadStatus")
def update_freight_load_status(
    req: CallableRequest[UpdateLoadStatusPayload],
    caller: CallerContext = Depends(require_role(*STATUS_ROLES)),
    db_client=Depends(get_db),
):
    data = req.data or UpdateLoadStatusPayload()
    with reported("updateFreightLoadStatus"):
        result = update_load_status(
            db_client=db_client,
            caller=caller,
            load_id=data.load_id,
            status=data.status,
            stop_id=data.stop_id,
            stop_status=data.stop_status,
            notes=data.notes,
            location=data.location,
        )
    return {"result": result}


@router.post("/addDocumentToFreightLoad")
def add_document_to_freight_load(
    req: CallableRequest[AddLoadDocumentPayload],
    caller: CallerContext = Depends(get_caller),
    db_client=Depends(get_db),
):
    data = req.data or AddLoadDocumentPayload()
    info = data.document_info.model_dump(exclude_none=True) if data.document_info else None
    with reported("addDocumentToFreightLoad"):
        result = add_document_to_load(db_client=db_client, caller=caller, load_id=data.load_id, document_info=info)
    return {"result": result}
