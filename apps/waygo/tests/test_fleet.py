from __future__ import annotations

import pytest

from apps.waygo import fleet
from apps.waygo.conftest import make_caller
from apps.waygo.database import DVIR_REPORTS, USERS, VEHICLES
from apps.waygo.errors import InvalidArgument, NotFound, PermissionDenied
from apps.waygo.models import Role


def test_admin_add_vehicle(fake_db):
    out = fleet.add_vehicle(
        db_client=fake_db,
        caller=make_caller(),
        vehicle={"company_id": "c1", "unit_number": "T-12", "vin": "1FUJGLDR5CLBP8834"},
    )
    vehicle = fake_db.doc(VEHICLES, out["vehicleId"])
    assert vehicle["id"] == out["vehicleId"]
    assert vehicle["unit_number"] == "T-12"
    assert vehicle["created_by"] == "admin1"


def test_admin_add_vehicle_checks(fake_db):
    with pytest.raises(InvalidArgument):
        fleet.add_vehicle(db_client=fake_db, caller=make_caller(), vehicle={"unit_number": "T-1"})
    with pytest.raises(PermissionDenied):
        fleet.add_vehicle(db_client=fake_db, caller=make_caller(), vehicle={"company_id": "c2"})
    with pytest.raises(PermissionDenied):
        fleet.add_vehicle(db_client=fake_db, caller=make_caller(role=Role.DISPATCHER), vehicle={"company_id": "c1"})
    assert fake_db.all(VEHICLES) == {}


def test_submit_dvir_links_report_to_vehicle(fake_db):
    fake_db.seed(USERS, "d1", {"company_id": "c1", "role": "driver", "display_name": "Dee"})
    fake_db.seed(VEHICLES, "v1", {"company_id": "c1", "status": "active"})

    out = fleet.submit_dvir_report(
        db_client=fake_db,
        caller=make_caller(uid="d1", role=Role.DRIVER),
        report={"vehicle_id": "v1", "inspection_type": "pre_trip", "defects": []},
    )

    report = fake_db.doc(DVIR_REPORTS, out["dvirId"])
    assert report["driver_id"] == "d1"
    assert report["driver_name"] == "Dee"
    assert report["company_id"] == "c1"
    assert report["defects_found"] is False
    assert fake_db.doc(VEHICLES, "v1")["last_dvir_id"] == out["dvirId"]
    assert fake_db.doc(VEHICLES, "v1")["status"] == "active"


def test_submit_dvir_with_major_defect_flags_vehicle(fake_db):
    fake_db.seed(USERS, "d1", {"company_id": "c1"})
    fake_db.seed(VEHICLES, "v1", {"company_id": "c1", "status": "active"})
    fleet.submit_dvir_report(
        db_client=fake_db,
        caller=make_caller(uid="d1", role=Role.DRIVER),
        report={"vehicle_id": "v1", "defects": [{"category": "brakes", "description": "air leak", "severity": "major"}]},
    )
    assert fake_db.doc(VEHICLES, "v1")["status"] == "maintenance"


def test_submit_dvir_failures_write_nothing(fake_db):
    caller = make_caller(uid="d1", role=Role.DRIVER)
    with pytest.raises(NotFound, match="Driver profile not found."):
        fleet.submit_dvir_report(db_client=fake_db, caller=caller, report={"vehicle_id": "v1"})

    fake_db.seed(USERS, "d1", {"company_id": "c1"})
    with pytest.raises(NotFound):
        fleet.submit_dvir_report(db_client=fake_db, caller=caller, report={"vehicle_id": "v1"})

    fake_db.seed(VEHICLES, "v1", {"company_id": "c2"})
    with pytest.raises(PermissionDenied):
        fleet.submit_dvir_report(db_client=fake_db, caller=caller, report={"vehicle_id": "v1"})

    assert fake_db.all(DVIR_REPORTS) == {}
    assert "last_dvir_id" not in fake_db.doc(VEHICLES, "v1")


def test_dvir_endpoint_accepts_camel_case(client, fake_db):
    fake_db.seed(USERS, "d1", {"company_id": "c1"})
    fake_db.seed(VEHICLES, "v1", {"company_id": "c1"})
    client.set_caller(make_caller(uid="d1", role=Role.DRIVER))

    res = client.post(
        "/submitDVIRReportFreight",
        json={"data": {"vehicleId": "v1", "inspectionType": "post_trip", "odometer": 120345}},
    )

    assert res.status_code == 200
    report = fake_db.doc(DVIR_REPORTS, res.json()["result"]["dvirId"])
    assert report["inspection_type"] == "post_trip"
    assert report["odometer"] == 120345
