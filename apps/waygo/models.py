# File: apps/waygo/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# --- 1. Enums ---

class Role(str, Enum):
    ADMIN = "admin"
    DISPATCHER = "dispatcher"
    DRIVER = "driver"
    CUSTOMER = "customer"
    WAREHOUSE = "warehouse"

    @classmethod
    def parse(cls, value: Any) -> Optional["Role"]:
        """Parse a role claim; legacy values such as ``DRIVER_FREIGHT`` are accepted."""
        s = str(value or "").strip().lower()
        if s.endswith("_freight"):
            s = s[: -len("_freight")]
        try:
            return cls(s)
        except ValueError:
            return None


class LoadStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    EN_ROUTE_PICKUP = "en_route_pickup"
    AT_PICKUP = "at_pickup"
    LOADED = "loaded"
    IN_TRANSIT = "in_transit"
    EN_ROUTE_DELIVERY = "en_route_delivery"
    AT_DELIVERY = "at_delivery"
    DELAYED = "delayed"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class StopStatus(str, Enum):
    PENDING = "pending"
    ARRIVED = "arrived"
    LOADING = "loading"
    UNLOADING = "unloading"
    COMPLETED = "completed"
    SKIPPED = "skipped"


# --- 2. Caller ---

@dataclass(frozen=True)
class CallerContext:
    """Verified identity of the caller, built from ID token claims."""

    uid: str
    role: Optional[Role]
    company_id: Optional[str]
    email: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict)


# --- 3. Callable envelopes ---

class Payload(BaseModel):
    """Callable payloads arrive camelCased from the mobile app."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


T = TypeVar("T", bound=Payload)


class CallableRequest(BaseModel, Generic[T]):
    data: Optional[T] = None


# --- 4. Load payloads ---

class AssignDriverPayload(Payload):
    load_id: Optional[str] = None
    driver_id: Optional[str] = None


class UpdateLoadStatusPayload(Payload):
    load_id: Optional[str] = None
    status: Optional[str] = None
    stop_id: Optional[str] = None
    stop_status: Optional[str] = None
    notes: Optional[str] = None
    location: Optional[Any] = None


class DocumentInfo(Payload):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: Optional[str] = None
    kind: Optional[str] = None
    url: Optional[str] = None
    storage_path: Optional[str] = None
    content_type: Optional[str] = None


class AddLoadDocumentPayload(Payload):
    load_id: Optional[str] = None
    document_info: Optional[DocumentInfo] = None


# --- 5. User payloads ---

class UserDetailsPayload(Payload):
    user_id: Optional[str] = None


class UpdateUserRolePayload(Payload):
    target_user_id: Optional[str] = None
    new_role: Optional[str] = None


# --- 6. Fleet payloads ---

class AddVehiclePayload(Payload):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    company_id: Optional[str] = None
    unit_number: Optional[str] = None
    vin: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    license_plate: Optional[str] = None
    status: str = "active"


class DvirDefect(Payload):
    category: str
    description: str
    severity: str = "minor"  # minor | major | critical


class DvirReportPayload(Payload):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    vehicle_id: Optional[str] = None
    inspection_type: str = "pre_trip"  # pre_trip | post_trip
    odometer: Optional[float] = None
    defects: List[DvirDefect] = []
    notes: Optional[str] = None
    signature_url: Optional[str] = None


# --- 7. Billing payloads ---

class CancelSubscriptionPayload(Payload):
    immediately: bool = False


class CreateSubscriptionPayload(Payload):
    plan_id: Optional[str] = None
    payment_method_id: Optional[str] = None
    referral_code: Optional[str] = None
