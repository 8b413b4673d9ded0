from datetime import datetime, UTC
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class OrderStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_PRESCRIPTION = "PENDING_PRESCRIPTION"
    PRESCRIPTION_APPROVED = "PRESCRIPTION_APPROVED"
    PRESCRIPTION_REJECTED = "PRESCRIPTION_REJECTED"
    PENDING_COURIER = "PENDING_COURIER"
    COURIER_ASSIGNED = "COURIER_ASSIGNED"
    EN_ROUTE = "EN_ROUTE"
    DELIVERED = "DELIVERED"
    UNASSIGNABLE = "UNASSIGNABLE"


class AttemptStatus(str, Enum):
    OFFERED = "OFFERED"
    ACCEPTED = "ACCEPTED"
    REFUSED = "REFUSED"
    TIMED_OUT = "TIMED_OUT"


# PENDING_COURIER -> PENDING_COURIER is the retry edge used for every new offer.
ALLOWED_TRANSITIONS = {
    OrderStatus.DRAFT: {OrderStatus.PENDING_PRESCRIPTION, OrderStatus.PENDING_COURIER},
    OrderStatus.PENDING_PRESCRIPTION: {OrderStatus.PRESCRIPTION_APPROVED, OrderStatus.PRESCRIPTION_REJECTED},
    OrderStatus.PRESCRIPTION_APPROVED: {OrderStatus.PENDING_COURIER},
    OrderStatus.PENDING_COURIER: {
        OrderStatus.PENDING_COURIER,
        OrderStatus.COURIER_ASSIGNED,
        OrderStatus.UNASSIGNABLE,
    },
    OrderStatus.COURIER_ASSIGNED: {OrderStatus.EN_ROUTE},
    OrderStatus.EN_ROUTE: {OrderStatus.DELIVERED},
    OrderStatus.PRESCRIPTION_REJECTED: set(),
    OrderStatus.UNASSIGNABLE: set(),
    OrderStatus.DELIVERED: set(),
}

TERMINAL_STATUSES = {status for status, targets in ALLOWED_TRANSITIONS.items() if not targets}


def can_transition(current: str, target: str) -> bool:
    return OrderStatus(target) in ALLOWED_TRANSITIONS[OrderStatus(current)]


def utc_now() -> datetime:
    return datetime.now(UTC)


class Pharmacy(BaseModel):
    id: str
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    on_duty: bool = False
    is_open: bool = False
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    hours: Optional[str] = None


class Medicine(BaseModel):
    id: str
    name: str
    pharmacy_id: str
    price: int = 0
    stock: int = 0
    requires_prescription: bool = False
    dosage: Optional[str] = None
    form: Optional[str] = None


class Courier(BaseModel):
    id: str
    name: str
    phone: str
    verified: bool = False
    available: bool = False


class Clinic(BaseModel):
    id: str
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    specialties: List[str] = Field(default_factory=list)
    verified: bool = False


class CartItem(BaseModel):
    """Cart line; price and prescription flag are snapshots taken when the item was added."""
    medicine_id: str
    medicine_name: str
    pharmacy_id: str
    pharmacy_name: str
    quantity: int
    unit_price: int
    requires_prescription: bool = False
    dosage: Optional[str] = None
    form: Optional[str] = None

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity


class DeliveryLocation(BaseModel):
    latitude: float
    longitude: float
    address: Optional[str] = None


class CourierAttempt(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    courier_id: str
    offered_at: datetime = Field(default_factory=utc_now)
    status: AttemptStatus = AttemptStatus.OFFERED
    responded_at: Optional[datetime] = None


class Order(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: str
    customer_id: str
    customer_name: Optional[str] = None
    pharmacy_id: str
    pharmacy_name: Optional[str] = None
    items: List[CartItem] = Field(default_factory=list)
    delivery: Optional[DeliveryLocation] = None
    prescription_photo: Optional[str] = None
    prescription_text: Optional[str] = None
    subtotal: int = 0
    fee: int = 0
    total: int = 0
    status: OrderStatus = OrderStatus.DRAFT
    courier_id: Optional[str] = None
    offered_courier_id: Optional[str] = None
    candidate_courier_ids: List[str] = Field(default_factory=list)
    courier_attempts: List[CourierAttempt] = Field(default_factory=list)
    rejection_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def requires_prescription(self) -> bool:
        return any(item.requires_prescription for item in self.items)

    @property
    def is_terminal(self) -> bool:
        return OrderStatus(self.status) in TERMINAL_STATUSES


class Appointment(BaseModel):
    id: Optional[str] = None
    clinic_id: str
    clinic_name: str
    patient_id: str
    patient_name: Optional[str] = None
    specialty: str
    date: str
    time: str
    status: str = "pending"
    source: str = "whatsapp_bot"
    created_at: datetime = Field(default_factory=utc_now)
