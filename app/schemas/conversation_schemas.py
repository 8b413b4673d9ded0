from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from app.schemas.order_schemas import CartItem, Clinic, DeliveryLocation, utc_now

HISTORY_LIMIT = 20


class Step(str, Enum):
    MENU = "MENU"
    AWAITING_MEDICINE_SEARCH = "AWAITING_MEDICINE_SEARCH"
    AWAITING_FILTERED_ORDER_SELECTION = "AWAITING_FILTERED_ORDER_SELECTION"
    AWAITING_PRESCRIPTION_PHOTO = "AWAITING_PRESCRIPTION_PHOTO"
    AWAITING_DELIVERY_LOCATION = "AWAITING_DELIVERY_LOCATION"
    AWAITING_APPOINTMENT_SPECIALTY = "AWAITING_APPOINTMENT_SPECIALTY"
    AWAITING_DOCTOR_SELECTION = "AWAITING_DOCTOR_SELECTION"
    AWAITING_APPOINTMENT_DATE = "AWAITING_APPOINTMENT_DATE"
    AWAITING_APPOINTMENT_TIME = "AWAITING_APPOINTMENT_TIME"


class SearchResult(BaseModel):
    """One numbered line of the last medicine search shown to the user."""
    index: int
    medicine_id: str
    name: str
    pharmacy_id: str
    pharmacy_name: str
    price: int
    stock: int
    requires_prescription: bool = False
    dosage: Optional[str] = None
    form: Optional[str] = None


class PendingItem(BaseModel):
    medicine_id: str
    quantity: int


class Profile(BaseModel):
    name: Optional[str] = None
    quarter: Optional[str] = None
    age: Optional[int] = None
    allergies: List[str] = Field(default_factory=list)
    chronic_conditions: List[str] = Field(default_factory=list)


class AppointmentDraft(BaseModel):
    specialty: Optional[str] = None
    clinics: List[Clinic] = Field(default_factory=list)
    clinic: Optional[Clinic] = None
    date: Optional[str] = None
    time: Optional[str] = None


class HistoryEntry(BaseModel):
    role: str
    message: str
    timestamp: datetime = Field(default_factory=utc_now)


class ConversationState(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    step: Step = Step.MENU
    cart: List[CartItem] = Field(default_factory=list)
    pharmacy_id: Optional[str] = None
    pharmacy_name: Optional[str] = None
    prescription_approved: bool = False
    awaiting_photo: bool = False
    active_order_id: Optional[str] = None
    pending_item: Optional[PendingItem] = None
    search_results: List[SearchResult] = Field(default_factory=list)
    profile: Profile = Field(default_factory=Profile)
    appointment: AppointmentDraft = Field(default_factory=AppointmentDraft)
    location: Optional[DeliveryLocation] = None
    history: List[HistoryEntry] = Field(default_factory=list)
    initialized: bool = False
    last_activity: datetime = Field(default_factory=utc_now)

    def remember(self, role: str, message: str) -> None:
        self.history.append(HistoryEntry(role=role, message=message))
        self.history = self.history[-HISTORY_LIMIT:]

    def clear_cart(self) -> None:
        self.cart = []
        self.pharmacy_id = None
        self.pharmacy_name = None

    def find_result(self, index: int) -> Optional[SearchResult]:
        return next((result for result in self.search_results if result.index == index), None)

    def reset_to_menu(self) -> None:
        self.step = Step.MENU
        self.awaiting_photo = False
        self.appointment = AppointmentDraft()
