import re
import unicodedata
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo
from app.core.document_store import DocumentStore
from app.core.whatsapp_client import MessagingError, WhatsAppClient
from app.prompts import messages
from app.schemas.conversation_schemas import AppointmentDraft, ConversationState, Step
from app.schemas.order_schemas import Appointment, Clinic, utc_now
from configs.settings import Settings
from configs.logger import logger

MAX_CLINIC_CHOICES = 5

SPECIALTY_SYNONYMS = {
    "dermatologue": "dermatologie",
    "dermatologiste": "dermatologie",
    "derma": "dermatologie",
    "scanner": "radiologie",
    "irm": "radiologie",
    "radio": "radiologie",
    "cardiologue": "cardiologie",
    "cardio": "cardiologie",
    "gynecologue": "gynecologie",
    "gyneco": "gynecologie",
    "pediatre": "pediatrie",
    "dentiste": "dentaire",
    "generaliste": "medecin generaliste",
    "medecin general": "medecin generaliste",
}

DATE_PATTERN = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
TIME_PATTERN = re.compile(r"^(\d{1,2})\s*(?::|h)\s*(\d{2})?$")


def fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text or "")
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower().strip()


def normalize_specialty(text: str) -> str:
    cleaned = fold(text)
    for prefix in ("rendez-vous", "rdv", "consultation"):
        if cleaned.startswith(prefix):
            cleaned = cleaned[len(prefix):].strip()
    return SPECIALTY_SYNONYMS.get(cleaned, cleaned)


def specialty_matches(wanted: str, offered: str) -> bool:
    offered = fold(offered)
    return bool(wanted) and (wanted in offered or offered in wanted)


def parse_date(text: str, today: date) -> Optional[date]:
    """Accepts 'demain', "aujourd'hui" and JJ/MM/AAAA; past dates are refused."""
    cleaned = fold(text)
    if cleaned == "demain":
        return today + timedelta(days=1)
    if cleaned in ("aujourd'hui", "aujourd’hui", "aujourdhui", "aujourd hui"):
        return today
    match = DATE_PATTERN.match(cleaned)
    if not match:
        return None
    day, month, year = (int(part) for part in match.groups())
    try:
        parsed = date(year, month, day)
    except ValueError:
        return None
    return parsed if parsed >= today else None


def parse_time(text: str) -> Optional[str]:
    """Accepts HH:MM and 14h30 style times, returned as HH:MM."""
    match = TIME_PATTERN.match(fold(text))
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2) or 0)
    if hours > 23 or minutes > 59:
        return None
    return f"{hours:02d}:{minutes:02d}"


class AppointmentService:
    """Clinic appointment booking: specialty, clinic, date, time."""

    def __init__(
        self,
        store: DocumentStore,
        messenger: WhatsAppClient,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.messenger = messenger
        self.settings = settings
        self.clock = clock
        self.timezone = ZoneInfo(settings.TIMEZONE)

    def start(self, state: ConversationState) -> str:
        state.appointment = AppointmentDraft()
        state.step = Step.AWAITING_APPOINTMENT_SPECIALTY
        return messages.appointment_ask_specialty()

    async def choose_specialty(self, state: ConversationState, text: str) -> str:
        specialty = normalize_specialty(text)
        if not specialty:
            return self.start(state)
        clinics = await self.store.list_verified_clinics()
        matching = [
            clinic for clinic in clinics
            if any(specialty_matches(specialty, offered) for offered in clinic.specialties)
        ][:MAX_CLINIC_CHOICES]
        if not matching:
            available = sorted({offered for clinic in clinics for offered in clinic.specialties})
            state.step = Step.AWAITING_APPOINTMENT_SPECIALTY
            return messages.appointment_no_clinic(text, available, self.settings.SUPPORT_PHONE)

        state.appointment = AppointmentDraft(specialty=specialty, clinics=matching)
        state.step = Step.AWAITING_DOCTOR_SELECTION
        return messages.appointment_clinics(specialty, matching)

    def choose_clinic(self, state: ConversationState, text: str) -> str:
        clinics: List[Clinic] = state.appointment.clinics
        cleaned = text.strip()
        if not cleaned.isdigit() or not 1 <= int(cleaned) <= len(clinics):
            return messages.appointment_invalid_choice(len(clinics))
        clinic = clinics[int(cleaned) - 1]
        state.appointment.clinic = clinic
        state.step = Step.AWAITING_APPOINTMENT_DATE
        return messages.appointment_ask_date(clinic)

    def choose_date(self, state: ConversationState, text: str) -> str:
        today = self.clock().astimezone(self.timezone).date()
        parsed = parse_date(text, today)
        if parsed is None:
            return messages.appointment_invalid_date()
        state.appointment.date = parsed.strftime("%d/%m/%Y")
        state.step = Step.AWAITING_APPOINTMENT_TIME
        return messages.appointment_ask_time(state.appointment.date)

    async def book(self, state: ConversationState, patient_id: str, text: str) -> str:
        time = parse_time(text)
        if time is None:
            return messages.appointment_invalid_time()
        draft = state.appointment
        appointment = Appointment(
            clinic_id=draft.clinic.id,
            clinic_name=draft.clinic.name,
            patient_id=patient_id,
            patient_name=state.profile.name,
            specialty=draft.specialty,
            date=draft.date,
            time=time,
        )
        appointment.id = await self.store.insert_appointment(appointment)
        logger.info(f"Appointment {appointment.id} booked at clinic {appointment.clinic_id}")

        notice = messages.support_new_appointment(appointment)
        await self.store.insert_support_notification(
            {"type": "appointment", "appointment_id": appointment.id, "message": notice}
        )
        try:
            await self.messenger.send_text(self.settings.SUPPORT_PHONE, notice)
        except MessagingError as e:
            logger.error(f"Could not reach support about appointment {appointment.id}: {str(e)}")

        clinic = draft.clinic
        state.reset_to_menu()
        return messages.appointment_confirmed(appointment, clinic, self.settings.SUPPORT_PHONE)
