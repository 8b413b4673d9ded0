from datetime import date

import pytest

from app.schemas.conversation_schemas import ConversationState, Step
from app.services.appointment_service import (
    AppointmentService,
    normalize_specialty,
    parse_date,
    parse_time,
)
from conftest import CUSTOMER, NOON, SUPPORT_PHONE, sent_texts

TODAY = date(2026, 10, 19)


class TestParsing:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("demain", date(2026, 10, 20)),
            ("Aujourd'hui", TODAY),
            ("aujourd’hui", TODAY),
            ("25/12/2026", date(2026, 12, 25)),
            ("5/1/2027", date(2027, 1, 5)),
        ],
    )
    def test_valid_dates(self, text, expected):
        assert parse_date(text, TODAY) == expected

    @pytest.mark.parametrize("text", ["hier", "18/10/2026", "31/02/2027", "2026-12-25", ""])
    def test_invalid_or_past_dates(self, text):
        assert parse_date(text, TODAY) is None

    @pytest.mark.parametrize(
        "text, expected",
        [("14:30", "14:30"), ("9:05", "09:05"), ("14h30", "14:30"), ("9h", "09:00"), ("8 h 15", "08:15")],
    )
    def test_valid_times(self, text, expected):
        assert parse_time(text) == expected

    @pytest.mark.parametrize("text", ["25:00", "14:75", "midi", "1430"])
    def test_invalid_times(self, text):
        assert parse_time(text) is None

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("dermatologue", "dermatologie"),
            ("RDV cardiologue", "cardiologie"),
            ("Généraliste", "medecin generaliste"),
            ("pédiatrie", "pediatrie"),
        ],
    )
    def test_specialty_synonyms(self, text, expected):
        assert normalize_specialty(text) == expected


class TestBooking:
    """Specialty, clinic, date and time, then the appointment is stored."""

    @pytest.fixture
    def appointments(self, store, messenger, settings) -> AppointmentService:
        return AppointmentService(store, messenger, settings, clock=lambda: NOON)

    async def test_full_booking(self, appointments, store, messenger):
        state = ConversationState()
        appointments.start(state)
        assert state.step == Step.AWAITING_APPOINTMENT_SPECIALTY

        await appointments.choose_specialty(state, "dermatologue")
        assert state.step == Step.AWAITING_DOCTOR_SELECTION
        assert [clinic.id for clinic in state.appointment.clinics] == ["clinic_a"]

        appointments.choose_clinic(state, "1")
        assert state.step == Step.AWAITING_APPOINTMENT_DATE

        appointments.choose_date(state, "demain")
        assert state.appointment.date == "20/10/2026"
        assert state.step == Step.AWAITING_APPOINTMENT_TIME

        reply = await appointments.book(state, CUSTOMER, "14h30")

        stored = list(store.appointments.values())
        assert len(stored) == 1
        assert stored[0]["clinic_id"] == "clinic_a"
        assert stored[0]["time"] == "14:30"
        assert stored[0]["status"] == "pending"
        assert f"RDV-{stored[0]['id'][:8]}" in reply
        assert store.support_notifications[0]["type"] == "appointment"
        assert any("Sainte Marie" in text for text in sent_texts(messenger, SUPPORT_PHONE))
        assert state.step == Step.MENU

    async def test_unknown_specialty_lists_what_exists(self, appointments):
        state = ConversationState()
        reply = await appointments.choose_specialty(state, "ophtalmologie")

        assert state.step == Step.AWAITING_APPOINTMENT_SPECIALTY
        assert "Cardiologie" in reply

    async def test_invalid_choices_keep_the_step(self, appointments):
        state = ConversationState()
        await appointments.choose_specialty(state, "cardio")

        appointments.choose_clinic(state, "3")
        assert state.step == Step.AWAITING_DOCTOR_SELECTION

        appointments.choose_clinic(state, "1")
        appointments.choose_date(state, "18/10/2026")
        assert state.step == Step.AWAITING_APPOINTMENT_DATE

        appointments.choose_date(state, "19/10/2026")
        reply = await appointments.book(state, CUSTOMER, "plus tard")
        assert state.step == Step.AWAITING_APPOINTMENT_TIME
        assert "Heure invalide" in reply
