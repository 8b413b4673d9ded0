"""
Shared pytest fixtures.

Persistence runs on the in-memory document store; the WhatsApp client, the
advice model and the image recognition are AsyncMocks so tests can assert on
what was sent.
"""

from datetime import datetime, UTC
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from app.core.advice_client import AdviceClient
from app.core.document_store import InMemoryDocumentStore
from app.core.image_processor import ImageProcessor
from app.core.whatsapp_client import WhatsAppClient
from app.dependencies.depends import ServiceContainer
from app.schemas.order_schemas import Clinic, Courier, Medicine, Pharmacy
from app.services.intent_classifier import KeywordIntentClassifier
from configs.settings import Settings

NOON = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)

CUSTOMER = "2250700000100"
PHARMACY_COSMOS_PHONE = "2250700000001"
PHARMACY_PORT_PHONE = "2250700000002"
SUPPORT_PHONE = "2250701406880"
COURIER_PHONES = ["2250700000011", "2250700000012", "2250700000013"]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        MONGODB_URL="mongodb://localhost:27017",
        MONGODB_DB="pillbox_test",
        VERIFY_TOKEN="verify-me",
        WHATSAPP_TOKEN="token",
        PHONE_NUMBER_ID="123456",
        STORE_BACKEND="memory",
        SUPPORT_PHONE=SUPPORT_PHONE,
    )


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Two pharmacies, paracetamol at both, a prescription antibiotic, three couriers, two clinics."""
    store = InMemoryDocumentStore()
    store.add_pharmacy(Pharmacy(
        id="ph_cosmos", name="Pharmacie Cosmos", address="Centre-ville",
        phone=PHARMACY_COSMOS_PHONE, on_duty=True, is_open=True,
    ))
    store.add_pharmacy(Pharmacy(
        id="ph_port", name="Pharmacie du Port", address="Zone portuaire",
        phone=PHARMACY_PORT_PHONE, on_duty=False, is_open=True,
    ))
    store.add_medicine(Medicine(
        id="med_para_500", name="Paracétamol 500mg", pharmacy_id="ph_cosmos",
        price=500, stock=20, dosage="500mg", form="comprimé",
    ))
    store.add_medicine(Medicine(
        id="med_para_1000", name="Paracétamol 1000mg", pharmacy_id="ph_port",
        price=800, stock=5, dosage="1000mg", form="comprimé",
    ))
    store.add_medicine(Medicine(
        id="med_amox", name="Amoxicilline 500mg", pharmacy_id="ph_cosmos",
        price=2500, stock=10, requires_prescription=True,
    ))
    store.add_medicine(Medicine(
        id="med_empty", name="Vitamine C", pharmacy_id="ph_cosmos", price=1000, stock=0,
    ))
    for number, phone in enumerate(COURIER_PHONES, start=1):
        store.add_courier(Courier(
            id=f"courier_{number}", name=f"Livreur {number}", phone=phone, verified=True, available=True,
        ))
    store.add_clinic(Clinic(
        id="clinic_a", name="Clinique Sainte Marie", address="Bardot",
        specialties=["Dermatologie", "Médecin généraliste"], verified=True,
    ))
    store.add_clinic(Clinic(
        id="clinic_b", name="Polyclinique du Port", specialties=["Cardiologie"], verified=True,
    ))
    return store


@pytest.fixture
def messenger() -> AsyncMock:
    return AsyncMock(spec=WhatsAppClient)


@pytest.fixture
def advice() -> AsyncMock:
    mock = AsyncMock(spec=AdviceClient)
    mock.advise.return_value = "Buvez de l'eau et reposez-vous."
    return mock


@pytest.fixture
def ocr() -> AsyncMock:
    mock = AsyncMock(spec=ImageProcessor)
    mock.process_image.return_value = None
    return mock


@pytest_asyncio.fixture
async def container(settings, store, messenger, advice, ocr):
    container = ServiceContainer(
        settings,
        store=store,
        messenger=messenger,
        advice=advice,
        ocr=ocr,
        classifier=KeywordIntentClassifier(),
    )
    container.cart.clock = lambda: NOON
    yield container
    await container.scheduler.shutdown()


def sent_texts(messenger: AsyncMock, to: str) -> list:
    return [call.args[1] for call in messenger.send_text.await_args_list if call.args[0] == to]


def sent_buttons(messenger: AsyncMock, to: str) -> list:
    """Button ids offered to a recipient, one list per message."""
    return [
        [button.id for button in call.args[2]]
        for call in messenger.send_buttons.await_args_list
        if call.args[0] == to
    ]
