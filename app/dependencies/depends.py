import time
from typing import Annotated, Optional
from fastapi import Depends, Request
from motor.motor_asyncio import AsyncIOMotorClient
from langchain_openai import ChatOpenAI
from configs.settings import Settings
from configs.logger import logger
from app.core.advice_client import AdviceClient, build_advice_llm
from app.core.document_store import DocumentStore, InMemoryDocumentStore, MongoDocumentStore
from app.core.image_processor import ImageProcessor
from app.core.whatsapp_client import WhatsAppClient
from app.services.appointment_service import AppointmentService
from app.services.cart_service import CartService
from app.services.conversation_store import ConversationStore
from app.services.courier_service import CourierAssignmentService
from app.services.deadline_scheduler import DeadlineScheduler
from app.services.dispatcher import Dispatcher
from app.services.dspy_config import DSPyManager
from app.services.intent_classifier import KeywordIntentClassifier, LLMIntentClassifier
from app.services.prescription_service import PrescriptionValidationService


def get_db(settings: Settings):
    return AsyncIOMotorClient(settings.MONGODB_URL)[settings.MONGODB_DB]


def get_store(settings: Settings) -> DocumentStore:
    if settings.STORE_BACKEND == "memory":
        logger.warning("Using the in-memory document store, data is lost on restart")
        return InMemoryDocumentStore()
    return MongoDocumentStore(get_db(settings))


def get_vision_llm(settings: Settings) -> Optional[ChatOpenAI]:
    if not settings.OPENAI_API_KEY:
        return None
    return ChatOpenAI(
        temperature=0,
        model=settings.VISION_MODEL,
        api_key=settings.OPENAI_API_KEY
    )


def get_classifier(settings: Settings):
    if settings.INTENT_CLASSIFIER == "llm":
        lm = DSPyManager(settings).try_get_lm("groq", settings.GROQ_MODEL)
        if lm is not None:
            return LLMIntentClassifier(lm)
    return KeywordIntentClassifier()


class ServiceContainer:
    """Process-wide services, built once at startup."""

    def __init__(
        self,
        settings: Settings,
        store: Optional[DocumentStore] = None,
        messenger: Optional[WhatsAppClient] = None,
        advice: Optional[AdviceClient] = None,
        ocr: Optional[ImageProcessor] = None,
        classifier=None,
    ):
        self.settings = settings
        self.started_at = time.monotonic()
        self.store = store or get_store(settings)
        self.messenger = messenger or WhatsAppClient(settings)
        self.advice = advice or AdviceClient(build_advice_llm(settings), settings.SUPPORT_PHONE)
        self.ocr = ocr or ImageProcessor(get_vision_llm(settings), self.messenger)
        self.conversations = ConversationStore()
        self.scheduler = DeadlineScheduler()
        self.cart = CartService(self.store, settings)
        self.couriers = CourierAssignmentService(
            self.store, self.messenger, self.scheduler, self.conversations, self.cart, settings
        )
        self.prescriptions = PrescriptionValidationService(
            self.store, self.messenger, self.ocr, self.scheduler,
            self.conversations, self.cart, self.couriers, settings
        )
        self.appointments = AppointmentService(self.store, self.messenger, settings)
        self.dispatcher = Dispatcher(
            conversations=self.conversations,
            store=self.store,
            messenger=self.messenger,
            cart=self.cart,
            prescriptions=self.prescriptions,
            couriers=self.couriers,
            appointments=self.appointments,
            advice=self.advice,
            ocr=self.ocr,
            settings=settings,
            classifier=classifier or get_classifier(settings),
        )

    def uptime(self) -> float:
        return time.monotonic() - self.started_at


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_settings_dep(container: Annotated[ServiceContainer, Depends(get_container)]) -> Settings:
    return container.settings


def get_dispatcher(container: Annotated[ServiceContainer, Depends(get_container)]) -> Dispatcher:
    return container.dispatcher
