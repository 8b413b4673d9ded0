import asyncio
import re
import unicodedata
from enum import Enum
from typing import Optional
import dspy
from pydantic import BaseModel
from configs.logger import logger


class Intent(str, Enum):
    SEARCH_MEDICINE = "SEARCH_MEDICINE"
    ON_DUTY_PHARMACY = "ON_DUTY_PHARMACY"
    APPOINTMENT = "APPOINTMENT"
    LIST_CLINICS = "LIST_CLINICS"
    ORDER_ITEM = "ORDER_ITEM"
    VIEW_CART = "VIEW_CART"
    CLEAR_CART = "CLEAR_CART"
    CHECKOUT = "CHECKOUT"
    CONTINUE = "CONTINUE"
    CANCEL = "CANCEL"
    GREETING = "GREETING"
    THANKS = "THANKS"
    SUPPORT = "SUPPORT"
    ADVICE = "ADVICE"


class IntentResult(BaseModel):
    intent: Intent
    medicine_name: Optional[str] = None
    index: Optional[int] = None
    quantity: Optional[int] = None
    specialty: Optional[str] = None


ORDER_PATTERN = re.compile(r"^(?:commander|ajouter)\s+(\d+)(?:\s+(\d+))?", re.IGNORECASE)
APPOINTMENT_PATTERN = re.compile(r"\b(rendez-vous|rendez vous|rdv|consultation)\b\s*(.*)$")

CART_WORDS = {
    "panier": Intent.VIEW_CART,
    "voir panier": Intent.VIEW_CART,
    "mon panier": Intent.VIEW_CART,
    "vider": Intent.CLEAR_CART,
    "vider panier": Intent.CLEAR_CART,
    "vider le panier": Intent.CLEAR_CART,
    "terminer": Intent.CHECKOUT,
    "fini": Intent.CHECKOUT,
    "finaliser": Intent.CHECKOUT,
    "valider": Intent.CHECKOUT,
    "continuer": Intent.CONTINUE,
    "encore": Intent.CONTINUE,
    "annuler": Intent.CANCEL,
    "menu": Intent.CANCEL,
}
GREETINGS = ("salut", "bonjour", "bonsoir", "coucou", "hello")
THANKS = ("merci", "parfait", "super")
SUPPORT_WORDS = ("support", "aide", "help", "probleme", "assistance")
KNOWN_MEDICINES = (
    "paracetamol", "doliprane", "ibuprofene", "advil", "amoxicilline",
    "vitamine c", "aspirine", "ventoline", "insuline", "sirop",
)
NOT_MEDICINES = {"oui", "non", "bien", "cool", "daccord", "bonne", "nuit"}
SEARCH_PREFIXES = ("je cherche", "je veux", "avez-vous", "avez vous", "acheter", "medicament")


def fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text or "")
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower().strip()


class KeywordIntentClassifier:
    """Deterministic French keyword rules; everything unmatched is advice."""

    def classify_text(self, text: str) -> IntentResult:
        raw = (text or "").strip()
        cleaned = fold(raw)

        match = ORDER_PATTERN.match(cleaned)
        if match:
            return IntentResult(
                intent=Intent.ORDER_ITEM,
                index=int(match.group(1)),
                quantity=int(match.group(2)) if match.group(2) else 1,
            )
        if cleaned in CART_WORDS:
            return IntentResult(intent=CART_WORDS[cleaned])
        if "pharmacie" in cleaned and "garde" in cleaned:
            return IntentResult(intent=Intent.ON_DUTY_PHARMACY)
        match = APPOINTMENT_PATTERN.search(cleaned)
        if match:
            return IntentResult(intent=Intent.APPOINTMENT, specialty=match.group(2).strip() or None)
        if "clinique" in cleaned:
            return IntentResult(intent=Intent.LIST_CLINICS)

        first_word = cleaned.split(" ", 1)[0].strip("!.,?")
        if first_word in GREETINGS and len(cleaned.split()) <= 3:
            return IntentResult(intent=Intent.GREETING)
        if first_word in THANKS:
            return IntentResult(intent=Intent.THANKS)
        if any(word in cleaned for word in SUPPORT_WORDS):
            return IntentResult(intent=Intent.SUPPORT)

        for name in KNOWN_MEDICINES:
            if name in cleaned:
                return IntentResult(intent=Intent.SEARCH_MEDICINE, medicine_name=name)
        for prefix in SEARCH_PREFIXES:
            if cleaned.startswith(prefix):
                remainder = cleaned[len(prefix):].strip(" :,?")
                if remainder:
                    return IntentResult(intent=Intent.SEARCH_MEDICINE, medicine_name=remainder)
        # A lone word is most often a medicine name typed on its own.
        if " " not in cleaned and cleaned.isalpha() and len(cleaned) >= 3 and cleaned not in NOT_MEDICINES:
            return IntentResult(intent=Intent.SEARCH_MEDICINE, medicine_name=raw)
        return IntentResult(intent=Intent.ADVICE)

    async def classify(self, text: str) -> IntentResult:
        return self.classify_text(text)


class IntentSignature(dspy.Signature):
    """Classify a WhatsApp message sent to a pharmacy delivery assistant in San Pedro."""
    message: str = dspy.InputField(desc="User's message, usually in French")
    intent: str = dspy.OutputField(
        desc="One of SEARCH_MEDICINE, ON_DUTY_PHARMACY, APPOINTMENT, LIST_CLINICS, GREETING, THANKS, SUPPORT, ADVICE"
    )
    medicine_name: Optional[str] = dspy.OutputField(desc="Medicine name when intent is SEARCH_MEDICINE")
    specialty: Optional[str] = dspy.OutputField(desc="Medical specialty when intent is APPOINTMENT")


class LLMIntentClassifier:
    """Model-backed classification for free text the keyword rules leave as advice."""

    def __init__(self, lm: dspy.LM, fallback: Optional[KeywordIntentClassifier] = None):
        self.lm = lm
        self.fallback = fallback or KeywordIntentClassifier()
        self.predictor = dspy.Predict(IntentSignature)

    def _predict(self, text: str):
        with dspy.context(lm=self.lm):
            return self.predictor(message=text)

    async def classify(self, text: str) -> IntentResult:
        result = self.fallback.classify_text(text)
        if result.intent != Intent.ADVICE:
            return result
        try:
            prediction = await asyncio.to_thread(self._predict, text)
            intent = Intent((prediction.intent or "").strip().upper())
        except Exception as e:
            logger.error(f"Intent model failed, using keyword rules: {str(e)}")
            return result

        if intent == Intent.SEARCH_MEDICINE and not prediction.medicine_name:
            return result
        if intent not in (
            Intent.SEARCH_MEDICINE, Intent.ON_DUTY_PHARMACY, Intent.APPOINTMENT,
            Intent.LIST_CLINICS, Intent.GREETING, Intent.THANKS, Intent.SUPPORT, Intent.ADVICE,
        ):
            return result
        return IntentResult(
            intent=intent,
            medicine_name=prediction.medicine_name if intent == Intent.SEARCH_MEDICINE else None,
            specialty=prediction.specialty if intent == Intent.APPOINTMENT else None,
        )
