import pytest

from app.core.document_store import InMemoryDocumentStore
from app.dependencies.depends import get_classifier, get_store, get_vision_llm
from app.services.dspy_config import DSPyManager
from app.services.intent_classifier import KeywordIntentClassifier, LLMIntentClassifier


def test_memory_backend(settings):
    assert isinstance(get_store(settings), InMemoryDocumentStore)


def test_no_vision_model_without_key(settings):
    assert get_vision_llm(settings.model_copy(update={"OPENAI_API_KEY": None})) is None


def test_keyword_classifier_is_the_default(settings):
    assert isinstance(get_classifier(settings), KeywordIntentClassifier)


def test_model_classifier_needs_a_key(settings):
    configured = settings.model_copy(update={"INTENT_CLASSIFIER": "llm", "GROQ_API_KEY": None})
    assert isinstance(get_classifier(configured), KeywordIntentClassifier)


def test_model_classifier_with_key(settings):
    configured = settings.model_copy(update={"INTENT_CLASSIFIER": "llm", "GROQ_API_KEY": "gsk_test"})
    assert isinstance(get_classifier(configured), LLMIntentClassifier)


class TestDSPyManager:
    def test_unknown_provider(self, settings):
        with pytest.raises(ValueError):
            DSPyManager(settings).get_lm("mistral", "small")

    def test_missing_key(self, settings):
        manager = DSPyManager(settings.model_copy(update={"OPENAI_API_KEY": None}))
        with pytest.raises(ValueError):
            manager.get_lm("openai", "gpt-4o-mini")
        assert manager.try_get_lm("openai", "gpt-4o-mini") is None

    def test_groq_model_name(self, settings):
        lm = DSPyManager(settings.model_copy(update={"GROQ_API_KEY": "gsk_test"})).get_lm("groq", "llama-3.1-8b-instant")
        assert lm.model == "groq/llama-3.1-8b-instant"
