import dspy
from typing import Optional
from configs.settings import Settings
from configs.logger import logger


class DSPyManager:
    def __init__(self, settings: Settings):
        self.lm_prefixes = {
            "groq": "groq",
            "openai": "openai",
        }
        self.api_keys = {
            "groq": settings.GROQ_API_KEY,
            "openai": settings.OPENAI_API_KEY,
        }

    def get_lm(self, provider: str, model: str, temperature: float = 0.0) -> dspy.LM:
        """
        Get a configured LM instance based on provider and model
        """
        if provider not in self.lm_prefixes:
            raise ValueError(f"Unsupported provider: {provider}")

        api_key = self.api_keys[provider]
        if not api_key:
            raise ValueError(f"API key not found for provider: {provider}")

        return dspy.LM(f"{self.lm_prefixes[provider]}/{model}", api_key=api_key, temperature=temperature)

    def try_get_lm(self, provider: str, model: str, temperature: float = 0.0) -> Optional[dspy.LM]:
        try:
            lm = self.get_lm(provider, model, temperature)
        except ValueError as e:
            logger.warning(f"Language model unavailable: {str(e)}")
            return None
        logger.info(f"Configured LM: {provider}/{model}")
        return lm
