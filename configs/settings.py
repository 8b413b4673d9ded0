from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    """Application settings"""
    MONGODB_URL: str
    MONGODB_DB: str
    VERIFY_TOKEN: str
    WHATSAPP_TOKEN: str
    PHONE_NUMBER_ID: str
    GRAPH_API_VERSION: str = "v19.0"

    # Advice and intent models (Groq exposes an OpenAI compatible API)
    GROQ_API_KEY: Optional[str] = None
    GROQ_MODEL: str = "llama-3.1-8b-instant"
    GROQ_BASE_URL: str = "https://api.groq.com/openai/v1"
    OPENAI_API_KEY: Optional[str] = None
    VISION_MODEL: str = "gpt-4o-mini"
    INTENT_CLASSIFIER: str = "keyword"

    STORE_BACKEND: str = "mongo"
    SUPPORT_PHONE: str = "2250701406880"

    DAY_FEE: int = 400
    NIGHT_FEE: int = 600
    TIMEZONE: str = "Africa/Abidjan"
    ZONE_MIN_LAT: float = 4.6
    ZONE_MAX_LAT: float = 5.0
    ZONE_MIN_LNG: float = -6.8
    ZONE_MAX_LNG: float = -6.6

    COURIER_OFFER_TIMEOUT_SECONDS: float = 300
    COURIER_CANDIDATE_LIMIT: int = 5
    COURIER_RETRY_SECONDS: float = 120
    COURIER_ASSIGN_RETRIES: int = 5
    PRESCRIPTION_REVIEW_TIMEOUT_SECONDS: float = 1800
    CONVERSATION_IDLE_TTL_SECONDS: float = 3600
    CONVERSATION_SWEEP_INTERVAL_SECONDS: float = 600

    class Config:
        case_sensitive = True
        env_file = ".env"

@lru_cache()
def get_settings() -> Settings:
    return Settings()
