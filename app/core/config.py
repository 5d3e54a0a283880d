from typing import List, Optional, Literal
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    # ============================================================
    # APPLICATION INFO
    # ============================================================
    PROJECT_NAME: str = "Skyward Booking Assistant"
    API_V1_STR: str = "/api/v1"
    VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    # ============================================================
    # OPENAI CONFIGURATION (LANGUAGE ORACLE)
    # ============================================================
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o"
    OPENAI_MAX_TOKENS: int = 500
    OPENAI_TIMEOUT: float = 20.0

    # ============================================================
    # FLIGHT SEARCH INDEX
    # ============================================================
    # When unset the bundled local dataset is the primary index as well
    SEARCH_INDEX_URL: Optional[str] = None
    SEARCH_INDEX_API_KEY: str = ""
    SEARCH_INDEX_TIMEOUT: float = 15.0

    # ============================================================
    # CONVERSATION SESSIONS
    # ============================================================
    SESSION_TTL_MINUTES: int = 60
    SESSION_CLEANUP_INTERVAL_MINUTES: int = 15
    MAX_CONVERSATION_HISTORY: int = 20
    CONVERSATION_CONTEXT_WINDOW: int = 5
    INTENT_CONTEXT_WINDOW: int = 3
    SESSION_STORE_BACKEND: Literal["memory", "redis"] = "memory"
    SESSION_KEY_PREFIX: str = "session"

    # ============================================================
    # CIRCUIT BREAKERS & RETRIES
    # ============================================================
    SEARCH_BREAKER_FAILURE_THRESHOLD: int = 3
    SEARCH_BREAKER_RECOVERY_SECONDS: float = 30.0
    LLM_BREAKER_FAILURE_THRESHOLD: int = 3
    LLM_BREAKER_RECOVERY_SECONDS: float = 60.0
    BOOKING_BREAKER_FAILURE_THRESHOLD: int = 5
    BOOKING_BREAKER_RECOVERY_SECONDS: float = 30.0
    PAYMENT_BREAKER_FAILURE_THRESHOLD: int = 5
    PAYMENT_BREAKER_RECOVERY_SECONDS: float = 30.0
    EXTERNAL_CALL_TIMEOUT_SECONDS: float = 25.0

    RETRY_MAX_RETRIES: int = 3
    RETRY_BASE_DELAY: float = 1.0
    RETRY_MAX_DELAY: float = 10.0
    RETRY_JITTER: float = 1.0

    # ============================================================
    # BOOKINGS & PAYMENTS
    # ============================================================
    BOOKING_STORE_BACKEND: Literal["memory", "redis"] = "memory"
    REDIS_URI: str = "redis://localhost:6379/0"
    REDIS_URL: Optional[str] = None  # alias
    BOOKING_KEY_PREFIX: str = "booking"
    DEFAULT_CURRENCY: str = "USD"

    @property
    def get_redis_url(self) -> str:
        return self.REDIS_URL or self.REDIS_URI

    # ============================================================
    # BACKGROUND JOBS
    # ============================================================
    ENABLE_SCHEDULER: bool = True
    FLIGHT_MONITORING_INTERVAL_SECONDS: int = 900
    REMINDER_SCHEDULING_INTERVAL_SECONDS: int = 3600
    REMINDER_PROCESSING_INTERVAL_SECONDS: int = 300

    # ============================================================
    # CORS
    # ============================================================
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
