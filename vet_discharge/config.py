from typing import Dict, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Security: Read from .env, never hardcode keys here
    OPENAI_API_KEY: Optional[str] = None

    # Model Configuration
    OPENAI_MODEL: str = "gpt-4o"

    # Generation Parameters
    LLM_TEMPERATURE: float = 0.0
    MAX_RETRIES: int = 2

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./vet_discharge.db"

    # Delayed job dispatch (QStash)
    QSTASH_URL: str = "https://qstash.upstash.io"
    QSTASH_TOKEN: Optional[str] = None
    EMAIL_EXECUTION_URL: str = "http://localhost:8000/webhooks/execute-discharge-email"
    CALL_EXECUTION_URL: str = "http://localhost:8000/webhooks/execute-discharge-call"

    # Clinic defaults used when scheduling follow-up calls and emails
    CLINIC_NAME: str = "Your Clinic"
    CLINIC_PHONE: str = ""
    CLINIC_EMAIL: str = ""
    CLINIC_PRIMARY_COLOR: str = "#0f766e"
    AGENT_NAME: str = "Sarah"

    # Delay applied when a request does not say when to deliver
    DEFAULT_EMAIL_DELAY_MINUTES: int = 5
    DEFAULT_CALL_DELAY_MINUTES: int = 2
    MIN_SCHEDULE_BUFFER_SECONDS: int = 10

    # Entity extraction needs at least this much clinical text
    MIN_EXTRACTION_TEXT_LENGTH: int = 50

    # Bearer token -> user id
    API_TOKENS: Dict[str, str] = {}

    LOG_LEVEL: str = "INFO"

    # Loads from a .env file in the root directory
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

# Singleton instance
settings = Settings()
