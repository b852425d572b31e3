from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # App
    APP_NAME: str = "MegaLedger"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    TIMEZONE: str = "Africa/Maputo"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    # Persistence
    STORAGE_BACKEND: str = "file"  # "file" or "supabase"
    DATA_FILE: str = "grupos_data.json"
    PENDING_FILE: str = "pending.json"

    # Supabase
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""
    SUPABASE_SERVICE_KEY: str = ""
    STATE_TABLE: str = "bot_state"

    # WhatsApp gateway
    GATEWAY_URL: str = "http://localhost:3001"
    GATEWAY_TOKEN: str = ""
    GATEWAY_TIMEOUT: float = 15.0

    # OCR
    TESSERACT_CMD: str = "/usr/bin/tesseract"

    # Reconciliation
    REFERENCE_PREFIX: str = "PP"
    PENDING_TTL_SECONDS: int = 1800
    PENDING_SWEEP_INTERVAL: int = 600
    SIMILARITY_THRESHOLD: float = 0.8
    MAX_PURCHASE_MB: int = 50000
    CONFIRMATION_MARKERS: List[str] = ["Transação Concluída Com Sucesso"]
    IGNORED_SENDER_MARKERS: List[str] = ["AutoBot"]
    COUNTRY_CODE: str = "258"

    # Ledger
    INACTIVE_DAYS: int = 15
    WELCOME_BACK_DAYS: int = 2
    RANKING_LIMIT: int = 20
    INACTIVE_LIST_LIMIT: int = 15
    ZERO_PURCHASE_LIST_LIMIT: int = 20

    # Spam
    SPAM_THRESHOLD: int = 5
    SPAM_WINDOW_SECONDS: int = 60
    SPAM_MIN_MESSAGE_LENGTH: int = 10
    SPAM_SWEEP_INTERVAL: int = 300
    LOCKDOWN_ANNOUNCE_DELAY: float = 2.0

    # Commands
    COMMAND_PREFIX: str = "."
    CLEANUP_CONFIRM_TTL: int = 120
    MEMBER_REMOVAL_DELAY: float = 1.0
    NUMBER_REMOVAL_DELAY: float = 1.5

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
