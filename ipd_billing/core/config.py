from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Project
    PROJECT_NAME: str = "IPD Billing Ledger"
    PROJECT_VERSION: str = "0.1.0"
    DESCRIPTION: str = "Patient billing ledger and discharge workflow"

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "ipd_billing"
    LEDGER_COLLECTION: str = "ledger_records"
    BEDS_COLLECTION: str = "beds"

    # Optimistic merge
    MERGE_MAX_RETRIES: int = 3

    # Billing
    PAYMENT_METHODS: List[str] = ["cash", "online", "card"]
    CURRENCY: str = "INR"
    MINOR_UNITS_PER_MAJOR: int = 100

    # Logging
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env"
    )

settings = Settings()
