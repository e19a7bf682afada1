from pydantic import Field
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    log_level: str = "INFO"

    # PII detection
    pii_confidence_threshold: float = 0.7
    pii_sensitivity: float = 0.7
    context_window: int = 20       # characters inspected on each side of a match

    # Consent
    require_explicit_consent: bool = False
    consent_expiry_days: int = 365
    jurisdiction: str = "GDPR"     # "GDPR", "CCPA", "BOTH"
    privacy_email: str = "privacy@example.com"
    company_name: str = "LogShield"

    # Sanitisation
    auto_sanitize: bool = True
    mask_character: str = "*"
    partial_preserve_length: int = 4
    hash_salt: str = ""            # empty -> random salt per sanitizer

    # Retention / bounded in-memory state
    data_retention_hours: int = 24
    max_retention_hours: int = 8760
    audit_log_max_entries: int = 10_000
    scan_history_max_entries: int = 1_000

    # Batch scanning
    scan_batch_size: int = Field(10, gt=0)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
