from __future__ import annotations

from datetime import datetime, timezone

import pytest

from logshield.consent_manager import ConsentManager
from logshield.data_sanitizer import DataSanitizer
from logshield.pii_detector import PIIDetector
from logshield.security_engine import SecurityEngine
from schemas.entities import LogEntry, LogLevel
from schemas.policy import ContactInfo, PrivacyNotice, SanitizationConfig, SecurityPolicy


@pytest.fixture
def contact_text() -> str:
    """A log line with an email address and a US phone number."""
    return "Contact: john@example.com or call (555) 123-4567"


@pytest.fixture
def detector() -> PIIDetector:
    return PIIDetector()


@pytest.fixture
def sanitization_config() -> SanitizationConfig:
    """Default strategies with a fixed salt so hashes are reproducible."""
    return SanitizationConfig(hash_salt="test-salt")


@pytest.fixture
def sanitizer(sanitization_config: SanitizationConfig) -> DataSanitizer:
    return DataSanitizer(sanitization_config)


@pytest.fixture
def privacy_notice() -> PrivacyNotice:
    return PrivacyNotice(
        contact_info=ContactInfo(privacy_email="privacy@example.com", company_name="Acme"),
        jurisdiction="GDPR",
    )


@pytest.fixture
def consent_manager(privacy_notice: PrivacyNotice) -> ConsentManager:
    return ConsentManager(privacy_notice, consent_expiry_days=365)


@pytest.fixture
def policy() -> SecurityPolicy:
    return SecurityPolicy()


@pytest.fixture
def engine(
    policy: SecurityPolicy,
    consent_manager: ConsentManager,
    detector: PIIDetector,
    sanitization_config: SanitizationConfig,
) -> SecurityEngine:
    return SecurityEngine(
        policy,
        consent_manager,
        detector=detector,
        sanitizer=DataSanitizer(sanitization_config, detector=detector),
    )


@pytest.fixture
def make_entry():
    """Factory for log entries: ``make_entry("text", LogLevel.ERROR)``."""

    counter = {"n": 0}

    def _make(message: str, level: LogLevel = LogLevel.LOG) -> LogEntry:
        counter["n"] += 1
        return LogEntry(
            id=f"log_{counter['n']}",
            timestamp=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
            level=level,
            message=message,
        )

    return _make
