import logging

from config import Settings, get_settings
from logshield.consent_manager import ConsentManager
from logshield.data_sanitizer import DataSanitizer
from logshield.hashing import generate_salt
from logshield.pii_detector import PIIDetector
from logshield.security_engine import SecurityEngine
from schemas.policy import PrivacyNotice, SanitizationConfig, SecurityPolicy

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_security_engine(settings: Settings | None = None) -> SecurityEngine:
    """Build a fully wired engine from settings.

    Every call returns a fresh engine with its own detector, sanitizer and
    consent manager; nothing is shared between engines.
    """
    settings = settings or get_settings()

    if not settings.hash_salt:
        logger.warning(
            "HASH_SALT is not set; hashed values will not correlate across restarts."
        )

    detector = PIIDetector(context_window=settings.context_window)
    sanitizer = DataSanitizer(
        SanitizationConfig(
            mask_character=settings.mask_character,
            partial_preserve_length=settings.partial_preserve_length,
            hash_salt=settings.hash_salt or generate_salt(),
        ),
        detector=detector,
    )
    consent_manager = ConsentManager(
        PrivacyNotice.from_settings(settings),
        consent_expiry_days=settings.consent_expiry_days,
        audit_log_max_entries=settings.audit_log_max_entries,
    )
    return SecurityEngine(
        SecurityPolicy.from_settings(settings),
        consent_manager,
        detector=detector,
        sanitizer=sanitizer,
        scan_history_max_entries=settings.scan_history_max_entries,
        batch_size=settings.scan_batch_size,
    )
