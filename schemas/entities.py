from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class PIIType(str, Enum):
    """Kinds of personally identifiable information the engine knows about."""
    CREDIT_CARD = "creditCard"
    SSN = "ssn"
    EMAIL = "email"
    IP_ADDRESS = "ipAddress"
    JWT = "jwt"
    API_KEY = "apiKey"
    PASSWORD = "password"
    PHONE = "phone"
    CUSTOM = "custom"


class LogLevel(str, Enum):
    LOG = "log"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    DEBUG = "debug"


class SensitivityLevel(str, Enum):
    """Ordered classification: public < internal < confidential < restricted."""
    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"
    RESTRICTED = "restricted"

    @property
    def rank(self) -> int:
        return _SENSITIVITY_ORDER.index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, SensitivityLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, SensitivityLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, SensitivityLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, SensitivityLevel):
            return NotImplemented
        return self.rank >= other.rank


_SENSITIVITY_ORDER = [
    SensitivityLevel.PUBLIC,
    SensitivityLevel.INTERNAL,
    SensitivityLevel.CONFIDENTIAL,
    SensitivityLevel.RESTRICTED,
]


class SanitizationStrategy(str, Enum):
    MASK = "mask"
    HASH = "hash"
    REMOVE = "remove"
    PARTIAL = "partial"


class ProcessingPurpose(str, Enum):
    """Named reasons for processing, each independently consentable."""
    LOGGING = "logging"
    ANALYTICS = "analytics"
    DEBUGGING = "debugging"
    PERFORMANCE_MONITORING = "performance_monitoring"
    ERROR_REPORTING = "error_reporting"
    EXPORT_FUNCTIONALITY = "export_functionality"


class ConsentStatus(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    PENDING = "pending"
    WITHDRAWN = "withdrawn"


@dataclass(frozen=True)
class DataClassification:
    """Sensitivity verdict attached to a scanned log entry."""
    sensitivity_level: SensitivityLevel
    detected_types: tuple[PIIType, ...] = ()
    confidence: float = 0.0
    scan_timestamp: datetime | None = None
    sanitized: bool = False


@dataclass(frozen=True)
class LogEntry:
    """A captured console message.

    The engine reads ``message`` and ``level`` only.  Scan results carry a
    copy of the entry with ``classification`` / ``sanitized_message`` filled
    in; the caller's instance is never modified.
    """
    id: str
    timestamp: datetime
    level: LogLevel
    message: str
    stack_trace: str | None = None
    source: dict[str, Any] | None = None  # {"file", "line", "column"}
    sanitized_message: str | None = None
    classification: DataClassification | None = None
