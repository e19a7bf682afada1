from __future__ import annotations

import copy
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Iterable

from logshield.hashing import hash_user_id
from schemas.entities import ConsentStatus, ProcessingPurpose
from schemas.policy import PrivacyNotice

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_LOG_MAX_ENTRIES = 10_000
EXPIRING_SOON_DAYS = 30
DELETED_USER = "[DELETED]"
UNKNOWN = "unknown"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class AuditEventType(str, Enum):
    CONSENT_GIVEN = "consent_given"
    CONSENT_WITHDRAWN = "consent_withdrawn"
    RETENTION_UPDATED = "retention_updated"
    DATA_SUBJECT_REQUEST = "data_subject_request"
    DATA_EXPORTED = "data_exported"
    DATA_DELETED = "data_deleted"


class RequestType(str, Enum):
    ACCESS = "access"
    RECTIFICATION = "rectification"
    ERASURE = "erasure"
    PORTABILITY = "portability"
    RESTRICTION = "restriction"
    OBJECTION = "objection"


class RequestStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ComplianceFlags:
    gdpr: bool
    ccpa: bool
    hipaa: bool = False


@dataclass(frozen=True)
class AuditLogEntry:
    id: str
    timestamp: datetime
    event_type: AuditEventType
    user_id: str
    details: dict[str, Any]
    ip_address: str
    user_agent: str
    compliance: ComplianceFlags


@dataclass
class ConsentPreferences:
    id: str
    user_id: str
    purposes: dict[ProcessingPurpose, ConsentStatus]
    pii_processing: ConsentStatus
    data_retention_hours: int
    consent_timestamp: datetime
    last_updated: datetime
    ip_address: str
    user_agent: str


@dataclass(frozen=True)
class ConsentChangeEvent:
    user_id: str
    purpose: ProcessingPurpose
    old_status: ConsentStatus
    new_status: ConsentStatus
    timestamp: datetime


@dataclass(frozen=True)
class ConsentVerificationResult:
    is_valid: bool
    has_consent: bool
    consent_status: ConsentStatus
    last_updated: datetime
    requires_renewal: bool
    expiry_date: datetime | None = None


@dataclass
class DataSubjectRequest:
    id: str
    user_id: str
    request_type: RequestType
    description: str
    status: RequestStatus = RequestStatus.PENDING
    request_date: datetime = field(default_factory=_now)
    completion_date: datetime | None = None


@dataclass
class PurposeConsentCounts:
    granted: int = 0
    denied: int = 0
    withdrawn: int = 0
    pending: int = 0


@dataclass
class ConsentStatistics:
    total_users: int
    consents_by_purpose: dict[ProcessingPurpose, PurposeConsentCounts]
    consents_by_status: dict[ConsentStatus, int]
    average_retention_hours: float
    expiring_soon: int


@dataclass
class UserConsentExport:
    preferences: ConsentPreferences | None
    audit_trail: list[AuditLogEntry]
    requests: list[DataSubjectRequest]
    privacy_notice: PrivacyNotice


ConsentListener = Callable[[ConsentChangeEvent], None]


def global_consent_status(purposes: dict[ProcessingPurpose, ConsentStatus]) -> ConsentStatus:
    """Fold per-purpose statuses into one PII-processing status."""
    statuses = list(purposes.values())
    if ConsentStatus.WITHDRAWN in statuses:
        return ConsentStatus.WITHDRAWN
    if ConsentStatus.DENIED in statuses:
        return ConsentStatus.DENIED
    if statuses and all(s == ConsentStatus.GRANTED for s in statuses):
        return ConsentStatus.GRANTED
    return ConsentStatus.PENDING


def _log_consent_change(event: ConsentChangeEvent) -> None:
    logger.info(
        "Consent changed for user %s: %s %s -> %s",
        event.user_id,
        event.purpose.value,
        event.old_status.value,
        event.new_status.value,
    )


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class ConsentManager:
    """Per-user, per-purpose consent with an append-only, bounded audit log.

    Consent for a purpose is valid while it is ``granted`` and the last grant
    is younger than ``consent_expiry_days``.  Expiry is evaluated on read;
    the stored status is left alone until the user touches it again.

    Erasure deletes live preferences but keeps the audit trail, which then
    refers to the user only through a one-way hash.
    """

    def __init__(
        self,
        privacy_notice: PrivacyNotice,
        consent_expiry_days: int = 365,
        audit_log_max_entries: int = DEFAULT_AUDIT_LOG_MAX_ENTRIES,
    ) -> None:
        self._privacy_notice = privacy_notice
        self.consent_expiry_days = consent_expiry_days
        self._preferences: dict[str, ConsentPreferences] = {}
        self._requests: dict[str, DataSubjectRequest] = {}
        self._audit_log: deque[AuditLogEntry] = deque(maxlen=audit_log_max_entries)
        self._listeners: list[ConsentListener] = [_log_consent_change]
        logger.info(
            "Consent manager initialised (jurisdiction=%s, expiry=%d days)",
            privacy_notice.jurisdiction,
            consent_expiry_days,
        )

    @property
    def max_retention_hours(self) -> int:
        return 24 * self.consent_expiry_days

    # -- consent -------------------------------------------------------------

    def record_consent(
        self,
        user_id: str,
        purposes: Iterable[ProcessingPurpose | str],
        consent_given: bool,
        ip_address: str = UNKNOWN,
        user_agent: str = UNKNOWN,
    ) -> ConsentPreferences:
        """Grant or deny *purposes* for *user_id*.

        Creates the user's preferences on first use.  Each purpose is updated
        independently and gets its own audit entry and change event.  A grant
        restarts the expiry clock.
        """
        purposes = [ProcessingPurpose(p) for p in purposes]
        timestamp = _now()
        new_status = ConsentStatus.GRANTED if consent_given else ConsentStatus.DENIED

        prefs = self._preferences.get(user_id)
        if prefs is None:
            prefs = ConsentPreferences(
                id=_new_id("consent"),
                user_id=user_id,
                purposes={},
                pii_processing=ConsentStatus.PENDING,
                data_retention_hours=self.max_retention_hours,
                consent_timestamp=timestamp,
                last_updated=timestamp,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            self._preferences[user_id] = prefs

        for purpose in purposes:
            old_status = prefs.purposes.get(purpose, ConsentStatus.PENDING)
            prefs.purposes[purpose] = new_status
            self._emit(ConsentChangeEvent(user_id, purpose, old_status, new_status, timestamp))
            self._append_audit(
                AuditEventType.CONSENT_GIVEN,
                user_id,
                {
                    "purpose": purpose.value,
                    "consent_status": new_status.value,
                    "old_status": old_status.value,
                    "consent_id": prefs.id,
                },
                ip_address,
                user_agent,
                timestamp=timestamp,
            )

        if consent_given and purposes:
            prefs.consent_timestamp = timestamp
        prefs.pii_processing = global_consent_status(prefs.purposes)
        prefs.last_updated = timestamp
        prefs.ip_address = ip_address
        prefs.user_agent = user_agent
        return copy.deepcopy(prefs)

    def withdraw_consent(
        self,
        user_id: str,
        purposes: Iterable[ProcessingPurpose | str],
        ip_address: str = UNKNOWN,
        user_agent: str = UNKNOWN,
    ) -> ConsentPreferences | None:
        """Withdraw *purposes*; returns ``None`` if the user is unknown."""
        prefs = self._preferences.get(user_id)
        if prefs is None:
            return None

        timestamp = _now()
        for purpose in (ProcessingPurpose(p) for p in purposes):
            old_status = prefs.purposes.get(purpose, ConsentStatus.PENDING)
            prefs.purposes[purpose] = ConsentStatus.WITHDRAWN
            self._emit(
                ConsentChangeEvent(
                    user_id, purpose, old_status, ConsentStatus.WITHDRAWN, timestamp
                )
            )
            self._append_audit(
                AuditEventType.CONSENT_WITHDRAWN,
                user_id,
                {"purpose": purpose.value, "old_status": old_status.value, "consent_id": prefs.id},
                ip_address,
                user_agent,
                timestamp=timestamp,
            )

        prefs.pii_processing = global_consent_status(prefs.purposes)
        prefs.last_updated = timestamp
        return copy.deepcopy(prefs)

    def verify_consent(
        self, user_id: str, purpose: ProcessingPurpose | str
    ) -> ConsentVerificationResult:
        prefs = self._preferences.get(user_id)
        if prefs is None:
            return ConsentVerificationResult(
                is_valid=False,
                has_consent=False,
                consent_status=ConsentStatus.PENDING,
                last_updated=datetime.fromtimestamp(0, timezone.utc),
                requires_renewal=True,
            )

        status = prefs.purposes.get(ProcessingPurpose(purpose), ConsentStatus.PENDING)
        has_consent = status == ConsentStatus.GRANTED
        expiry_date = prefs.consent_timestamp + timedelta(days=self.consent_expiry_days)
        expired = _now() > expiry_date
        requires_renewal = expired and has_consent

        return ConsentVerificationResult(
            is_valid=has_consent and not expired,
            has_consent=has_consent,
            consent_status=ConsentStatus.PENDING if requires_renewal else status,
            last_updated=prefs.last_updated,
            requires_renewal=requires_renewal,
            expiry_date=expiry_date,
        )

    def get_consent_preferences(self, user_id: str) -> ConsentPreferences | None:
        prefs = self._preferences.get(user_id)
        return copy.deepcopy(prefs) if prefs is not None else None

    def update_data_retention(
        self, user_id: str, retention_hours: int
    ) -> ConsentPreferences | None:
        """Set the user's retention, capped at the consent lifetime in hours."""
        prefs = self._preferences.get(user_id)
        if prefs is None:
            return None

        old_hours = prefs.data_retention_hours
        prefs.data_retention_hours = min(retention_hours, self.max_retention_hours)
        prefs.last_updated = _now()
        self._append_audit(
            AuditEventType.RETENTION_UPDATED,
            user_id,
            {
                "old_retention_hours": old_hours,
                "new_retention_hours": prefs.data_retention_hours,
                "consent_id": prefs.id,
            },
            prefs.ip_address,
            prefs.user_agent,
        )
        return copy.deepcopy(prefs)

    # -- data subject rights ---------------------------------------------------

    def submit_data_subject_request(
        self, user_id: str, request_type: RequestType | str, description: str = ""
    ) -> DataSubjectRequest:
        request = DataSubjectRequest(
            id=_new_id("request"),
            user_id=user_id,
            request_type=RequestType(request_type),
            description=description,
        )
        self._requests[request.id] = request

        prefs = self._preferences.get(user_id)
        self._append_audit(
            AuditEventType.DATA_SUBJECT_REQUEST,
            user_id,
            {
                "request_type": request.request_type.value,
                "request_id": request.id,
                "description": description,
            },
            prefs.ip_address if prefs else UNKNOWN,
            prefs.user_agent if prefs else UNKNOWN,
            compliance=ComplianceFlags(gdpr=True, ccpa=True),
        )
        logger.info(
            "Data subject request %s (%s) submitted", request.id, request.request_type.value
        )
        return copy.deepcopy(request)

    def get_data_subject_requests(self, user_id: str) -> list[DataSubjectRequest]:
        """The user's requests, newest first."""
        requests = [r for r in self._requests.values() if r.user_id == user_id]
        requests.sort(key=lambda r: r.request_date, reverse=True)
        return copy.deepcopy(requests)

    def process_data_deletion(self, user_id: str) -> bool:
        """Right to erasure.

        Removes live preferences, detaches the user's requests from their id
        and completes any pending erasure request.  The final audit entry
        references the user only by :func:`hash_user_id`.
        """
        self._preferences.pop(user_id, None)

        now = _now()
        user_requests = [r for r in self._requests.values() if r.user_id == user_id]
        for request in user_requests:
            request.user_id = DELETED_USER
            if (
                request.request_type == RequestType.ERASURE
                and request.status == RequestStatus.PENDING
            ):
                request.status = RequestStatus.COMPLETED
                request.completion_date = now

        user_hash = hash_user_id(user_id)
        self._append_audit(
            AuditEventType.DATA_DELETED,
            user_hash,
            {
                "deletion_reason": "data_subject_request",
                "original_user_hash": user_hash,
                "request_count": len(user_requests),
            },
            UNKNOWN,
            "system",
            compliance=ComplianceFlags(gdpr=True, ccpa=True),
            timestamp=now,
        )
        logger.info("Processed data deletion for %s", user_hash)
        return True

    # -- reporting ---------------------------------------------------------------

    def get_privacy_notice(self) -> PrivacyNotice:
        return self._privacy_notice.model_copy(deep=True)

    def get_audit_log(
        self,
        user_id: str | None = None,
        event_type: AuditEventType | str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> list[AuditLogEntry]:
        if event_type is not None:
            event_type = AuditEventType(event_type)
        return [
            entry
            for entry in self._audit_log
            if (user_id is None or entry.user_id == user_id)
            and (event_type is None or entry.event_type == event_type)
            and (from_date is None or entry.timestamp >= from_date)
            and (to_date is None or entry.timestamp <= to_date)
        ]

    def export_user_consent_data(self, user_id: str) -> UserConsentExport:
        """Portable copy of everything held about *user_id*."""
        export = UserConsentExport(
            preferences=self.get_consent_preferences(user_id),
            audit_trail=self.get_audit_log(user_id=user_id),
            requests=self.get_data_subject_requests(user_id),
            privacy_notice=self.get_privacy_notice(),
        )
        prefs = self._preferences.get(user_id)
        self._append_audit(
            AuditEventType.DATA_EXPORTED,
            user_id,
            {"audit_entries": len(export.audit_trail), "requests": len(export.requests)},
            prefs.ip_address if prefs else UNKNOWN,
            prefs.user_agent if prefs else UNKNOWN,
        )
        return export

    def get_consent_statistics(self) -> ConsentStatistics:
        by_purpose = {purpose: PurposeConsentCounts() for purpose in ProcessingPurpose}
        by_status = {status: 0 for status in ConsentStatus}
        horizon = _now() + timedelta(days=EXPIRING_SOON_DAYS)
        total_retention = 0
        expiring_soon = 0

        for prefs in self._preferences.values():
            total_retention += prefs.data_retention_hours
            expiry = prefs.consent_timestamp + timedelta(days=self.consent_expiry_days)
            if expiry <= horizon:
                expiring_soon += 1
            for purpose, status in prefs.purposes.items():
                counts = by_purpose[purpose]
                setattr(counts, status.value, getattr(counts, status.value) + 1)
            by_status[prefs.pii_processing] += 1

        total_users = len(self._preferences)
        return ConsentStatistics(
            total_users=total_users,
            consents_by_purpose=by_purpose,
            consents_by_status=by_status,
            average_retention_hours=total_retention / max(1, total_users),
            expiring_soon=expiring_soon,
        )

    # -- listeners -------------------------------------------------------------

    def add_listener(self, listener: ConsentListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ConsentListener) -> bool:
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def _emit(self, event: ConsentChangeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Consent change listener %r failed", listener)

    # -- audit -----------------------------------------------------------------

    def _compliance_flags(self) -> ComplianceFlags:
        return ComplianceFlags(gdpr=self._privacy_notice.gdpr, ccpa=self._privacy_notice.ccpa)

    def _append_audit(
        self,
        event_type: AuditEventType,
        user_id: str,
        details: dict[str, Any],
        ip_address: str,
        user_agent: str,
        compliance: ComplianceFlags | None = None,
        timestamp: datetime | None = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            id=_new_id("audit"),
            timestamp=timestamp or _now(),
            event_type=event_type,
            user_id=user_id,
            details=details,
            ip_address=ip_address,
            user_agent=user_agent,
            compliance=compliance or self._compliance_flags(),
        )
        # deque(maxlen=...) drops the oldest entry once full.
        self._audit_log.append(entry)
        return entry
