from __future__ import annotations

import asyncio
import copy
import dataclasses
import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

from pydantic import TypeAdapter

from logshield.consent_manager import AuditLogEntry, ConsentChangeEvent, ConsentManager
from logshield.data_sanitizer import DataSanitizer, SanitizationResult
from logshield.pii_detector import PIIDetectionResult, PIIDetector
from schemas.entities import (
    DataClassification,
    LogEntry,
    LogLevel,
    PIIType,
    SanitizationStrategy,
    SensitivityLevel,
)
from schemas.policy import SanitizationConfig, ScanOptions, SecurityPolicy

logger = logging.getLogger(__name__)

CONSENT_ERROR = "Consent not provided or invalid"
MULTIPLE_DETECTION_ALERT_THRESHOLD = 3

# Health thresholds
DETECTOR_MAX_AVG_SCAN_MS = 10.0
ENGINE_DEGRADED_AVG_SCAN_MS = 5.0
UNHEALTHY_ERROR_RATE = 0.1
DEGRADED_ERROR_RATE = 0.05
HEALTH_SAMPLE_SIZE = 100

_REPORT_ADAPTER = TypeAdapter(dict[str, Any])


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertType(str, Enum):
    PII_DETECTED = "pii_detected"
    CONSENT_VIOLATION = "consent_violation"
    DATA_BREACH = "data_breach"
    POLICY_VIOLATION = "policy_violation"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class SecurityScanResult:
    """Outcome of one :meth:`SecurityEngine.scan_log_entry` call.

    ``log_entry`` is a new entry carrying the classification and, when the
    message was rewritten, ``sanitized_message``.  For failed scans it is
    the caller's entry unchanged.
    """

    scan_id: str
    scan_timestamp: datetime
    scanned_text: str
    detections: list[PIIDetectionResult]
    risk_score: float
    classification: DataClassification
    scan_time_ms: float
    scan_successful: bool
    scan_errors: list[str]
    log_entry: LogEntry
    user_id: str | None = None
    sanitization: SanitizationResult | None = None


@dataclass
class SecurityAlert:
    id: str
    severity: AlertSeverity
    type: AlertType
    message: str
    details: dict[str, Any]
    timestamp: datetime = field(default_factory=_now)
    resolved: bool = False


@dataclass
class ScanPerformance:
    average_time_ms: float = 0.0
    min_time_ms: float = 0.0
    max_time_ms: float = 0.0


@dataclass
class ConsentCompliance:
    total_users: int = 0
    compliant_scans: int = 0
    non_compliant_scans: int = 0


@dataclass
class SecurityEngineStatistics:
    total_scans: int = 0
    total_pii_detected: int = 0
    total_sanitizations: int = 0
    scan_performance: ScanPerformance = field(default_factory=ScanPerformance)
    detection_stats: dict[PIIType, int] = field(default_factory=dict)
    risk_level_distribution: dict[SensitivityLevel, int] = field(
        default_factory=lambda: {level: 0 for level in SensitivityLevel}
    )
    consent_compliance: ConsentCompliance = field(default_factory=ConsentCompliance)


@dataclass
class HealthReport:
    overall: HealthStatus
    components: dict[str, HealthStatus]
    average_scan_time_ms: float
    recent_error_rate: float
    critical_alerts: int
    high_alerts: int
    unresolved_alerts: int


@dataclass
class ReportCoverage:
    user_id: str | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None


@dataclass
class PolicyCompliance:
    total_scans: int
    compliant_scans: int
    compliance_rate: float


@dataclass
class SecurityAuditReport:
    report_id: str
    generated_at: datetime
    coverage: ReportCoverage
    statistics: SecurityEngineStatistics
    alerts: list[SecurityAlert]
    scan_history: list[SecurityScanResult]
    consent_audit: list[AuditLogEntry]
    policy_compliance: PolicyCompliance


def _check_batch_size(batch_size: int) -> int:
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    return batch_size


def strategy_for_threshold(threshold: float) -> SanitizationStrategy:
    """Higher auto-sanitization thresholds map to more aggressive strategies."""
    if threshold >= 0.8:
        return SanitizationStrategy.REMOVE
    if threshold >= 0.6:
        return SanitizationStrategy.HASH
    if threshold >= 0.4:
        return SanitizationStrategy.MASK
    return SanitizationStrategy.PARTIAL


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class SecurityEngine:
    """Consent-gated PII detection, risk scoring and sanitisation of log entries.

    Each engine owns its detector, sanitizer, statistics, alerts and scan
    history.  The consent manager is shared with whoever records consent.
    None of this state is synchronised; use one engine per thread or event
    loop.
    """

    def __init__(
        self,
        policy: SecurityPolicy,
        consent_manager: ConsentManager,
        detector: PIIDetector | None = None,
        sanitizer: DataSanitizer | None = None,
        scan_history_max_entries: int = 1_000,
        batch_size: int = 10,
    ) -> None:
        self.policy = policy
        self.consent_manager = consent_manager
        self.detector = detector or PIIDetector()
        self.sanitizer = sanitizer or DataSanitizer(SanitizationConfig(), detector=self.detector)
        self.batch_size = _check_batch_size(batch_size)

        self._history_limit = scan_history_max_entries
        self._history: OrderedDict[str, SecurityScanResult] = OrderedDict()
        self._alerts: dict[str, SecurityAlert] = {}
        self._stats = SecurityEngineStatistics(
            detection_stats={t: 0 for t in self.detector.get_supported_pii_types()}
        )

        self.consent_manager.add_listener(self._on_consent_change)
        logger.info(
            "Security engine initialised (policy v%s, explicit consent=%s)",
            policy.version,
            policy.require_explicit_consent,
        )

    # -- scanning ------------------------------------------------------------

    def scan_log_entry(
        self, entry: LogEntry, options: ScanOptions | None = None
    ) -> SecurityScanResult:
        """Scan one entry.  Never raises; pipeline errors become failed results."""
        options = options or ScanOptions()
        started = time.perf_counter()
        scan_id = f"scan_{uuid.uuid4().hex}"
        # Read once up front so a malformed entry still yields a failed result.
        text = getattr(entry, "message", None)

        try:
            if not isinstance(text, str):
                raise TypeError(f"Log entry has no string message: {type(entry).__name__}")
            consent_valid = True
            if options.user_id and not options.skip_consent_check:
                verification = self.consent_manager.verify_consent(
                    options.user_id, options.purpose
                )
                consent_valid = verification.is_valid
                self._tally_consent(consent_valid)
                if not consent_valid and self.policy.require_explicit_consent:
                    logger.warning(
                        "Scan %s refused: no valid %s consent",
                        scan_id,
                        options.purpose.value,
                    )
                    return self._failed_result(
                        scan_id, entry, text, [CONSENT_ERROR], started, options.user_id
                    )

            min_confidence = (
                options.min_confidence
                if options.min_confidence is not None
                else self.policy.min_confidence_threshold
            )
            detections = self._apply_policy_filter(
                self.detector.scan_text(text, min_confidence)
            )
            risk_score = self.calculate_risk_score(detections, entry.level)
            classification = self.classify(detections, risk_score)
            self._raise_alerts(scan_id, detections, classification, options.user_id)

            sanitization = None
            if (
                options.auto_sanitize
                and self.policy.auto_sanitization.enabled
                and consent_valid
                and self._should_auto_sanitize(detections)
            ):
                sanitization = self.sanitizer.sanitize_text(text, detections)

            sanitized = sanitization is not None and sanitization.was_modified
            if sanitized:
                classification = dataclasses.replace(classification, sanitized=True)
                self._stats.total_sanitizations += 1

            result = SecurityScanResult(
                scan_id=scan_id,
                scan_timestamp=_now(),
                scanned_text=text,
                detections=detections,
                risk_score=risk_score,
                classification=classification,
                scan_time_ms=(time.perf_counter() - started) * 1000,
                scan_successful=True,
                scan_errors=[],
                log_entry=dataclasses.replace(
                    entry,
                    classification=classification,
                    sanitized_message=(
                        sanitization.sanitized_text if sanitized else entry.sanitized_message
                    ),
                ),
                user_id=options.user_id,
                sanitization=sanitization,
            )
            self._update_statistics(result)
            self._store(result)
            logger.debug(
                "Scan %s: %d detection(s), risk %.2f, %s",
                scan_id,
                len(detections),
                risk_score,
                classification.sensitivity_level.value,
            )
            return result

        except Exception as exc:
            logger.exception("Scan %s failed", scan_id)
            return self._failed_result(
                scan_id,
                entry,
                text,
                [str(exc) or type(exc).__name__],
                started,
                options.user_id,
            )

    async def scan_log_entries(
        self,
        entries: Iterable[LogEntry],
        options: ScanOptions | None = None,
        batch_size: int | None = None,
    ) -> list[SecurityScanResult]:
        """Scan *entries* in chunks, yielding to the event loop between chunks."""
        size = self.batch_size if batch_size is None else _check_batch_size(batch_size)
        entries = list(entries)
        results: list[SecurityScanResult] = []
        for offset in range(0, len(entries), size):
            results.extend(self.scan_log_entry(e, options) for e in entries[offset : offset + size])
            if offset + size < len(entries):
                await asyncio.sleep(0)
        return results

    # -- scoring -------------------------------------------------------------

    def calculate_risk_score(
        self, detections: list[PIIDetectionResult], level: LogLevel
    ) -> float:
        if not detections:
            return 0.0
        risk = self.policy.risk
        score = max(
            risk.type_severity.get(d.type, risk.default_severity) * d.confidence
            for d in detections
        )
        score = min(1.0, score * risk.level_multipliers.get(level, 1.0))
        if len(detections) > 1:
            score = min(1.0, score * (1 + risk.per_extra_detection * (len(detections) - 1)))
        return score

    def classify(
        self, detections: list[PIIDetectionResult], risk_score: float
    ) -> DataClassification:
        risk = self.policy.risk
        types = {d.type for d in detections}
        if risk_score >= risk.restricted_threshold or types & risk.restricted_types:
            level = SensitivityLevel.RESTRICTED
        elif risk_score >= risk.confidential_threshold or types & risk.confidential_types:
            level = SensitivityLevel.CONFIDENTIAL
        elif risk_score >= risk.internal_threshold or detections:
            level = SensitivityLevel.INTERNAL
        else:
            level = SensitivityLevel.PUBLIC

        return DataClassification(
            sensitivity_level=level,
            detected_types=tuple(dict.fromkeys(d.type for d in detections)),
            confidence=max((d.confidence for d in detections), default=0.0),
            scan_timestamp=_now(),
        )

    def _apply_policy_filter(
        self, detections: list[PIIDetectionResult]
    ) -> list[PIIDetectionResult]:
        thresholds = self.policy.auto_sanitization.thresholds
        return [
            d
            for d in detections
            if d.confidence >= self.policy.min_confidence_threshold
            and d.confidence >= thresholds.get(d.type, 0.0)
        ]

    def _should_auto_sanitize(self, detections: list[PIIDetectionResult]) -> bool:
        thresholds = self.policy.auto_sanitization.thresholds
        return any(
            d.type in thresholds and d.confidence >= thresholds[d.type] for d in detections
        )

    # -- alerts --------------------------------------------------------------

    def _raise_alerts(
        self,
        scan_id: str,
        detections: list[PIIDetectionResult],
        classification: DataClassification,
        user_id: str | None,
    ) -> None:
        detected_types = [t.value for t in classification.detected_types]
        if classification.sensitivity_level == SensitivityLevel.RESTRICTED:
            self._add_alert(
                AlertSeverity.HIGH,
                f"High-risk PII detected in scan {scan_id}",
                {
                    "scan_id": scan_id,
                    "detected_types": detected_types,
                    "sensitivity_level": classification.sensitivity_level.value,
                    "user_id": user_id or "unknown",
                },
            )
            logger.warning("Restricted data detected in scan %s: %s", scan_id, detected_types)

        if len(detections) >= MULTIPLE_DETECTION_ALERT_THRESHOLD:
            self._add_alert(
                AlertSeverity.MEDIUM,
                f"Multiple PII detections in single scan: {len(detections)} found",
                {
                    "scan_id": scan_id,
                    "detection_count": len(detections),
                    "detected_types": detected_types,
                    "user_id": user_id or "unknown",
                },
            )

    def _add_alert(
        self,
        severity: AlertSeverity,
        message: str,
        details: dict[str, Any],
        alert_type: AlertType = AlertType.PII_DETECTED,
    ) -> SecurityAlert:
        alert = SecurityAlert(
            id=f"alert_{uuid.uuid4().hex}",
            severity=severity,
            type=alert_type,
            message=message,
            details=details,
        )
        self._alerts[alert.id] = alert
        return alert

    def get_security_alerts(
        self,
        severity: AlertSeverity | str | None = None,
        resolved: bool | None = None,
        limit: int = 50,
    ) -> list[SecurityAlert]:
        """Matching alerts, newest first."""
        if severity is not None:
            severity = AlertSeverity(severity)
        alerts = [
            copy.deepcopy(a)
            for a in reversed(self._alerts.values())
            if (severity is None or a.severity == severity)
            and (resolved is None or a.resolved == resolved)
        ]
        return alerts[:limit]

    def resolve_security_alert(self, alert_id: str) -> bool:
        alert = self._alerts.get(alert_id)
        if alert is None:
            return False
        alert.resolved = True
        return True

    # -- policy --------------------------------------------------------------

    def update_security_policy(self, **changes: Any) -> SecurityPolicy:
        """Merge *changes* into the policy and re-validate it.

        New auto-sanitization thresholds are also pushed to the sanitizer as
        per-type strategies.
        """
        merged = {**self.policy.model_dump(), **changes}
        self.policy = SecurityPolicy.model_validate(merged)

        if "auto_sanitization" in changes:
            strategies = {
                pii_type: strategy_for_threshold(threshold)
                for pii_type, threshold in self.policy.auto_sanitization.thresholds.items()
            }
            self.sanitizer.update_config(
                type_strategies={**self.sanitizer.config.type_strategies, **strategies}
            )
        logger.info("Security policy updated: %s", ", ".join(sorted(changes)))
        return self.policy

    # -- statistics / history ------------------------------------------------

    def get_statistics(self) -> SecurityEngineStatistics:
        stats = copy.deepcopy(self._stats)
        stats.consent_compliance.total_users = (
            self.consent_manager.get_consent_statistics().total_users
        )
        return stats

    def get_scan_history(
        self, scan_id: str | None = None, limit: int = 100
    ) -> list[SecurityScanResult]:
        """A specific scan, or the most recent *limit* scans newest first."""
        if scan_id is not None:
            result = self._history.get(scan_id)
            return [result] if result is not None else []
        return list(reversed(self._history.values()))[:limit]

    def _update_statistics(self, result: SecurityScanResult) -> None:
        s = self._stats
        s.total_scans += 1
        s.total_pii_detected += len(result.detections)

        perf = s.scan_performance
        elapsed = result.scan_time_ms
        perf.average_time_ms += (elapsed - perf.average_time_ms) / s.total_scans
        perf.min_time_ms = elapsed if s.total_scans == 1 else min(perf.min_time_ms, elapsed)
        perf.max_time_ms = max(perf.max_time_ms, elapsed)

        for detection in result.detections:
            s.detection_stats[detection.type] = s.detection_stats.get(detection.type, 0) + 1
        s.risk_level_distribution[result.classification.sensitivity_level] += 1

    def _tally_consent(self, compliant: bool) -> None:
        if compliant:
            self._stats.consent_compliance.compliant_scans += 1
        else:
            self._stats.consent_compliance.non_compliant_scans += 1

    def _store(self, result: SecurityScanResult) -> None:
        self._history[result.scan_id] = result
        while len(self._history) > self._history_limit:
            self._history.popitem(last=False)

    def _failed_result(
        self,
        scan_id: str,
        entry: LogEntry,
        text: Any,
        errors: list[str],
        started: float,
        user_id: str | None,
    ) -> SecurityScanResult:
        now = _now()
        result = SecurityScanResult(
            scan_id=scan_id,
            scan_timestamp=now,
            scanned_text=text if isinstance(text, str) else "",
            detections=[],
            risk_score=0.0,
            classification=DataClassification(
                sensitivity_level=SensitivityLevel.PUBLIC, scan_timestamp=now
            ),
            scan_time_ms=(time.perf_counter() - started) * 1000,
            scan_successful=False,
            scan_errors=errors,
            log_entry=entry,
            user_id=user_id,
        )
        self._store(result)
        return result

    def _on_consent_change(self, event: ConsentChangeEvent) -> None:
        logger.debug("Security engine saw consent change for user %s", event.user_id)

    def close(self) -> None:
        """Detach from the shared consent manager."""
        self.consent_manager.remove_listener(self._on_consent_change)

    # -- health / reporting --------------------------------------------------

    def health_check(self) -> HealthReport:
        components = {
            "pii_detector": (
                HealthStatus.HEALTHY
                if self.detector.get_performance_metrics().average_scan_time_ms
                < DETECTOR_MAX_AVG_SCAN_MS
                else HealthStatus.UNHEALTHY
            ),
            "data_sanitizer": self._probe(self.sanitizer.get_statistics),
            "consent_manager": self._probe(self.consent_manager.get_consent_statistics),
        }

        recent = self.get_scan_history(limit=HEALTH_SAMPLE_SIZE)
        failed = sum(1 for r in recent if not r.scan_successful)
        error_rate = failed / len(recent) if recent else 0.0

        unresolved = [a for a in self._alerts.values() if not a.resolved]
        critical = sum(1 for a in unresolved if a.severity == AlertSeverity.CRITICAL)
        high = sum(1 for a in unresolved if a.severity == AlertSeverity.HIGH)
        avg_ms = self._stats.scan_performance.average_time_ms

        if (
            critical
            or error_rate > UNHEALTHY_ERROR_RATE
            or HealthStatus.UNHEALTHY in components.values()
        ):
            overall = HealthStatus.UNHEALTHY
        elif high or error_rate > DEGRADED_ERROR_RATE or avg_ms > ENGINE_DEGRADED_AVG_SCAN_MS:
            overall = HealthStatus.DEGRADED
        else:
            overall = HealthStatus.HEALTHY

        return HealthReport(
            overall=overall,
            components=components,
            average_scan_time_ms=avg_ms,
            recent_error_rate=error_rate,
            critical_alerts=critical,
            high_alerts=high,
            unresolved_alerts=len(unresolved),
        )

    @staticmethod
    def _probe(fn) -> HealthStatus:
        try:
            fn()
        except Exception:
            logger.exception("Health probe %r failed", fn)
            return HealthStatus.UNHEALTHY
        return HealthStatus.HEALTHY

    def export_security_audit_report(
        self,
        user_id: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> SecurityAuditReport:
        history = [
            r
            for r in self.get_scan_history(limit=len(self._history))
            if (from_date is None or r.scan_timestamp >= from_date)
            and (to_date is None or r.scan_timestamp <= to_date)
            and (user_id is None or r.user_id == user_id)
        ]
        compliant = sum(1 for r in history if r.scan_successful)
        return SecurityAuditReport(
            report_id=f"security_audit_{uuid.uuid4().hex}",
            generated_at=_now(),
            coverage=ReportCoverage(user_id=user_id, from_date=from_date, to_date=to_date),
            statistics=self.get_statistics(),
            alerts=self.get_security_alerts(),
            scan_history=history,
            consent_audit=self.consent_manager.get_audit_log(
                user_id=user_id, from_date=from_date, to_date=to_date
            ),
            policy_compliance=PolicyCompliance(
                total_scans=len(history),
                compliant_scans=compliant,
                compliance_rate=compliant / len(history) if history else 1.0,
            ),
        )

    def export_security_audit_report_json(self, **filters: Any) -> str:
        report = self.export_security_audit_report(**filters)
        return _REPORT_ADAPTER.dump_json(dataclasses.asdict(report), indent=2).decode()
