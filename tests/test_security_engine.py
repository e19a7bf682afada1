"""Tests for logshield.security_engine: consent gating, risk scoring, alerts and reporting."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import ValidationError

import logshield.security_engine as security_engine
from logshield.consent_manager import ConsentManager
from logshield.pii_detector import PerformanceMetrics, PIIDetectionResult, PIIDetector
from logshield.security_engine import (
    CONSENT_ERROR,
    AlertSeverity,
    HealthStatus,
    SecurityEngine,
    strategy_for_threshold,
)
from schemas.entities import (
    LogLevel,
    PIIType,
    ProcessingPurpose,
    SanitizationStrategy,
    SensitivityLevel,
)
from schemas.policy import ScanOptions, SecurityPolicy


def _mock_detector(**scan_kwargs) -> MagicMock:
    detector = MagicMock(spec=PIIDetector)
    detector.get_supported_pii_types.return_value = [PIIType.SSN, PIIType.EMAIL]
    detector.get_performance_metrics.return_value = PerformanceMetrics()
    detector.scan_text.configure_mock(**scan_kwargs)
    return detector


def _ssn_detection(confidence: float) -> PIIDetectionResult:
    return PIIDetectionResult(
        type=PIIType.SSN,
        value="123-45-6789",
        start_index=5,
        end_index=16,
        confidence=confidence,
        pattern_name="ssn_standard",
    )


# -----------------------------------------------------------------------
# Basic scanning
# -----------------------------------------------------------------------


class TestScanLogEntry:

    def test_contact_line(self, engine: SecurityEngine, make_entry, contact_text: str):
        result = engine.scan_log_entry(make_entry(contact_text, LogLevel.INFO))

        assert result.scan_successful is True
        assert result.scan_errors == []
        assert [d.type for d in result.detections] == [PIIType.EMAIL, PIIType.PHONE]
        assert result.risk_score == pytest.approx(0.627)
        assert result.classification.sensitivity_level == SensitivityLevel.CONFIDENTIAL
        assert result.classification.detected_types == (PIIType.EMAIL, PIIType.PHONE)
        assert result.classification.sanitized is True
        assert result.log_entry.sanitized_message == (
            "Contact: j***@example.com or call (555) ***-*567"
        )
        assert result.log_entry.message == contact_text
        assert result.scan_id.startswith("scan_")

    def test_caller_entry_untouched(self, engine: SecurityEngine, make_entry):
        entry = make_entry("SSN: 123-45-6789")
        result = engine.scan_log_entry(entry)

        assert entry.classification is None
        assert entry.sanitized_message is None
        assert result.log_entry is not entry
        assert result.log_entry.sanitized_message == "SSN: ***-**-****"

    def test_clean_entry(self, engine: SecurityEngine, make_entry):
        result = engine.scan_log_entry(make_entry("Server started on port 8080"))

        assert result.detections == []
        assert result.risk_score == 0.0
        assert result.classification.sensitivity_level == SensitivityLevel.PUBLIC
        assert result.log_entry.sanitized_message is None
        assert result.sanitization is None

    def test_empty_message(self, engine: SecurityEngine, make_entry):
        result = engine.scan_log_entry(make_entry(""))
        assert result.scan_successful is True
        assert result.classification.sensitivity_level == SensitivityLevel.PUBLIC

    def test_auto_sanitize_disabled_by_option(self, engine: SecurityEngine, make_entry):
        result = engine.scan_log_entry(
            make_entry("SSN: 123-45-6789"), ScanOptions(auto_sanitize=False)
        )
        assert result.detections
        assert result.log_entry.sanitized_message is None
        assert result.classification.sanitized is False

    def test_pipeline_error_becomes_failed_result(self, policy, consent_manager, make_entry):
        detector = _mock_detector(side_effect=RuntimeError("boom"))
        engine = SecurityEngine(policy, consent_manager, detector=detector)

        entry = make_entry("anything")
        result = engine.scan_log_entry(entry)

        assert result.scan_successful is False
        assert result.scan_errors == ["boom"]
        assert result.detections == []
        assert result.log_entry is entry
        assert engine.get_scan_history(result.scan_id) == [result]
        assert engine.get_statistics().total_scans == 0


# -----------------------------------------------------------------------
# Consent gating
# -----------------------------------------------------------------------


class TestConsentGate:

    def test_soft_gate_scans_without_sanitizing(self, engine: SecurityEngine, make_entry):
        result = engine.scan_log_entry(
            make_entry("SSN: 123-45-6789"), ScanOptions(user_id="alice")
        )

        assert result.scan_successful is True
        assert result.detections
        assert result.log_entry.sanitized_message is None
        compliance = engine.get_statistics().consent_compliance
        assert compliance.non_compliant_scans == 1
        assert compliance.compliant_scans == 0

    def test_hard_gate_refuses(self, consent_manager, detector, make_entry):
        engine = SecurityEngine(
            SecurityPolicy(require_explicit_consent=True), consent_manager, detector=detector
        )
        result = engine.scan_log_entry(
            make_entry("SSN: 123-45-6789"), ScanOptions(user_id="alice")
        )

        assert result.scan_successful is False
        assert result.scan_errors == [CONSENT_ERROR]
        assert result.detections == []
        assert detector.get_performance_metrics().total_scans == 0

    def test_consented_user(self, engine: SecurityEngine, consent_manager, make_entry):
        consent_manager.record_consent("alice", [ProcessingPurpose.LOGGING], True)
        result = engine.scan_log_entry(
            make_entry("SSN: 123-45-6789"), ScanOptions(user_id="alice")
        )

        assert result.log_entry.sanitized_message == "SSN: ***-**-****"
        assert engine.get_statistics().consent_compliance.compliant_scans == 1

    def test_consent_is_per_purpose(self, engine: SecurityEngine, consent_manager, make_entry):
        consent_manager.record_consent("alice", [ProcessingPurpose.LOGGING], True)
        result = engine.scan_log_entry(
            make_entry("SSN: 123-45-6789"),
            ScanOptions(user_id="alice", purpose=ProcessingPurpose.ANALYTICS),
        )
        assert result.log_entry.sanitized_message is None
        assert engine.get_statistics().consent_compliance.non_compliant_scans == 1

    def test_skip_consent_check(self, consent_manager, detector, make_entry):
        engine = SecurityEngine(
            SecurityPolicy(require_explicit_consent=True), consent_manager, detector=detector
        )
        result = engine.scan_log_entry(
            make_entry("SSN: 123-45-6789"),
            ScanOptions(user_id="alice", skip_consent_check=True),
        )

        assert result.scan_successful is True
        assert result.log_entry.sanitized_message == "SSN: ***-**-****"
        compliance = engine.get_statistics().consent_compliance
        assert compliance.compliant_scans == compliance.non_compliant_scans == 0

    def test_anonymous_scan_not_tallied(self, engine: SecurityEngine, make_entry):
        engine.scan_log_entry(make_entry("SSN: 123-45-6789"))
        compliance = engine.get_statistics().consent_compliance
        assert compliance.compliant_scans == compliance.non_compliant_scans == 0


# -----------------------------------------------------------------------
# Confidence filtering
# -----------------------------------------------------------------------


class TestPolicyFilter:

    def test_policy_floor_applies_after_scan(self, engine: SecurityEngine, make_entry):
        result = engine.scan_log_entry(
            make_entry("Random number: 123-45-6789"), ScanOptions(min_confidence=0.5)
        )
        assert result.detections == []
        assert result.classification.sensitivity_level == SensitivityLevel.PUBLIC

    def test_min_confidence_forwarded(self, policy, consent_manager, make_entry):
        detector = _mock_detector(return_value=[])
        engine = SecurityEngine(policy, consent_manager, detector=detector)

        engine.scan_log_entry(make_entry("text"), ScanOptions(min_confidence=0.0))
        detector.scan_text.assert_called_once_with("text", 0.0)

        engine.scan_log_entry(make_entry("text"))
        detector.scan_text.assert_called_with("text", 0.7)

    def test_per_type_threshold(self, policy, consent_manager, make_entry):
        detector = _mock_detector(return_value=[_ssn_detection(0.75)])
        engine = SecurityEngine(policy, consent_manager, detector=detector)

        result = engine.scan_log_entry(make_entry("SSN: 123-45-6789"))
        assert result.detections == []

        detector.scan_text.return_value = [_ssn_detection(0.85)]
        result = engine.scan_log_entry(make_entry("SSN: 123-45-6789"))
        assert len(result.detections) == 1


# -----------------------------------------------------------------------
# Risk and classification
# -----------------------------------------------------------------------


class TestRiskScoring:

    def test_level_multiplier(self, engine: SecurityEngine, make_entry):
        log = engine.scan_log_entry(make_entry("SSN: 123-45-6789", LogLevel.LOG))
        error = engine.scan_log_entry(make_entry("SSN: 123-45-6789", LogLevel.ERROR))

        assert log.risk_score == pytest.approx(0.72)
        assert error.risk_score == pytest.approx(0.864)
        assert log.classification.sensitivity_level == SensitivityLevel.RESTRICTED

    def test_score_capped(self, engine: SecurityEngine):
        detections = [_ssn_detection(1.0)] * 4
        assert engine.calculate_risk_score(detections, LogLevel.ERROR) == 1.0

    def test_no_detections(self, engine: SecurityEngine):
        assert engine.calculate_risk_score([], LogLevel.ERROR) == 0.0

    def test_multiple_detections_raise_score(self, engine: SecurityEngine, make_entry):
        result = engine.scan_log_entry(
            make_entry("a@example.com, b@example.com, c@example.com")
        )
        assert result.risk_score == pytest.approx(0.684)
        assert result.classification.sensitivity_level == SensitivityLevel.CONFIDENTIAL

    def test_restricted_type_forces_level(self, engine: SecurityEngine):
        classification = engine.classify([_ssn_detection(0.1)], 0.05)
        assert classification.sensitivity_level == SensitivityLevel.RESTRICTED

    def test_any_detection_is_at_least_internal(self, engine: SecurityEngine):
        detection = PIIDetectionResult(
            type=PIIType.IP_ADDRESS,
            value="10.0.0.1",
            start_index=0,
            end_index=8,
            confidence=0.2,
            pattern_name="ipv4",
        )
        classification = engine.classify([detection], 0.08)
        assert classification.sensitivity_level == SensitivityLevel.INTERNAL

    def test_sensitivity_ordering(self):
        assert SensitivityLevel.PUBLIC < SensitivityLevel.INTERNAL
        assert SensitivityLevel.CONFIDENTIAL < SensitivityLevel.RESTRICTED


# -----------------------------------------------------------------------
# Alerts
# -----------------------------------------------------------------------


class TestAlerts:

    def test_restricted_raises_high_alert(self, engine: SecurityEngine, make_entry):
        result = engine.scan_log_entry(make_entry("SSN: 123-45-6789"))

        alerts = engine.get_security_alerts()
        assert len(alerts) == 1
        assert alerts[0].severity == AlertSeverity.HIGH
        assert alerts[0].details["scan_id"] == result.scan_id
        assert alerts[0].details["detected_types"] == ["ssn"]
        assert alerts[0].details["user_id"] == "unknown"

    def test_multiple_detections_raise_medium_alert(self, engine: SecurityEngine, make_entry):
        engine.scan_log_entry(make_entry("a@example.com, b@example.com, c@example.com"))

        alerts = engine.get_security_alerts()
        assert [a.severity for a in alerts] == [AlertSeverity.MEDIUM]
        assert alerts[0].details["detection_count"] == 3

    def test_clean_entry_raises_nothing(self, engine: SecurityEngine, make_entry, contact_text):
        engine.scan_log_entry(make_entry(contact_text))
        assert engine.get_security_alerts() == []

    def test_filters_and_resolve(self, engine: SecurityEngine, make_entry):
        engine.scan_log_entry(make_entry("SSN: 123-45-6789"))
        engine.scan_log_entry(make_entry("a@example.com, b@example.com, c@example.com"))

        newest_first = engine.get_security_alerts()
        assert [a.severity for a in newest_first] == [AlertSeverity.MEDIUM, AlertSeverity.HIGH]
        assert len(engine.get_security_alerts(severity="high")) == 1
        assert len(engine.get_security_alerts(limit=1)) == 1

        high = engine.get_security_alerts(severity=AlertSeverity.HIGH)[0]
        assert engine.resolve_security_alert(high.id) is True
        assert engine.resolve_security_alert("alert_missing") is False

        assert [a.id for a in engine.get_security_alerts(resolved=True)] == [high.id]
        assert len(engine.get_security_alerts(resolved=False)) == 1

    def test_alerts_are_copies(self, engine: SecurityEngine, make_entry):
        engine.scan_log_entry(make_entry("SSN: 123-45-6789"))
        engine.get_security_alerts()[0].resolved = True
        assert engine.get_security_alerts(resolved=False)


# -----------------------------------------------------------------------
# Batches
# -----------------------------------------------------------------------


class TestBatchScanning:

    @pytest.mark.asyncio
    async def test_results_in_order(self, engine: SecurityEngine, make_entry):
        entries = [make_entry(f"user{i}@example.com") for i in range(25)]

        with patch.object(security_engine.asyncio, "sleep", new=AsyncMock()) as sleep:
            results = await engine.scan_log_entries(entries)

        assert [r.scanned_text for r in results] == [e.message for e in entries]
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_custom_batch_size(self, engine: SecurityEngine, make_entry):
        entries = [make_entry("plain") for _ in range(4)]

        with patch.object(security_engine.asyncio, "sleep", new=AsyncMock()) as sleep:
            results = await engine.scan_log_entries(entries, batch_size=1)

        assert len(results) == 4
        assert sleep.await_count == 3

    @pytest.mark.asyncio
    async def test_empty_batch(self, engine: SecurityEngine):
        assert await engine.scan_log_entries([]) == []

    @pytest.mark.asyncio
    async def test_malformed_entry_does_not_abort_batch(self, engine: SecurityEngine, make_entry):
        malformed = {"message": "x", "level": "log"}
        entries = [make_entry("a@example.com"), malformed, make_entry("ok")]

        results = await engine.scan_log_entries(entries)

        assert [r.scan_successful for r in results] == [True, False, True]
        failed = results[1]
        assert failed.scanned_text == ""
        assert failed.log_entry is malformed
        assert "dict" in failed.scan_errors[0]
        assert results[0].detections[0].type == PIIType.EMAIL

    def test_entry_with_non_string_message(self, engine: SecurityEngine, make_entry):
        entry = make_entry("placeholder")
        object.__setattr__(entry, "message", None)

        result = engine.scan_log_entry(entry)
        assert result.scan_successful is False
        assert result.scanned_text == ""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("size", [0, -1])
    async def test_non_positive_batch_size_rejected(self, engine: SecurityEngine, make_entry, size):
        entries = [make_entry("plain") for _ in range(3)]
        with pytest.raises(ValueError, match="batch_size"):
            await engine.scan_log_entries(entries, batch_size=size)

    @pytest.mark.parametrize("size", [0, -5])
    def test_engine_rejects_non_positive_batch_size(self, policy, consent_manager, size):
        with pytest.raises(ValueError, match="batch_size"):
            SecurityEngine(policy, consent_manager, batch_size=size)


# -----------------------------------------------------------------------
# Policy updates
# -----------------------------------------------------------------------


class TestPolicyUpdate:

    def test_thresholds_push_strategies(self, engine: SecurityEngine):
        engine.update_security_policy(
            auto_sanitization={"enabled": True, "thresholds": {PIIType.EMAIL: 0.85}}
        )

        assert engine.policy.auto_sanitization.thresholds == {PIIType.EMAIL: 0.85}
        assert engine.sanitizer.get_strategy_for_pii_type(PIIType.EMAIL) == (
            SanitizationStrategy.REMOVE
        )
        assert engine.sanitizer.get_strategy_for_pii_type(PIIType.PHONE) == (
            SanitizationStrategy.PARTIAL
        )

    def test_invalid_update_leaves_policy(self, engine: SecurityEngine):
        before = engine.policy
        with pytest.raises(ValidationError):
            engine.update_security_policy(min_confidence_threshold=1.5)
        assert engine.policy is before

    def test_hard_gate_toggled_at_runtime(self, engine: SecurityEngine, make_entry):
        engine.update_security_policy(require_explicit_consent=True)
        result = engine.scan_log_entry(make_entry("hello"), ScanOptions(user_id="bob"))
        assert result.scan_errors == [CONSENT_ERROR]

    @pytest.mark.parametrize(
        "threshold, strategy",
        [
            (0.9, SanitizationStrategy.REMOVE),
            (0.7, SanitizationStrategy.HASH),
            (0.5, SanitizationStrategy.MASK),
            (0.1, SanitizationStrategy.PARTIAL),
        ],
    )
    def test_strategy_for_threshold(self, threshold, strategy):
        assert strategy_for_threshold(threshold) == strategy


# -----------------------------------------------------------------------
# Statistics and history
# -----------------------------------------------------------------------


class TestStatisticsAndHistory:

    def test_statistics(self, engine: SecurityEngine, make_entry, contact_text, consent_manager):
        consent_manager.record_consent("alice", [ProcessingPurpose.LOGGING], True)
        engine.scan_log_entry(make_entry(contact_text))
        engine.scan_log_entry(make_entry("SSN: 123-45-6789"))
        engine.scan_log_entry(make_entry("nothing"))

        stats = engine.get_statistics()
        assert stats.total_scans == 3
        assert stats.total_pii_detected == 3
        assert stats.total_sanitizations == 2
        assert stats.detection_stats[PIIType.EMAIL] == 1
        assert stats.detection_stats[PIIType.SSN] == 1
        assert stats.risk_level_distribution[SensitivityLevel.RESTRICTED] == 1
        assert stats.risk_level_distribution[SensitivityLevel.PUBLIC] == 1
        assert stats.consent_compliance.total_users == 1

        perf = stats.scan_performance
        assert 0 <= perf.min_time_ms <= perf.average_time_ms <= perf.max_time_ms

    def test_statistics_are_a_copy(self, engine: SecurityEngine, make_entry):
        engine.scan_log_entry(make_entry("nothing"))
        engine.get_statistics().total_scans = 100
        assert engine.get_statistics().total_scans == 1

    def test_history_lookup(self, engine: SecurityEngine, make_entry):
        first = engine.scan_log_entry(make_entry("one"))
        second = engine.scan_log_entry(make_entry("two"))

        assert engine.get_scan_history(first.scan_id) == [first]
        assert engine.get_scan_history("scan_missing") == []
        assert [r.scan_id for r in engine.get_scan_history()] == [second.scan_id, first.scan_id]
        assert len(engine.get_scan_history(limit=1)) == 1

    def test_history_cap_evicts_oldest(self, policy, consent_manager, detector, make_entry):
        engine = SecurityEngine(
            policy, consent_manager, detector=detector, scan_history_max_entries=3
        )
        results = [engine.scan_log_entry(make_entry(f"line {i}")) for i in range(5)]

        history = engine.get_scan_history()
        assert [r.scan_id for r in history] == [r.scan_id for r in reversed(results[2:])]
        assert engine.get_scan_history(results[0].scan_id) == []


# -----------------------------------------------------------------------
# Consent manager listener
# -----------------------------------------------------------------------


class TestClose:

    def test_close_detaches_listener(self, policy, consent_manager, detector):
        first = SecurityEngine(policy, consent_manager, detector=detector)
        second = SecurityEngine(policy, consent_manager, detector=detector)
        before = len(consent_manager._listeners)

        first.close()
        second.close()

        assert len(consent_manager._listeners) == before - 2
        assert consent_manager.remove_listener(first._on_consent_change) is False

    def test_close_twice_is_harmless(self, engine: SecurityEngine, consent_manager):
        engine.close()
        engine.close()
        consent_manager.record_consent("alice", [ProcessingPurpose.LOGGING], True)
        assert consent_manager.verify_consent("alice", ProcessingPurpose.LOGGING).is_valid


# -----------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------


class TestHealthCheck:

    def test_fresh_engine_is_healthy(self, engine: SecurityEngine):
        report = engine.health_check()
        assert report.overall == HealthStatus.HEALTHY
        assert set(report.components) == {"pii_detector", "data_sanitizer", "consent_manager"}
        assert all(s == HealthStatus.HEALTHY for s in report.components.values())

    def test_unresolved_high_alert_degrades(self, engine: SecurityEngine, make_entry):
        engine.scan_log_entry(make_entry("SSN: 123-45-6789"))
        report = engine.health_check()
        assert report.overall == HealthStatus.DEGRADED
        assert report.high_alerts == 1

        alert = engine.get_security_alerts()[0]
        engine.resolve_security_alert(alert.id)
        assert engine.health_check().high_alerts == 0

    def test_failing_scans_make_it_unhealthy(self, policy, consent_manager, make_entry):
        detector = _mock_detector(side_effect=RuntimeError("boom"))
        engine = SecurityEngine(policy, consent_manager, detector=detector)
        engine.scan_log_entry(make_entry("x"))

        report = engine.health_check()
        assert report.recent_error_rate == 1.0
        assert report.overall == HealthStatus.UNHEALTHY

    def test_slow_detector_is_unhealthy(self, policy, consent_manager):
        detector = _mock_detector(return_value=[])
        detector.get_performance_metrics.return_value = PerformanceMetrics(
            total_scans=1, total_scan_time_ms=50.0, average_scan_time_ms=50.0
        )
        engine = SecurityEngine(policy, consent_manager, detector=detector)

        report = engine.health_check()
        assert report.components["pii_detector"] == HealthStatus.UNHEALTHY
        assert report.overall == HealthStatus.UNHEALTHY

    def test_failing_component_probe(self, engine: SecurityEngine):
        with patch.object(
            ConsentManager, "get_consent_statistics", side_effect=RuntimeError("down")
        ):
            report = engine.health_check()
        assert report.components["consent_manager"] == HealthStatus.UNHEALTHY
        assert report.overall == HealthStatus.UNHEALTHY


# -----------------------------------------------------------------------
# Audit report
# -----------------------------------------------------------------------


class TestAuditReport:

    def test_report_contents(self, engine: SecurityEngine, consent_manager, make_entry):
        consent_manager.record_consent("alice", [ProcessingPurpose.LOGGING], True)
        engine.scan_log_entry(make_entry("SSN: 123-45-6789"), ScanOptions(user_id="alice"))
        engine.scan_log_entry(make_entry("nothing"), ScanOptions(user_id="bob"))

        report = engine.export_security_audit_report()
        assert report.report_id.startswith("security_audit_")
        assert len(report.scan_history) == 2
        assert len(report.alerts) == 1
        assert report.policy_compliance.total_scans == 2
        assert report.policy_compliance.compliance_rate == 1.0

    def test_user_filter(self, engine: SecurityEngine, consent_manager, make_entry):
        consent_manager.record_consent("alice", [ProcessingPurpose.LOGGING], True)
        consent_manager.record_consent("bob", [ProcessingPurpose.LOGGING], True)
        engine.scan_log_entry(make_entry("one"), ScanOptions(user_id="alice"))
        engine.scan_log_entry(make_entry("two"), ScanOptions(user_id="bob"))

        report = engine.export_security_audit_report(user_id="alice")
        assert [r.scanned_text for r in report.scan_history] == ["one"]
        assert {e.user_id for e in report.consent_audit} == {"alice"}
        assert report.coverage.user_id == "alice"

    def test_failed_scans_lower_compliance(self, consent_manager, detector, make_entry):
        engine = SecurityEngine(
            SecurityPolicy(require_explicit_consent=True), consent_manager, detector=detector
        )
        engine.scan_log_entry(make_entry("one"), ScanOptions(user_id="nobody"))
        engine.scan_log_entry(make_entry("two"))

        compliance = engine.export_security_audit_report().policy_compliance
        assert compliance.total_scans == 2
        assert compliance.compliant_scans == 1
        assert compliance.compliance_rate == pytest.approx(0.5)

    def test_empty_report_is_fully_compliant(self, engine: SecurityEngine):
        compliance = engine.export_security_audit_report().policy_compliance
        assert compliance.total_scans == 0
        assert compliance.compliance_rate == 1.0

    def test_json_export(self, engine: SecurityEngine, consent_manager, make_entry):
        consent_manager.record_consent("alice", [ProcessingPurpose.LOGGING], True)
        engine.scan_log_entry(make_entry("SSN: 123-45-6789"), ScanOptions(user_id="alice"))

        payload = json.loads(engine.export_security_audit_report_json(user_id="alice"))

        assert payload["coverage"]["user_id"] == "alice"
        assert payload["statistics"]["detection_stats"]["ssn"] == 1
        scan = payload["scan_history"][0]
        assert scan["classification"]["sensitivity_level"] == "restricted"
        assert scan["log_entry"]["sanitized_message"] == "SSN: ***-**-****"
        assert payload["consent_audit"][0]["event_type"] == "consent_given"
        assert payload["alerts"][0]["severity"] == "high"
