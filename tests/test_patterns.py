"""Tests for logshield.patterns: built-in table and custom pattern registry."""

from __future__ import annotations

import re

import pytest

from logshield.patterns import InvalidPatternError, PatternLibrary, PIIPattern, default_patterns
from logshield.pii_detector import PIIDetector
from schemas.entities import PIIType


def _custom(name="customer_id", matcher=r"CUST-\d{6}", **kwargs) -> PIIPattern:
    return PIIPattern(
        name=name,
        type=kwargs.pop("type", PIIType.CUSTOM),
        matcher=matcher,
        base_confidence=kwargs.pop("base_confidence", 0.8),
        **kwargs,
    )


# -----------------------------------------------------------------------
# Built-ins
# -----------------------------------------------------------------------


class TestBuiltinPatterns:

    def test_builtin_order(self):
        names = [p.name for p in default_patterns()]
        assert names[:5] == ["visa", "mastercard", "amex", "discover", "ssn_standard"]
        assert names[-2:] == ["password_in_url", "password_assignment"]

    def test_builtins_are_case_insensitive(self):
        for pattern in default_patterns():
            assert pattern.matcher.flags & re.IGNORECASE

    def test_supported_types_exclude_custom_by_default(self):
        types = PatternLibrary().supported_types()
        assert PIIType.EMAIL in types
        assert PIIType.CUSTOM not in types

    def test_library_iterates_all_patterns(self):
        library = PatternLibrary()
        assert len(list(library)) == len(default_patterns()) == len(library)


# -----------------------------------------------------------------------
# Custom patterns
# -----------------------------------------------------------------------


class TestCustomPatterns:

    def test_custom_pattern_detected(self, detector: PIIDetector):
        detector.add_custom_pattern(_custom())
        results = detector.scan_text("Customer CUST-123456 logged in")

        assert len(results) == 1
        assert results[0].type == PIIType.CUSTOM
        assert results[0].value == "CUST-123456"
        assert results[0].pattern_name == "customer_id"
        assert results[0].confidence == pytest.approx(0.8)

    def test_custom_pattern_compiled_case_insensitive(self, detector: PIIDetector):
        detector.add_custom_pattern(_custom())
        assert len(detector.scan_text("customer cust-654321")) == 1

    def test_precompiled_matcher_accepted(self):
        library = PatternLibrary()
        stored = library.add_custom_pattern(_custom(matcher=re.compile(r"EMP\d{4}")))
        assert stored.matcher.flags & re.IGNORECASE
        assert library.custom_patterns == [stored]

    def test_custom_type_reported_as_supported(self, detector: PIIDetector):
        detector.add_custom_pattern(_custom())
        assert PIIType.CUSTOM in detector.get_supported_pii_types()

    def test_string_type_is_coerced(self):
        stored = PatternLibrary().add_custom_pattern(_custom(type="custom"))
        assert stored.type is PIIType.CUSTOM

    def test_remove_custom_pattern(self, detector: PIIDetector):
        detector.add_custom_pattern(_custom())
        assert detector.remove_custom_pattern("customer_id") is True
        assert detector.remove_custom_pattern("customer_id") is False
        assert detector.scan_text("Customer CUST-123456") == []

    def test_validator_is_applied(self, detector: PIIDetector):
        detector.add_custom_pattern(
            _custom(matcher=r"CUST-\d{6}", validator=lambda v: v.endswith("0"))
        )
        assert detector.scan_text("CUST-123456") == []
        results = detector.scan_text("CUST-123450")
        assert results[0].confidence == pytest.approx(0.9)

    def test_raising_validator_skips_match(self, detector: PIIDetector):
        def boom(value: str) -> bool:
            raise RuntimeError("bad validator")

        detector.add_custom_pattern(_custom(validator=boom))
        assert detector.scan_text("CUST-123456") == []


class TestInvalidCustomPatterns:

    def test_invalid_regex(self):
        with pytest.raises(InvalidPatternError, match="Invalid regex"):
            PatternLibrary().add_custom_pattern(_custom(matcher="[unclosed"))

    def test_missing_name(self):
        with pytest.raises(InvalidPatternError, match="missing required fields"):
            PatternLibrary().add_custom_pattern(_custom(name=""))

    def test_missing_matcher(self):
        with pytest.raises(InvalidPatternError):
            PatternLibrary().add_custom_pattern(_custom(matcher=""))

    def test_unknown_type(self):
        with pytest.raises(InvalidPatternError, match="Unknown PII type"):
            PatternLibrary().add_custom_pattern(_custom(type="passport"))

    def test_confidence_out_of_range(self):
        with pytest.raises(InvalidPatternError):
            PatternLibrary().add_custom_pattern(_custom(base_confidence=1.5))

    def test_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            PatternLibrary().add_custom_pattern(_custom(matcher="(?P<x"))

    def test_failed_registration_leaves_library_unchanged(self):
        library = PatternLibrary()
        with pytest.raises(InvalidPatternError):
            library.add_custom_pattern(_custom(matcher="[unclosed"))
        assert library.custom_patterns == []
