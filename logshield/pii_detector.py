from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Iterator, Mapping

from logshield.patterns import PatternLibrary, PIIPattern
from schemas.entities import PIIType

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_THRESHOLD = 0.8
VALIDATOR_BOOST = 0.1
DEFAULT_CONTEXT_WINDOW = 20
DEFAULT_CONTEXT_MULTIPLIER = 0.8

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PIIDetectionResult:
    """A single PII match with its final confidence score."""

    type: PIIType
    value: str
    start_index: int
    end_index: int
    confidence: float
    pattern_name: str
    high_confidence: bool = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "high_confidence", self.confidence >= HIGH_CONFIDENCE_THRESHOLD
        )

    def overlaps(self, other: PIIDetectionResult) -> bool:
        return self.start_index < other.end_index and self.end_index > other.start_index


@dataclass
class PerformanceMetrics:
    total_scans: int = 0
    total_scan_time_ms: float = 0.0
    average_scan_time_ms: float = 0.0
    last_scan_time_ms: float = 0.0


@dataclass(frozen=True)
class ContextRule:
    """Keyword tiers checked in order; the first tier with a hit wins."""

    tiers: tuple[tuple[tuple[str, ...], float], ...]
    fallback: float = DEFAULT_CONTEXT_MULTIPLIER

    def multiplier(self, context: str) -> float:
        for keywords, score in self.tiers:
            if any(keyword in context for keyword in keywords):
                return score
        return self.fallback


# ---------------------------------------------------------------------------
# Context keyword tables
# ---------------------------------------------------------------------------

_TOKEN_RULE = ContextRule(tiers=((("key", "token", "auth", "api", "bearer"), 1.0),))

DEFAULT_CONTEXT_RULES: dict[PIIType, ContextRule] = {
    PIIType.EMAIL: ContextRule(
        tiers=(
            (("email", "mail", "@"), 1.0),
            (("user", "login", "account"), 0.9),
        ),
    ),
    PIIType.CREDIT_CARD: ContextRule(
        tiers=(
            (("card", "payment", "visa", "mastercard", "amex"), 1.0),
            (("number", "cc", "credit"), 0.9),
        ),
        fallback=0.7,
    ),
    PIIType.SSN: ContextRule(
        tiers=(
            (("ssn", "social", "security"), 1.0),
            (("tax", "id", "number"), 0.8),
        ),
        fallback=0.6,
    ),
    PIIType.PHONE: ContextRule(
        tiers=((("phone", "tel", "call", "mobile", "contact"), 1.0),),
    ),
    PIIType.API_KEY: _TOKEN_RULE,
    PIIType.JWT: _TOKEN_RULE,
}


# ---------------------------------------------------------------------------
# Semantic validators
# ---------------------------------------------------------------------------

_EMAIL_SHAPE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NON_DIGIT = re.compile(r"\D")


def _digits(value: str) -> str:
    return _NON_DIGIT.sub("", value)


def is_luhn_valid(value: str) -> bool:
    """Luhn checksum over the digits of *value* (13-19 digits required)."""
    digits = _digits(value)
    if not 13 <= len(digits) <= 19:
        return False
    total = 0
    for position, char in enumerate(reversed(digits)):
        digit = int(char)
        if position % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def is_valid_email(value: str) -> bool:
    return _EMAIL_SHAPE.match(value) is not None and ".." not in value


def is_valid_ssn(value: str) -> bool:
    """Reject reserved SSN areas (000, 666, 900-999), group 00 and serial 0000."""
    digits = _digits(value)
    if len(digits) != 9:
        return False
    area, group, serial = digits[:3], digits[3:5], digits[5:]
    if area in ("000", "666") or area.startswith("9"):
        return False
    return group != "00" and serial != "0000"


def is_plausible_phone(value: str) -> bool:
    return 10 <= len(_digits(value)) <= 15


# Type -> (check, multiplier applied when the check fails)
DEFAULT_SEMANTIC_CHECKS: dict[PIIType, tuple[Callable[[str], bool], float]] = {
    PIIType.CREDIT_CARD: (is_luhn_valid, 0.5),
    PIIType.EMAIL: (is_valid_email, 0.3),
    PIIType.SSN: (is_valid_ssn, 0.2),
    PIIType.PHONE: (is_plausible_phone, 0.6),
}


# ---------------------------------------------------------------------------
# Overlap resolution
# ---------------------------------------------------------------------------


def remove_overlaps(detections: list[PIIDetectionResult]) -> list[PIIDetectionResult]:
    """Greedy overlap removal: keep the highest-confidence span, drop collisions.

    Ties on confidence are broken by the earlier start.  ``sorted`` is
    stable, so equal keys keep their pattern order.  The result is ordered
    by start index.
    """
    ranked = sorted(detections, key=lambda d: (-d.confidence, d.start_index))
    accepted: list[PIIDetectionResult] = []
    for detection in ranked:
        if any(detection.overlaps(kept) for kept in accepted):
            continue
        accepted.append(detection)
    accepted.sort(key=lambda d: d.start_index)
    return accepted


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------


class PIIDetector:
    """Scans text against a :class:`PatternLibrary` and scores each match.

    Each match starts at its pattern's base confidence and is adjusted, in
    order, by the pattern validator, the surrounding-keyword context and a
    type-specific semantic check.  Scoring constants are plain constructor
    arguments so callers can tune them without subclassing.
    """

    def __init__(
        self,
        library: PatternLibrary | None = None,
        context_window: int = DEFAULT_CONTEXT_WINDOW,
        context_rules: Mapping[PIIType, ContextRule] | None = None,
        semantic_checks: Mapping[PIIType, tuple[Callable[[str], bool], float]] | None = None,
    ) -> None:
        self.library = library if library is not None else PatternLibrary()
        self.context_window = context_window
        self.context_rules = dict(DEFAULT_CONTEXT_RULES if context_rules is None else context_rules)
        self.semantic_checks = dict(
            DEFAULT_SEMANTIC_CHECKS if semantic_checks is None else semantic_checks
        )
        self._metrics = PerformanceMetrics()
        logger.info("PII detector initialised with %d patterns", len(self.library))

    # -- public API ----------------------------------------------------------

    def scan_text(self, text: str, min_confidence: float = 0.7) -> list[PIIDetectionResult]:
        """Return non-overlapping detections scoring at least *min_confidence*."""
        started = time.perf_counter()
        try:
            if not text:
                return []
            detections = [
                detection
                for pattern in self.library
                for detection in self._find_matches(text, pattern)
                if detection.confidence >= min_confidence
            ]
            return remove_overlaps(detections)
        finally:
            self._record_scan_time((time.perf_counter() - started) * 1000)

    def add_custom_pattern(self, pattern: PIIPattern) -> PIIPattern:
        return self.library.add_custom_pattern(pattern)

    def remove_custom_pattern(self, name: str) -> bool:
        return self.library.remove_custom_pattern(name)

    def get_supported_pii_types(self) -> list[PIIType]:
        return self.library.supported_types()

    def get_performance_metrics(self) -> PerformanceMetrics:
        return replace(self._metrics)

    def reset_performance_metrics(self) -> None:
        self._metrics = PerformanceMetrics()

    # -- scoring -------------------------------------------------------------

    def _find_matches(self, text: str, pattern: PIIPattern) -> Iterator[PIIDetectionResult]:
        for match in pattern.matcher.finditer(text):
            value = match.group(0)
            if not value:
                continue

            confidence = pattern.base_confidence
            if pattern.validator is not None:
                if not self._passes_validator(pattern, value):
                    continue
                confidence = min(1.0, confidence + VALIDATOR_BOOST)

            if pattern.requires_context:
                context = self._context_around(text, match.start(), match.end())
                confidence *= self._context_multiplier(pattern.type, context)

            confidence = self._apply_semantic_check(pattern.type, value, confidence)

            yield PIIDetectionResult(
                type=pattern.type,
                value=value,
                start_index=match.start(),
                end_index=match.end(),
                confidence=confidence,
                pattern_name=pattern.name,
            )

    @staticmethod
    def _passes_validator(pattern: PIIPattern, value: str) -> bool:
        try:
            return bool(pattern.validator(value))
        except Exception:
            logger.exception("Validator for pattern %r failed; skipping match", pattern.name)
            return False

    def _context_around(self, text: str, start: int, end: int) -> str:
        lo = max(0, start - self.context_window)
        hi = min(len(text), end + self.context_window)
        return text[lo:hi].lower()

    def _context_multiplier(self, pii_type: PIIType, context: str) -> float:
        rule = self.context_rules.get(pii_type)
        if rule is None:
            return DEFAULT_CONTEXT_MULTIPLIER
        return rule.multiplier(context)

    def _apply_semantic_check(self, pii_type: PIIType, value: str, confidence: float) -> float:
        check = self.semantic_checks.get(pii_type)
        if check is None:
            return confidence
        predicate, penalty = check
        return confidence if predicate(value) else confidence * penalty

    def _record_scan_time(self, elapsed_ms: float) -> None:
        m = self._metrics
        m.total_scans += 1
        m.total_scan_time_ms += elapsed_ms
        m.average_scan_time_ms = m.total_scan_time_ms / m.total_scans
        m.last_scan_time_ms = elapsed_ms
