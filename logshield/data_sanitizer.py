from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from logshield.hashing import keyed_digest
from logshield.pii_detector import PIIDetectionResult, PIIDetector
from schemas.entities import PIIType, SanitizationStrategy
from schemas.policy import SanitizationConfig

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SanitizationAction:
    """Audit record for one rewritten value.  Never holds the plaintext."""

    pii_type: PIIType
    strategy: SanitizationStrategy
    original_value_hash: str
    sanitized_value: str
    position: tuple[int, int]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class SanitizationResult:
    original_text: str
    sanitized_text: str
    sanitized_detections: list[PIIDetectionResult]
    actions: list[SanitizationAction]
    was_modified: bool


@dataclass
class ObjectSanitizationResult:
    sanitized_data: Any
    actions: list[SanitizationAction]
    pii_found: bool


@dataclass
class SanitizationStatistics:
    total_actions: int
    actions_by_type: dict[PIIType, int]
    actions_by_strategy: dict[SanitizationStrategy, int]
    last_action_time: datetime | None


# ---------------------------------------------------------------------------
# Key / string heuristics for structured data
# ---------------------------------------------------------------------------

_SENSITIVE_KEY = re.compile(
    r"password|passwd|pwd|secret|token|key|auth|credential"
    r"|ssn|social|credit|card|cvv|cvc|pin",
    re.IGNORECASE,
)

# Checked in order; first hit decides the type.
_KEY_TYPE_RULES: list[tuple[re.Pattern[str], PIIType]] = [
    (re.compile(r"password|passwd|pwd", re.IGNORECASE), PIIType.PASSWORD),
    (re.compile(r"token|auth", re.IGNORECASE), PIIType.JWT),
    (re.compile(r"key", re.IGNORECASE), PIIType.API_KEY),
    (re.compile(r"ssn|social", re.IGNORECASE), PIIType.SSN),
    (re.compile(r"credit|card", re.IGNORECASE), PIIType.CREDIT_CARD),
]

# Quoted assignments inside free text: (pattern, type).  Group 1 is the value.
_ASSIGNMENT_PATTERNS: list[tuple[re.Pattern[str], PIIType]] = [
    (re.compile(r"password\s*[:=]\s*['\"]([^'\"]+)['\"]", re.IGNORECASE), PIIType.PASSWORD),
    (re.compile(r"api[_-]?key\s*[:=]\s*['\"]([^'\"]+)['\"]", re.IGNORECASE), PIIType.API_KEY),
    (re.compile(r"token\s*[:=]\s*['\"]([^'\"]+)['\"]", re.IGNORECASE), PIIType.JWT),
]

_DIGIT = re.compile(r"[0-9]")
_ALNUM = re.compile(r"[a-zA-Z0-9]")


def infer_pii_type_from_key(key: str) -> PIIType:
    for pattern, pii_type in _KEY_TYPE_RULES:
        if pattern.search(key):
            return pii_type
    return PIIType.CUSTOM


def is_sensitive_key(key: str) -> bool:
    return _SENSITIVE_KEY.search(key) is not None


# ---------------------------------------------------------------------------
# Sanitizer
# ---------------------------------------------------------------------------


class DataSanitizer:
    """Rewrites detected PII according to a per-type strategy.

    Replacements are spliced right-to-left so that the offsets of the
    remaining detections stay valid.  Every replacement is appended to an
    audit trail that records a salted hash of the original value, never the
    value itself.

    Args:
        config: Strategy map, masking and hashing options.
        detector: Optional detector used by :meth:`sanitize_object` to find
            PII in free-text string leaves.
    """

    def __init__(
        self,
        config: SanitizationConfig | None = None,
        detector: PIIDetector | None = None,
    ) -> None:
        self.config = config or SanitizationConfig()
        self.detector = detector
        self._audit_trail: list[SanitizationAction] = []
        self._hash_cache: dict[str, str] = {}

    # -- configuration -------------------------------------------------------

    def get_strategy_for_pii_type(self, pii_type: PIIType) -> SanitizationStrategy:
        return self.config.type_strategies.get(pii_type, self.config.default_strategy)

    def update_config(self, **changes: Any) -> SanitizationConfig:
        """Apply *changes* to the config, re-validating the result."""
        merged = {**self.config.model_dump(), **changes}
        new_config = SanitizationConfig.model_validate(merged)
        if new_config.hash_salt != self.config.hash_salt:
            self._hash_cache.clear()
        self.config = new_config
        return new_config

    # -- text ------------------------------------------------------------------

    def sanitize_text(
        self, original_text: str, detections: list[PIIDetectionResult]
    ) -> SanitizationResult:
        if not detections:
            return SanitizationResult(
                original_text=original_text,
                sanitized_text=original_text,
                sanitized_detections=[],
                actions=[],
                was_modified=False,
            )

        sanitized_text = original_text
        actions: list[SanitizationAction] = []
        sanitized_detections: list[PIIDetectionResult] = []

        # Right-to-left so earlier offsets are untouched by each splice.
        for detection in sorted(detections, key=lambda d: d.start_index, reverse=True):
            strategy = self.get_strategy_for_pii_type(detection.type)
            replacement = self._apply_strategy(detection.value, detection.type, strategy)
            sanitized_text = (
                sanitized_text[: detection.start_index]
                + replacement
                + sanitized_text[detection.end_index :]
            )
            actions.append(
                self._record(
                    detection.type,
                    strategy,
                    detection.value,
                    replacement,
                    (detection.start_index, detection.end_index),
                )
            )
            sanitized_detections.append(
                replace(detection, end_index=detection.start_index + len(replacement))
            )

        # Ascending order, shifted by the length change of earlier replacements.
        sanitized_detections.reverse()
        shift = 0
        for index, detection in enumerate(sanitized_detections):
            sanitized_detections[index] = replace(
                detection,
                start_index=detection.start_index + shift,
                end_index=detection.end_index + shift,
            )
            shift += (detection.end_index - detection.start_index) - len(detection.value)

        logger.debug("Sanitized %d detection(s)", len(actions))
        return SanitizationResult(
            original_text=original_text,
            sanitized_text=sanitized_text,
            sanitized_detections=sanitized_detections,
            actions=actions,
            was_modified=True,
        )

    # -- structured data -----------------------------------------------------

    def sanitize_object(self, data: Any, max_depth: int = 10) -> ObjectSanitizationResult:
        """Recursively sanitize dicts, lists/tuples and string leaves.

        Values under sensitive-looking keys are rewritten whatever their
        shape.  Recursion stops at *max_depth*; deeper values are returned
        untouched, which also bounds cyclic structures.
        """
        actions: list[SanitizationAction] = []
        sanitized = self._sanitize_value(data, max_depth, actions)
        return ObjectSanitizationResult(
            sanitized_data=sanitized, actions=actions, pii_found=bool(actions)
        )

    def _sanitize_value(self, value: Any, depth: int, actions: list[SanitizationAction]) -> Any:
        if depth <= 0:
            return value
        if isinstance(value, str):
            return self._sanitize_string(value, actions)
        if isinstance(value, (list, tuple)):
            items = [self._sanitize_value(item, depth - 1, actions) for item in value]
            return tuple(items) if isinstance(value, tuple) else items
        if isinstance(value, dict):
            result = {}
            for key, item in value.items():
                if isinstance(key, str) and is_sensitive_key(key):
                    result[key] = self._sanitize_keyed_value(key, item, actions)
                else:
                    result[key] = self._sanitize_value(item, depth - 1, actions)
            return result
        return value

    def _sanitize_keyed_value(self, key: str, value: Any, actions: list[SanitizationAction]) -> Any:
        if not isinstance(value, str):
            raw = str(value)
            actions.append(
                self._record(
                    PIIType.CUSTOM, SanitizationStrategy.REMOVE, raw, REDACTED, (0, len(raw))
                )
            )
            return REDACTED

        pii_type = infer_pii_type_from_key(key)
        strategy = self.get_strategy_for_pii_type(pii_type)
        sanitized = self._apply_strategy(value, pii_type, strategy)
        if sanitized != value:
            actions.append(self._record(pii_type, strategy, value, sanitized, (0, len(value))))
        return sanitized

    def _sanitize_string(self, value: str, actions: list[SanitizationAction]) -> str:
        text = value
        if self.detector is not None:
            result = self.sanitize_text(text, self.detector.scan_text(text))
            actions.extend(result.actions)
            text = result.sanitized_text

        for pattern, pii_type in _ASSIGNMENT_PATTERNS:
            text = pattern.sub(lambda m: self._redact_assignment(m, pii_type, actions), text)
        return text

    def _redact_assignment(
        self, match: re.Match[str], pii_type: PIIType, actions: list[SanitizationAction]
    ) -> str:
        secret = match.group(1)
        strategy = SanitizationStrategy.REMOVE
        replacement = self._apply_strategy(secret, pii_type, strategy)
        actions.append(self._record(pii_type, strategy, secret, replacement, match.span()))
        value_start, value_end = match.span(1)
        offset = match.start()
        whole = match.group(0)
        return whole[: value_start - offset] + replacement + whole[value_end - offset :]

    # -- audit trail ---------------------------------------------------------

    def get_audit_trail(self) -> list[SanitizationAction]:
        return list(self._audit_trail)

    def clear_audit_trail(self) -> None:
        self._audit_trail.clear()

    def get_statistics(self) -> SanitizationStatistics:
        by_type = Counter(action.pii_type for action in self._audit_trail)
        by_strategy = Counter(action.strategy for action in self._audit_trail)
        return SanitizationStatistics(
            total_actions=len(self._audit_trail),
            actions_by_type=dict(by_type),
            actions_by_strategy=dict(by_strategy),
            last_action_time=self._audit_trail[-1].timestamp if self._audit_trail else None,
        )

    def _record(
        self,
        pii_type: PIIType,
        strategy: SanitizationStrategy,
        original: str,
        sanitized: str,
        position: tuple[int, int],
    ) -> SanitizationAction:
        action = SanitizationAction(
            pii_type=pii_type,
            strategy=strategy,
            original_value_hash=self._hash_value(original),
            sanitized_value=sanitized,
            position=position,
        )
        self._audit_trail.append(action)
        return action

    # -- strategies ----------------------------------------------------------

    def _apply_strategy(
        self, value: str, pii_type: PIIType, strategy: SanitizationStrategy
    ) -> str:
        if strategy == SanitizationStrategy.HASH:
            return self._hash_value(value)
        if strategy == SanitizationStrategy.REMOVE:
            return REDACTED
        if strategy == SanitizationStrategy.PARTIAL:
            return self._partial_mask(value, pii_type)
        return self._mask(value, pii_type)

    def _hash_value(self, value: str) -> str:
        cached = self._hash_cache.get(value)
        if cached is None:
            cached = f"[HASH:{keyed_digest(value, self.config.hash_salt)[:8]}]"
            self._hash_cache[value] = cached
        return cached

    def _mask(self, value: str, pii_type: PIIType) -> str:
        char = self.config.mask_character
        if not self.config.preserve_format:
            return char * len(value)

        if pii_type in (PIIType.CREDIT_CARD, PIIType.SSN, PIIType.PHONE):
            return _DIGIT.sub(char, value)
        if pii_type == PIIType.EMAIL and "@" in value:
            local, _, domain = value.partition("@")
            if len(local) > 2:
                local = local[0] + char * (len(local) - 2) + local[-1]
            else:
                local = char * len(local)
            return f"{local}@{domain}"
        return _ALNUM.sub(char, value)

    def _partial_mask(self, value: str, pii_type: PIIType) -> str:
        char = self.config.mask_character
        preserve = min(self.config.partial_preserve_length, len(value) // 3)
        if len(value) <= preserve * 2:
            return self._mask(value, pii_type)

        if pii_type == PIIType.EMAIL and "@" in value:
            local, _, domain = value.partition("@")
            if len(local) <= 4:
                return f"{local[:1]}{char * (len(local) - 1)}@{domain}"
            return f"{local[:2]}{char * (len(local) - 4)}{local[-2:]}@{domain}"

        if pii_type == PIIType.CREDIT_CARD:
            return self._keep_digit_ends(value, 4, 8, pii_type)
        if pii_type == PIIType.PHONE:
            return self._keep_digit_ends(value, 3, 7, pii_type)

        return value[:preserve] + char * (len(value) - preserve * 2) + value[len(value) - preserve :]

    def _keep_digit_ends(self, value: str, keep: int, minimum: int, pii_type: PIIType) -> str:
        """Mask the digits of *value* except the first and last *keep* digits.

        Separators stay in place.  Values with fewer than *minimum* digits
        are fully masked instead.
        """
        digit_count = len(_DIGIT.findall(value))
        if digit_count < minimum:
            return self._mask(value, pii_type)

        out = []
        index = 0
        for ch in value:
            if ch.isdigit() and ch.isascii():
                if keep <= index < digit_count - keep:
                    ch = self.config.mask_character
                index += 1
            out.append(ch)
        return "".join(out)
