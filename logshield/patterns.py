from __future__ import annotations

import dataclasses
import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator

from schemas.entities import PIIType

logger = logging.getLogger(__name__)

# Built-in patterns use ASCII semantics for \d, \w and \b so that only
# ASCII digits are treated as card / SSN / phone digits.
_BUILTIN_FLAGS = re.IGNORECASE | re.ASCII


class InvalidPatternError(ValueError):
    """Raised when a custom PII pattern cannot be registered."""


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PIIPattern:
    """A single detection rule: a compiled matcher plus its scoring hints."""

    name: str
    type: PIIType
    matcher: re.Pattern[str]
    base_confidence: float
    requires_context: bool = False
    description: str = ""
    validator: Callable[[str], bool] | None = None


def _compile(regex: str) -> re.Pattern[str]:
    return re.compile(regex, _BUILTIN_FLAGS)


# ---------------------------------------------------------------------------
# Built-in validators
# ---------------------------------------------------------------------------


def _looks_like_api_key(value: str) -> bool:
    return (
        len(value) >= 32
        and re.search(r"[A-Z]", value) is not None
        and re.search(r"[a-z]", value) is not None
        and re.search(r"[0-9]", value) is not None
    )


def _has_three_jwt_segments(value: str) -> bool:
    parts = value.split(".")
    return len(parts) == 3 and all(parts)


# ---------------------------------------------------------------------------
# Built-in pattern table
# ---------------------------------------------------------------------------


def default_patterns() -> list[PIIPattern]:
    """Return the built-in detection patterns, grouped by type in scan order."""
    return [
        # Payment cards
        PIIPattern(
            name="visa",
            type=PIIType.CREDIT_CARD,
            matcher=_compile(r"\b4\d{3}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"),
            base_confidence=0.9,
            requires_context=True,
            description="Visa credit card number",
        ),
        PIIPattern(
            name="mastercard",
            type=PIIType.CREDIT_CARD,
            matcher=_compile(r"\b5[1-5]\d{2}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"),
            base_confidence=0.9,
            requires_context=True,
            description="Mastercard credit card number",
        ),
        PIIPattern(
            name="amex",
            type=PIIType.CREDIT_CARD,
            matcher=_compile(r"\b3[47]\d{2}[\s-]?\d{6}[\s-]?\d{5}\b"),
            base_confidence=0.9,
            requires_context=True,
            description="American Express credit card number",
        ),
        PIIPattern(
            name="discover",
            type=PIIType.CREDIT_CARD,
            matcher=_compile(r"\b6(?:011|5\d{2})[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"),
            base_confidence=0.9,
            requires_context=True,
            description="Discover credit card number",
        ),
        # Social security numbers
        PIIPattern(
            name="ssn_standard",
            type=PIIType.SSN,
            matcher=_compile(r"\b\d{3}[-.\s]?\d{2}[-.\s]?\d{4}\b"),
            base_confidence=0.8,
            requires_context=True,
            description="Social Security Number",
        ),
        # Email
        PIIPattern(
            name="email_standard",
            type=PIIType.EMAIL,
            matcher=_compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b"),
            base_confidence=0.95,
            description="Email address",
        ),
        # Phone numbers
        PIIPattern(
            name="us_phone",
            type=PIIType.PHONE,
            matcher=_compile(
                r"\b(?:\+?1[-.\s]?)?\(?([0-9]{3})\)?[-.\s]?([0-9]{3})[-.\s]?([0-9]{4})\b"
            ),
            base_confidence=0.85,
            requires_context=True,
            description="US phone number",
        ),
        PIIPattern(
            name="international_phone",
            type=PIIType.PHONE,
            matcher=_compile(r"\+(?:[0-9] ?){6,14}[0-9]"),
            base_confidence=0.8,
            requires_context=True,
            description="International phone number",
        ),
        # Network addresses
        PIIPattern(
            name="ipv4",
            type=PIIType.IP_ADDRESS,
            matcher=_compile(
                r"\b(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}"
                r"(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\b"
            ),
            base_confidence=0.9,
            description="IPv4 address",
        ),
        PIIPattern(
            name="ipv6",
            type=PIIType.IP_ADDRESS,
            matcher=_compile(r"\b(?:[0-9a-fA-F]{1,4}:){7}[0-9a-fA-F]{1,4}\b"),
            base_confidence=0.9,
            description="IPv6 address",
        ),
        # Credentials
        PIIPattern(
            name="generic_api_key",
            type=PIIType.API_KEY,
            matcher=_compile(r"\b[A-Za-z0-9]{32,}\b"),
            base_confidence=0.7,
            requires_context=True,
            description="Generic API key",
            validator=_looks_like_api_key,
        ),
        PIIPattern(
            name="aws_access_key",
            type=PIIType.API_KEY,
            matcher=_compile(r"\bAKIA[0-9A-Z]{16}\b"),
            base_confidence=0.95,
            description="AWS Access Key",
        ),
        PIIPattern(
            name="github_token",
            type=PIIType.API_KEY,
            matcher=_compile(r"\bghp_[0-9a-zA-Z]{36}\b"),
            base_confidence=0.95,
            description="GitHub Personal Access Token",
        ),
        PIIPattern(
            name="jwt_token",
            type=PIIType.JWT,
            matcher=_compile(r"\beyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*\b"),
            base_confidence=0.9,
            description="JWT token",
            validator=_has_three_jwt_segments,
        ),
        PIIPattern(
            name="password_in_url",
            type=PIIType.PASSWORD,
            matcher=_compile(r"password=([^&\s]+)"),
            base_confidence=0.9,
            description="Password in URL parameter",
        ),
        PIIPattern(
            name="password_assignment",
            type=PIIType.PASSWORD,
            matcher=_compile(r"(?:password|pwd|pass)\s*[:=]\s*['\"]([^'\"]+)['\"]"),
            base_confidence=0.8,
            description="Password assignment in code",
        ),
    ]


# ---------------------------------------------------------------------------
# Library
# ---------------------------------------------------------------------------


class PatternLibrary:
    """Registry of built-in and custom PII patterns.

    Built-ins are fixed at construction; custom patterns can be added and
    removed at runtime.  Both are plain :class:`PIIPattern` instances, so the
    detector treats them identically.
    """

    def __init__(self, builtins: Iterable[PIIPattern] | None = None) -> None:
        self._builtin: dict[PIIType, list[PIIPattern]] = {}
        for pattern in default_patterns() if builtins is None else builtins:
            self._builtin.setdefault(pattern.type, []).append(pattern)
        self._custom: list[PIIPattern] = []

    # -- iteration -----------------------------------------------------------

    def __iter__(self) -> Iterator[PIIPattern]:
        for patterns in self._builtin.values():
            yield from patterns
        yield from self._custom

    def __len__(self) -> int:
        return sum(len(p) for p in self._builtin.values()) + len(self._custom)

    @property
    def custom_patterns(self) -> list[PIIPattern]:
        return list(self._custom)

    def supported_types(self) -> list[PIIType]:
        types = list(self._builtin.keys())
        for pattern in self._custom:
            if pattern.type not in types:
                types.append(pattern.type)
        return types

    # -- custom patterns -----------------------------------------------------

    def add_custom_pattern(self, pattern: PIIPattern) -> PIIPattern:
        """Validate and register *pattern*, returning the stored copy.

        ``pattern.matcher`` may be a compiled pattern or a regex string; it is
        recompiled case-insensitively.

        Raises
        ------
        InvalidPatternError
            If a required field is missing, the confidence is out of range,
            or the regex does not compile or cannot be searched.
        """
        if not pattern.name or not pattern.type or not pattern.matcher:
            raise InvalidPatternError("Invalid PII pattern: missing required fields")

        try:
            pii_type = PIIType(pattern.type)
        except ValueError as exc:
            raise InvalidPatternError(f"Unknown PII type: {pattern.type!r}") from exc

        if not 0.0 <= pattern.base_confidence <= 1.0:
            raise InvalidPatternError(
                f"base_confidence must be between 0 and 1, got {pattern.base_confidence}"
            )

        source = pattern.matcher
        try:
            if isinstance(source, re.Pattern):
                compiled = re.compile(source.pattern, source.flags | re.IGNORECASE)
            else:
                compiled = re.compile(source, re.IGNORECASE)
            compiled.search("test")
        except (re.error, TypeError) as exc:
            raise InvalidPatternError(f"Invalid regex pattern: {exc}") from exc

        stored = dataclasses.replace(pattern, type=pii_type, matcher=compiled)
        self._custom.append(stored)
        logger.info("Registered custom PII pattern %r (%s)", stored.name, pii_type.value)
        return stored

    def remove_custom_pattern(self, name: str) -> bool:
        """Remove the first custom pattern called *name*; return whether one was found."""
        for index, pattern in enumerate(self._custom):
            if pattern.name == name:
                del self._custom[index]
                logger.info("Removed custom PII pattern %r", name)
                return True
        return False
