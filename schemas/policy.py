from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from logshield.hashing import generate_salt
from schemas.entities import (
    LogLevel,
    PIIType,
    ProcessingPurpose,
    SanitizationStrategy,
)


# --- Defaults ---

DEFAULT_TYPE_STRATEGIES: dict[PIIType, SanitizationStrategy] = {
    PIIType.CREDIT_CARD: SanitizationStrategy.MASK,
    PIIType.SSN: SanitizationStrategy.MASK,
    PIIType.EMAIL: SanitizationStrategy.PARTIAL,
    PIIType.PHONE: SanitizationStrategy.PARTIAL,
    PIIType.API_KEY: SanitizationStrategy.REMOVE,
    PIIType.JWT: SanitizationStrategy.REMOVE,
    PIIType.PASSWORD: SanitizationStrategy.REMOVE,
    PIIType.IP_ADDRESS: SanitizationStrategy.HASH,
    PIIType.CUSTOM: SanitizationStrategy.MASK,
}

DEFAULT_AUTO_SANITIZE_THRESHOLDS: dict[PIIType, float] = {
    PIIType.CREDIT_CARD: 0.8,
    PIIType.SSN: 0.8,
    PIIType.EMAIL: 0.7,
    PIIType.PHONE: 0.7,
    PIIType.IP_ADDRESS: 0.7,
    PIIType.API_KEY: 0.7,
    PIIType.JWT: 0.7,
    PIIType.PASSWORD: 0.7,
    PIIType.CUSTOM: 0.7,
}

# Empirical severity weights; tests pin the resulting thresholds.
DEFAULT_TYPE_SEVERITY: dict[PIIType, float] = {
    PIIType.CREDIT_CARD: 0.9,
    PIIType.SSN: 0.9,
    PIIType.PASSWORD: 0.8,
    PIIType.API_KEY: 0.8,
    PIIType.JWT: 0.8,
    PIIType.EMAIL: 0.6,
    PIIType.PHONE: 0.6,
    PIIType.IP_ADDRESS: 0.4,
}

DEFAULT_LEVEL_MULTIPLIERS: dict[LogLevel, float] = {
    LogLevel.ERROR: 1.2,
    LogLevel.WARN: 1.1,
}


def _check_unit_interval(values: dict, what: str) -> dict:
    for key, value in values.items():
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"{what} for {key} must be between 0 and 1, got {value}")
    return values


# --- Security policy ---

class RiskModel(BaseModel):
    """Weights used to turn detections into a risk score and sensitivity level."""

    type_severity: dict[PIIType, float] = Field(
        default_factory=lambda: dict(DEFAULT_TYPE_SEVERITY)
    )
    default_severity: float = Field(0.5, ge=0.0, le=1.0)
    level_multipliers: dict[LogLevel, float] = Field(
        default_factory=lambda: dict(DEFAULT_LEVEL_MULTIPLIERS)
    )
    per_extra_detection: float = Field(0.1, ge=0.0)

    restricted_threshold: float = Field(0.8, ge=0.0, le=1.0)
    confidential_threshold: float = Field(0.6, ge=0.0, le=1.0)
    internal_threshold: float = Field(0.3, ge=0.0, le=1.0)
    restricted_types: frozenset[PIIType] = frozenset(
        {PIIType.CREDIT_CARD, PIIType.SSN, PIIType.PASSWORD}
    )
    confidential_types: frozenset[PIIType] = frozenset({PIIType.API_KEY, PIIType.JWT})

    @field_validator("type_severity")
    @classmethod
    def _severity_in_range(cls, v: dict[PIIType, float]) -> dict[PIIType, float]:
        return _check_unit_interval(v, "Severity")

    @field_validator("level_multipliers")
    @classmethod
    def _multipliers_positive(cls, v: dict[LogLevel, float]) -> dict[LogLevel, float]:
        for level, multiplier in v.items():
            if multiplier < 0:
                raise ValueError(f"Multiplier for {level} must not be negative")
        return v

    @model_validator(mode="after")
    def _thresholds_ordered(self) -> "RiskModel":
        if not (
            self.internal_threshold
            <= self.confidential_threshold
            <= self.restricted_threshold
        ):
            raise ValueError(
                "Sensitivity thresholds must satisfy internal <= confidential <= restricted"
            )
        return self


class AutoSanitizationPolicy(BaseModel):
    enabled: bool = True
    thresholds: dict[PIIType, float] = Field(
        default_factory=lambda: dict(DEFAULT_AUTO_SANITIZE_THRESHOLDS)
    )

    @field_validator("thresholds")
    @classmethod
    def _thresholds_in_range(cls, v: dict[PIIType, float]) -> dict[PIIType, float]:
        return _check_unit_interval(v, "Threshold")


class DataRetentionPolicy(BaseModel):
    default_hours: int = Field(24, ge=0)
    max_hours: int = Field(8760, ge=0)
    auto_delete_enabled: bool = False

    @model_validator(mode="after")
    def _default_within_max(self) -> "DataRetentionPolicy":
        if self.default_hours > self.max_hours:
            raise ValueError("default_hours cannot exceed max_hours")
        return self


class CompliancePolicy(BaseModel):
    gdpr_enabled: bool = True
    ccpa_enabled: bool = False
    hipaa_enabled: bool = False


class SecurityPolicy(BaseModel):
    """Externally supplied policy that gates and tunes the security engine.

    ``require_explicit_consent`` is the hard consent gate and applies to
    every processing purpose: when set, a scan for a user without valid
    consent is refused.  When unset, scans still run and the result only
    counts towards the non-compliant tally.
    """

    version: str = "1.0"
    pii_sensitivity: float = Field(0.7, ge=0.0, le=1.0)
    min_confidence_threshold: float = Field(0.7, ge=0.0, le=1.0)
    require_explicit_consent: bool = False
    auto_sanitization: AutoSanitizationPolicy = Field(default_factory=AutoSanitizationPolicy)
    data_retention: DataRetentionPolicy = Field(default_factory=DataRetentionPolicy)
    compliance: CompliancePolicy = Field(default_factory=CompliancePolicy)
    risk: RiskModel = Field(default_factory=RiskModel)

    @classmethod
    def from_settings(cls, settings) -> "SecurityPolicy":
        jurisdiction = settings.jurisdiction.upper()
        return cls(
            pii_sensitivity=settings.pii_sensitivity,
            min_confidence_threshold=settings.pii_confidence_threshold,
            require_explicit_consent=settings.require_explicit_consent,
            auto_sanitization=AutoSanitizationPolicy(enabled=settings.auto_sanitize),
            data_retention=DataRetentionPolicy(
                default_hours=settings.data_retention_hours,
                max_hours=settings.max_retention_hours,
            ),
            compliance=CompliancePolicy(
                gdpr_enabled=jurisdiction in ("GDPR", "BOTH"),
                ccpa_enabled=jurisdiction in ("CCPA", "BOTH"),
            ),
        )


# --- Sanitiser configuration ---

class SanitizationConfig(BaseModel):
    default_strategy: SanitizationStrategy = SanitizationStrategy.MASK
    type_strategies: dict[PIIType, SanitizationStrategy] = Field(
        default_factory=lambda: dict(DEFAULT_TYPE_STRATEGIES)
    )
    mask_character: str = Field("*", min_length=1, max_length=1)
    partial_preserve_length: int = Field(4, ge=0)
    preserve_format: bool = True
    hash_salt: str = Field(default_factory=generate_salt, min_length=1)


# --- Per-scan options ---

class ScanOptions(BaseModel):
    user_id: str | None = None
    min_confidence: float | None = Field(None, ge=0.0, le=1.0)
    auto_sanitize: bool = True
    purpose: ProcessingPurpose = ProcessingPurpose.LOGGING
    skip_consent_check: bool = False

    model_config = {"frozen": True}


# --- Privacy notice ---

Jurisdiction = Literal["GDPR", "CCPA", "BOTH"]
LegalBasis = Literal["consent", "legitimate_interest", "contract"]


class PurposeNotice(BaseModel):
    purpose: ProcessingPurpose
    description: str
    legal_basis: LegalBasis = "consent"
    data_types: list[str] = Field(default_factory=list)
    retention_period: str = "24 hours"
    withdrawable: bool = True


class ContactInfo(BaseModel):
    privacy_email: str
    company_name: str
    dpo_email: str | None = None


class PrivacyNotice(BaseModel):
    version: str = "1.0"
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    purposes: list[PurposeNotice] = Field(default_factory=list)
    contact_info: ContactInfo
    jurisdiction: Jurisdiction = "GDPR"

    @property
    def gdpr(self) -> bool:
        return self.jurisdiction in ("GDPR", "BOTH")

    @property
    def ccpa(self) -> bool:
        return self.jurisdiction in ("CCPA", "BOTH")

    @classmethod
    def from_settings(cls, settings) -> "PrivacyNotice":
        purposes = [
            PurposeNotice(
                purpose=purpose,
                description=f"Console log {purpose.value.replace('_', ' ')}",
                data_types=["console output"],
                retention_period=f"{settings.data_retention_hours} hours",
            )
            for purpose in ProcessingPurpose
        ]
        return cls(
            purposes=purposes,
            contact_info=ContactInfo(
                privacy_email=settings.privacy_email,
                company_name=settings.company_name,
            ),
            jurisdiction=settings.jurisdiction.upper(),
        )
