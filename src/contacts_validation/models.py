from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


class FieldType(str, Enum):
    EMAIL = "email"
    PHONE = "phone"
    ADDRESS = "address"
    NAME = "name"


class Status(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    UNKNOWN = "unknown"


class SubStatus(str, Enum):
    EMPTY_INPUT = "empty_input"
    BAD_FORMAT = "bad_format"
    INVALID_DOMAIN = "invalid_domain"
    NO_MX_RECORDS = "no_mx_records"
    PROVIDER_VERIFIED = "provider_verified"
    PROVIDER_REJECTED = "provider_rejected"
    PROVIDER_UNCERTAIN = "provider_uncertain"
    BASIC_FALLBACK = "basic_fallback"
    VALID_NUMBER = "valid_number"
    INVALID_NUMBER = "invalid_number"
    UNPARSEABLE = "unparseable"
    INSUFFICIENT_DATA = "insufficient_data"
    LOW_CONFIDENCE = "low_confidence"
    CONFIRMED = "confirmed"
    VALID_FORMAT = "valid_format"
    INVALID_FORMAT = "invalid_format"
    SECURITY_RISK = "security_risk"


class ConfidenceLevel(str, Enum):
    NONE = "none"
    VERY_LOW = "very_low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"

    @classmethod
    def from_score(cls, score: float) -> "ConfidenceLevel":
        if score <= 0:
            return cls.NONE
        if score < 35:
            return cls.VERY_LOW
        if score < 55:
            return cls.LOW
        if score < 75:
            return cls.MEDIUM
        if score < 90:
            return cls.HIGH
        return cls.VERY_HIGH

    @property
    def rank(self) -> int:
        return list(ConfidenceLevel).index(self)


class ChangeStatus(str, Enum):
    CHANGED = "Changed"
    UNCHANGED = "Unchanged"


class BounceStatus(str, Enum):
    UNLIKELY = "Unlikely to bounce"
    LIKELY = "Likely to bounce"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class ValidationStep:
    step: str
    passed: bool
    detail: str = ""

    @staticmethod
    def from_mapping(payload: Mapping[str, Any]) -> "ValidationStep":
        return ValidationStep(
            step=str(payload.get("step", "")),
            passed=bool(payload.get("passed", False)),
            detail=str(payload.get("detail", "") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"step": self.step, "passed": self.passed, "detail": self.detail}


@dataclass(frozen=True)
class ValidationResult:
    field_type: FieldType
    original_input: Any
    normalized_value: str
    valid: bool
    format_valid: bool
    was_corrected: bool
    status: Status
    sub_status: Optional[SubStatus]
    confidence: float
    check_id: int
    timestamp: str
    timestamp_epoch: int
    component_fields: Mapping[str, Any] = field(default_factory=dict)
    validation_steps: Tuple[ValidationStep, ...] = ()
    warnings: Tuple[str, ...] = ()

    @property
    def confidence_level(self) -> ConfidenceLevel:
        return ConfidenceLevel.from_score(self.confidence)

    @property
    def change_status(self) -> ChangeStatus:
        return ChangeStatus.CHANGED if self.was_corrected else ChangeStatus.UNCHANGED

    def replace(self, **changes: Any) -> "ValidationResult":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_type": self.field_type.value,
            "original_input": self.original_input,
            "normalized_value": self.normalized_value,
            "valid": self.valid,
            "format_valid": self.format_valid,
            "was_corrected": self.was_corrected,
            "status": self.status.value,
            "sub_status": self.sub_status.value if self.sub_status else None,
            "confidence": self.confidence,
            "confidence_level": self.confidence_level.value,
            "change_status": self.change_status.value,
            "component_fields": dict(self.component_fields),
            "validation_steps": [step.to_dict() for step in self.validation_steps],
            "warnings": list(self.warnings),
            "check_id": self.check_id,
            "timestamp": self.timestamp,
            "timestamp_epoch": self.timestamp_epoch,
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ValidationResult":
        sub_status = payload.get("sub_status")
        return cls(
            field_type=FieldType(payload["field_type"]),
            original_input=payload.get("original_input"),
            normalized_value=str(payload.get("normalized_value", "") or ""),
            valid=bool(payload.get("valid", False)),
            format_valid=bool(payload.get("format_valid", False)),
            was_corrected=bool(payload.get("was_corrected", False)),
            status=Status(payload.get("status", Status.UNKNOWN.value)),
            sub_status=SubStatus(sub_status) if sub_status else None,
            confidence=float(payload.get("confidence", 0) or 0),
            check_id=int(payload.get("check_id", 0) or 0),
            timestamp=str(payload.get("timestamp", "") or ""),
            timestamp_epoch=int(payload.get("timestamp_epoch", 0) or 0),
            component_fields=dict(payload.get("component_fields", {}) or {}),
            validation_steps=tuple(
                ValidationStep.from_mapping(step)
                for step in payload.get("validation_steps", []) or []
            ),
            warnings=tuple(payload.get("warnings", []) or []),
        )


_ADDRESS_ALIASES = {
    "house_number": ("house_number", "um_house_number"),
    "street_direction": ("street_direction", "um_street_direction"),
    "street_name": ("street_name", "um_street_name"),
    "street_type": ("street_type", "um_street_type"),
    "unit_type": ("unit_type", "um_unit_type"),
    "unit_number": ("unit_number", "um_unit_number"),
    "address_line_1": ("address_line_1", "address", "street", "um_address_line_1"),
    "address_line_2": ("address_line_2", "um_address_line_2"),
    "city": ("city", "um_city"),
    "state_province": ("state_province", "state", "um_state_province"),
    "postal_code": ("postal_code", "zip", "postcode", "um_postal_code"),
    "country": ("country", "um_country"),
    "country_code": ("country_code", "um_country_code"),
}


@dataclass(frozen=True)
class AddressComponents:
    house_number: str = ""
    street_direction: str = ""
    street_name: str = ""
    street_type: str = ""
    unit_type: str = ""
    unit_number: str = ""
    address_line_1: str = ""
    address_line_2: str = ""
    city: str = ""
    state_province: str = ""
    postal_code: str = ""
    country: str = ""
    country_code: str = ""

    @staticmethod
    def from_mapping(payload: Mapping[str, Any]) -> "AddressComponents":
        values: Dict[str, str] = {}
        for name, aliases in _ADDRESS_ALIASES.items():
            value = ""
            for alias in aliases:
                value = str(payload.get(alias, "") or "").strip()
                if value:
                    break
            values[name] = value
        return AddressComponents(**values)

    def to_dict(self) -> Dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def replace(self, **changes: Any) -> "AddressComponents":
        return replace(self, **changes)

    def is_empty(self) -> bool:
        return not any(self.to_dict().values())

    @property
    def has_street(self) -> bool:
        return bool(self.address_line_1 or self.street_name)
