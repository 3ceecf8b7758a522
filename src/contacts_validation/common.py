from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence, Tuple

from .models import FieldType, Status, SubStatus, ValidationResult, ValidationStep

DEFAULT_CLIENT_ID = "0001"
DEFAULT_VERSION = "2.0.0"


def epoch_ms() -> int:
    return int(time.time() * 1000)


def generate_check_id(
    client_id: Optional[str] = None,
    version: str = DEFAULT_VERSION,
    now_ms: Optional[int] = None,
) -> int:
    """
    Build a time-and-client derived correlation id.

    Layout: last six digits of the epoch-ms timestamp, the client id, a
    three digit check value (digit sum of the timestamp's first three
    digits times the client id), then the version digits. Not unique and
    not secure; collisions are possible at low probability.
    """
    timestamp = str(epoch_ms() if now_ms is None else now_ms)
    client = str(client_id or DEFAULT_CLIENT_ID)
    digit_sum = sum(int(ch) for ch in timestamp[:3])
    check_value = str(digit_sum * int(client)).zfill(3)[-3:]
    version_digits = version.replace(".", "")
    return int(f"{timestamp[-6:]}{client}{check_value}{version_digits}")


def result_stamp(
    client_id: Optional[str] = None, version: str = DEFAULT_VERSION
) -> Tuple[int, str, int]:
    """Return ``(check_id, iso_timestamp, epoch_ms)`` sharing one clock reading."""
    now = epoch_ms()
    iso = (
        datetime.fromtimestamp(now / 1000, tz=timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )
    return generate_check_id(client_id, version, now_ms=now), iso, now


def new_result(
    field_type: FieldType,
    original_input: Any,
    normalized_value: str,
    *,
    status: Status,
    sub_status: Optional[SubStatus],
    confidence: float,
    format_valid: bool,
    was_corrected: bool = False,
    component_fields: Optional[Mapping[str, Any]] = None,
    validation_steps: Sequence[ValidationStep] = (),
    warnings: Sequence[str] = (),
    client_id: Optional[str] = None,
    version: str = DEFAULT_VERSION,
) -> ValidationResult:
    """Stamp a fresh :class:`ValidationResult`; ``valid`` follows ``status``."""
    check_id, iso, epoch = result_stamp(client_id, version)
    return ValidationResult(
        field_type=field_type,
        original_input=original_input,
        normalized_value=normalized_value,
        valid=status == Status.VALID,
        format_valid=format_valid,
        was_corrected=was_corrected,
        status=status,
        sub_status=sub_status,
        confidence=max(0.0, min(100.0, float(confidence))),
        check_id=check_id,
        timestamp=iso,
        timestamp_epoch=epoch,
        component_fields=dict(component_fields or {}),
        validation_steps=tuple(validation_steps),
        warnings=tuple(warnings),
    )
