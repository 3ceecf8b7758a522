from __future__ import annotations

import argparse
import asyncio
import csv
import logging
import os
from typing import Any, Dict, List, Optional

import pandas as pd

from .config_loader import EngineConfig, ValidationOptions, load_engine_config
from .engine import BatchResult, ValidationEngine
from .logging_utils import configure_logging
from .models import FieldType, ValidationResult

logger = logging.getLogger(__name__)

ADDRESS_COLUMNS = ("address_line_1", "address_line_2", "city", "state_province", "postal_code", "country")
REPORT_FIELDS = ("email", "phone", "address", "name")


def pct(n, d):
    return round((n / d * 100.0), 2) if d else 0.0


def _cell(row: Dict[str, str], column: str) -> str:
    return str(row.get(column, "") or "").strip()


def address_input(row: Dict[str, str]) -> Any:
    """A single ``address`` column wins; otherwise the component columns."""
    text = _cell(row, "address")
    if text:
        return text
    parts = {column: _cell(row, column) for column in ADDRESS_COLUMNS if _cell(row, column)}
    return parts or None


def name_input(row: Dict[str, str]) -> Any:
    full_name = _cell(row, "full_name")
    if full_name:
        return full_name
    if _cell(row, "first_name") or _cell(row, "last_name"):
        return {"first_name": _cell(row, "first_name"), "last_name": _cell(row, "last_name")}
    return None


def _columns(prefix: str, result: Optional[ValidationResult], present: bool) -> Dict[str, Any]:
    if result is None:
        return {
            f"{prefix}_normalized": "",
            f"{prefix}_status": "error" if present else "",
            f"{prefix}_sub_status": "",
            f"{prefix}_confidence": "",
            f"{prefix}_changed": "",
        }
    return {
        f"{prefix}_normalized": result.normalized_value,
        f"{prefix}_status": result.status.value,
        f"{prefix}_sub_status": result.sub_status.value if result.sub_status else "",
        f"{prefix}_confidence": round(result.confidence, 1),
        f"{prefix}_changed": result.change_status.value,
    }


def phone_input(row: Dict[str, str]) -> Any:
    phone = _cell(row, "phone")
    country = _cell(row, "country").upper()
    if phone and len(country) == 2 and country.isalpha():
        return {"phone": phone, "country": country}
    return phone


async def _validate_field(
    engine: ValidationEngine,
    values: List[Any],
    field_type: FieldType,
    options: ValidationOptions,
) -> List[Optional[ValidationResult]]:
    """Validate the non-empty values, keeping row positions."""
    positions = [index for index, value in enumerate(values) if value]
    aligned: List[Optional[ValidationResult]] = [None] * len(values)
    if not positions:
        return aligned
    batch: BatchResult = await engine.validate_batch(
        [values[index] for index in positions], field_type, options=options
    )
    for error in batch.errors:
        logger.warning("Row %d %s failed: %s", positions[error["index"]], field_type.value, error["error"])
    for offset, result in enumerate(batch.results):
        aligned[positions[offset]] = result
    return aligned


async def validate_frame(
    df: pd.DataFrame, config: EngineConfig, engine: Optional[ValidationEngine] = None
) -> pd.DataFrame:
    rows = [{str(col): str(row[col]) for col in df.columns} for _, row in df.iterrows()]
    field_inputs = [
        [_cell(row, "email") for row in rows],
        [phone_input(row) for row in rows],
        [address_input(row) for row in rows],
        [name_input(row) for row in rows],
    ]
    field_types = (FieldType.EMAIL, FieldType.PHONE, FieldType.ADDRESS, FieldType.NAME)

    owned = engine is None
    engine = engine or ValidationEngine.from_config(config)
    options = ValidationOptions()
    field_results = []
    try:
        for values, field_type in zip(field_inputs, field_types):
            field_results.append(await _validate_field(engine, values, field_type, options))
    finally:
        if owned:
            await engine.aclose()

    records: List[Dict[str, Any]] = []
    for index, row in enumerate(rows):
        rec: Dict[str, Any] = {"row": index, "contact_id": _cell(row, "contact_id")}
        for prefix, inputs, results in zip(REPORT_FIELDS, field_inputs, field_results):
            rec.update(_columns(prefix, results[index], bool(inputs[index])))
        records.append(rec)
    return pd.DataFrame(records)


def summarize(report: pd.DataFrame) -> Dict[str, Any]:
    total = len(report)
    summary: Dict[str, Any] = {"contacts_total": total}
    for prefix in REPORT_FIELDS:
        column = report[f"{prefix}_status"] if total else []
        present = sum(1 for status in column if status)
        valid = sum(1 for status in column if status == "valid")
        summary[f"{prefix}_present"] = present
        summary[f"{prefix}_valid_pct"] = pct(valid, present)
    return summary


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Validate and normalize contact fields.")
    parser.add_argument("--config", type=str, default=None)
    parser.add_argument("--contacts-csv", type=str, required=True)
    parser.add_argument("--out-dir", type=str, default=None)
    parser.add_argument("--log-level", type=str, default=None, help="Override logging level")
    parser.add_argument("--default-phone-country", type=str, default=None)
    parser.add_argument("--check-mx", action="store_true", help="Look up MX records for email domains")
    parser.add_argument("--no-providers", action="store_true", help="Skip ZeroBounce and OpenCage")
    parser.add_argument("--concurrency", type=int, default=None)

    args = parser.parse_args(argv)
    config = load_engine_config(args)
    configure_logging(config, level_override=args.log_level)

    out_dir = args.out_dir or os.getcwd()
    os.makedirs(out_dir, exist_ok=True)
    df = pd.read_csv(args.contacts_csv, dtype=str, keep_default_na=False, quoting=csv.QUOTE_ALL)
    logger.info("Validating %d contacts from %s", len(df), args.contacts_csv)

    report = asyncio.run(validate_frame(df, config))
    out_report = os.path.join(out_dir, "validation_report.csv")
    report.to_csv(out_report, index=False, encoding="utf-8", quoting=csv.QUOTE_ALL)

    print(summarize(report))
    print(f"Saved: {out_report}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
