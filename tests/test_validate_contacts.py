import asyncio
import csv

import pandas as pd
import pytest
import yaml

from contacts_validation import validate_contacts as vc
from contacts_validation.config_loader import EngineConfig
from contacts_validation.dns_check import MxChecker
from contacts_validation.engine import ValidationEngine

CONTACTS = [
    {
        "contact_id": "c1",
        "full_name": "JANE DOE",
        "first_name": "",
        "last_name": "",
        "email": "Jane@Gmial.com",
        "phone": "0412 345 678",
        "country": "AU",
        "address": "350 Fifth Avenue, New York, NY 10118",
        "city": "",
    },
    {
        "contact_id": "c2",
        "full_name": "",
        "first_name": "bo",
        "last_name": "li",
        "email": "",
        "phone": "",
        "country": "",
        "address": "",
        "city": "nyc",
    },
]


@pytest.fixture(autouse=True)
def fake_mx(monkeypatch):
    def resolver(domain, timeout):
        return ["mx." + domain]

    monkeypatch.setattr("contacts_validation.dns_check.resolve_mx_hosts", resolver)


def test_row_inputs():
    assert vc.address_input({"address": " 1 Main St "}) == "1 Main St"
    assert vc.address_input({"city": "Boston", "postal_code": "02108"}) == {
        "city": "Boston",
        "postal_code": "02108",
    }
    assert vc.address_input({"city": ""}) is None
    assert vc.name_input({"first_name": "bo", "last_name": ""}) == {"first_name": "bo", "last_name": ""}
    assert vc.name_input({}) is None
    assert vc.phone_input({"phone": "0412 345 678", "country": "au"}) == {
        "phone": "0412 345 678",
        "country": "AU",
    }
    assert vc.phone_input({"phone": "0412 345 678", "country": "Australia"}) == "0412 345 678"


def test_validate_frame_aligns_rows():
    engine = ValidationEngine(EngineConfig(), mx_checker=MxChecker(resolver=lambda d, t: ["mx." + d]))
    report = asyncio.run(vc.validate_frame(pd.DataFrame(CONTACTS), EngineConfig(), engine=engine))
    assert list(report["contact_id"]) == ["c1", "c2"]
    first, second = report.to_dict("records")
    assert first["email_normalized"] == "jane@gmail.com"
    assert first["email_changed"] == "Changed"
    assert first["phone_normalized"] == "+61412345678"
    assert first["name_normalized"] == "Jane Doe"
    assert second["email_status"] == ""
    assert second["phone_status"] == ""
    assert second["address_status"] == "invalid"
    assert second["name_normalized"] == "Bo Li"


def test_summarize_counts_present_fields():
    report = pd.DataFrame(
        [
            {"email_status": "valid", "phone_status": "", "address_status": "invalid", "name_status": "valid"},
            {"email_status": "unknown", "phone_status": "", "address_status": "", "name_status": "error"},
        ]
    )
    summary = vc.summarize(report)
    assert summary["contacts_total"] == 2
    assert summary["email_present"] == 2
    assert summary["email_valid_pct"] == 50.0
    assert summary["phone_present"] == 0
    assert summary["phone_valid_pct"] == 0.0
    assert summary["address_valid_pct"] == 0.0
    assert summary["name_valid_pct"] == 50.0


def test_cli_writes_report(tmp_path, monkeypatch, capsys):
    monkeypatch.delenv("CONTACTS_VALIDATION_LOG_LEVEL", raising=False)
    contacts = tmp_path / "contacts.csv"
    pd.DataFrame(CONTACTS).to_csv(contacts, index=False, quoting=csv.QUOTE_ALL)
    config = tmp_path / "config.yaml"
    config.write_text(
        yaml.safe_dump({"batch": {"concurrency": 5, "delay_between_chunks_ms": 0}}), encoding="utf-8"
    )
    out_dir = tmp_path / "out"

    code = vc.main(
        [
            "--config",
            str(config),
            "--contacts-csv",
            str(contacts),
            "--out-dir",
            str(out_dir),
            "--no-providers",
        ]
    )
    assert code == 0

    report = pd.read_csv(out_dir / "validation_report.csv", dtype=str, keep_default_na=False)
    assert list(report.columns[:2]) == ["row", "contact_id"]
    for prefix in vc.REPORT_FIELDS:
        assert f"{prefix}_status" in report.columns
    first = report.iloc[0]
    assert first["email_status"] == "valid"
    assert first["phone_status"] == "valid"
    assert first["address_status"] == "valid"
    assert first["address_normalized"].startswith("350 Fifth Ave")
    assert report.iloc[1]["address_status"] == "invalid"

    printed = capsys.readouterr().out
    assert "'contacts_total': 2" in printed
    assert "'address_valid_pct': 50.0" in printed
    assert f"Saved: {out_dir / 'validation_report.csv'}" in printed
