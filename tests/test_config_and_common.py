import logging
from types import SimpleNamespace

import pytest

from contacts_validation.common import generate_check_id, new_result, result_stamp
from contacts_validation.config_loader import (
    ValidationOptions,
    build_engine_config,
    load_engine_config,
)
from contacts_validation.errors import ConfigurationError
from contacts_validation.logging_utils import PIIMaskingFilter, configure_logging, mask_value
from contacts_validation.models import (
    ChangeStatus,
    ConfidenceLevel,
    FieldType,
    Status,
    SubStatus,
    ValidationResult,
    ValidationStep,
)


def test_check_id_layout():
    check_id = generate_check_id("0001", "2.0.0", now_ms=1700000123456)
    # last six timestamp digits, client, digit sum of "170" times client, version
    assert check_id == int("123456" + "0001" + "008" + "200")


def test_check_id_uses_client_multiplier():
    check_id = generate_check_id("0003", "2.0.0", now_ms=1700000123456)
    assert str(check_id).endswith("0003024200")


def test_result_stamp_shares_one_clock_reading():
    check_id, iso, epoch = result_stamp("0001")
    assert check_id == generate_check_id("0001", now_ms=epoch)
    assert iso.endswith("Z")


def test_new_result_clamps_confidence_and_derives_valid():
    result = new_result(
        FieldType.EMAIL,
        "A@B.COM",
        "a@b.com",
        status=Status.VALID,
        sub_status=SubStatus.BASIC_FALLBACK,
        confidence=140,
        format_valid=True,
        was_corrected=True,
        validation_steps=[ValidationStep("format_check", True)],
    )
    assert result.valid is True
    assert result.confidence == 100.0
    assert result.confidence_level == ConfidenceLevel.VERY_HIGH
    assert result.change_status == ChangeStatus.CHANGED


def test_result_dict_round_trip_keeps_enums():
    result = new_result(
        FieldType.PHONE,
        "555",
        "",
        status=Status.INVALID,
        sub_status=SubStatus.UNPARSEABLE,
        confidence=0,
        format_valid=False,
        warnings=["nope"],
    )
    restored = ValidationResult.from_mapping(result.to_dict())
    assert restored == result
    assert restored.status is Status.INVALID


@pytest.mark.parametrize(
    "score,level",
    [(0, "none"), (20, "very_low"), (40, "low"), (55, "medium"), (80, "high"), (95, "very_high")],
)
def test_confidence_levels(score, level):
    assert ConfidenceLevel.from_score(score).value == level


def test_build_engine_config_defaults():
    config = build_engine_config({})
    assert config.phone.default_country == "US"
    assert config.phone.fallback_countries[0] == "US"
    assert config.zerobounce.configured is False
    assert config.batch.concurrency == 10


def test_build_engine_config_rejects_inverted_address_thresholds():
    with pytest.raises(ConfigurationError):
        build_engine_config({"address": {"valid_threshold": 90, "cache_min_confidence": 80}})


def test_build_engine_config_rejects_unknown_region():
    with pytest.raises(ConfigurationError):
        build_engine_config({"phone": {"default_country": "ZZ"}})


def test_build_engine_config_rejects_deep_suggestion_chain():
    with pytest.raises(ConfigurationError):
        build_engine_config({"email": {"max_suggestion_depth": 3}})


@pytest.mark.parametrize(
    "data,section",
    [
        ({"email": {"check_mx": True}}, "email"),
        ({"batch": {"workers": 4}}, "batch"),
        ({"zerobounce": {"breaker": {"threshold": 5}}}, "zerobounce.breaker"),
    ],
)
def test_build_engine_config_names_section_with_unknown_key(data, section):
    with pytest.raises(ConfigurationError, match=section):
        build_engine_config(data)


def test_provider_key_from_environment(monkeypatch):
    monkeypatch.setenv("ZEROBOUNCE_API_KEY", "zb-key")
    config = build_engine_config({"zerobounce": {"timeout_ms": 100}})
    assert config.zerobounce.api_key == "zb-key"
    assert config.zerobounce.configured is True
    assert config.zerobounce.timeout_ms == 100


def test_validation_options_checks_combinations():
    with pytest.raises(ConfigurationError):
        ValidationOptions(strict=True)
    with pytest.raises(ConfigurationError):
        ValidationOptions(client_id="abc")
    assert ValidationOptions(country="gb").country == "GB"


def test_load_engine_config_applies_cli_overrides(tmp_path, monkeypatch):
    monkeypatch.delenv("OPENCAGE_API_KEY", raising=False)
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        "opencage:\n  api_key: oc-key\nlogging:\n  level: info\n",
        encoding="utf-8",
    )
    args = SimpleNamespace(
        config=str(cfg),
        default_phone_country="gb",
        check_mx=True,
        no_providers=True,
        concurrency=3,
        log_level=None,
    )
    config = load_engine_config(args)
    assert config.phone.default_country == "GB"
    assert config.email.check_mx_records is True
    assert config.opencage.api_key == "oc-key"
    assert config.opencage.configured is False
    assert config.batch.concurrency == 3
    assert config.logging.level == "INFO"


def test_mask_value_hides_personal_data():
    assert mask_value("bob@gmail.com") == "b***@gmail.com"
    assert mask_value("+1 415 555 2671") == "***71"
    assert mask_value("Jonathan") == "J***(8)"
    assert mask_value(None) == ""


def test_pii_filter_masks_rendered_message():
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "lookup %s", ("alice@example.org",), None)
    assert PIIMaskingFilter().filter(record) is True
    assert record.getMessage() == "lookup a***@example.org"


def test_configure_logging_env_override(monkeypatch):
    monkeypatch.setenv("CONTACTS_VALIDATION_LOG_LEVEL", "DEBUG")
    configure_logging(build_engine_config({}), level_override="ERROR")
    assert logging.getLogger().level == logging.DEBUG
