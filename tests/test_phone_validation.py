import asyncio

import pytest

from contacts_validation.cache import PHONE_TABLE, ResultCache
from contacts_validation.config_loader import PhoneConfig, ValidationOptions
from contacts_validation.models import ConfidenceLevel, Status, SubStatus
from contacts_validation.phone_validation import (
    PhoneValidator,
    clean_phone_number,
    matching_pattern_countries,
)
from contacts_validation.reference_data import load_reference_data
from contacts_validation.store import InMemoryStore


def _validator(store=None, **config):
    return PhoneValidator(
        PhoneConfig(**config),
        load_reference_data().phone,
        ResultCache(store if store is not None else InMemoryStore()),
    )


def _check(validator, phone, **options):
    return asyncio.run(validator.validate(phone, ValidationOptions(**options)))


@pytest.mark.parametrize(
    "raw,number,extension",
    [
        ("(415) 555-2671", "4155552671", ""),
        ("+1 415.555.2671", "+14155552671", ""),
        ("415-555-2671 ext. 42", "4155552671", "42"),
        ("415 555 2671 x7", "4155552671", "7"),
        ("011 44 7911 123456", "+447911123456", ""),
        ("0011 61 412 345 678", "+61412345678", ""),
        ("00 49 151 23456789", "+4915123456789", ""),
        ("1-800-FLOWERS", "18003569377", ""),
        ("Tel: 415 555 2671", "4155552671", ""),
        ("call me", "", ""),
    ],
)
def test_clean_phone_number(raw, number, extension):
    cleaned = clean_phone_number(raw)
    assert cleaned.number == number
    assert cleaned.extension == extension


def test_pattern_table_lists_every_candidate():
    assert matching_pattern_countries("0412345678") == ["AU", "FR"]
    assert matching_pattern_countries("07911123456") == ["GB"]
    assert matching_pattern_countries("4155552671") == ["US"]


def test_scenario_australian_mobile_without_country_hint():
    result = _check(_validator(), "0412345678")
    assert result.status == Status.VALID
    assert result.normalized_value == "+61412345678"
    assert result.component_fields["country"] == "AU"
    assert result.component_fields["line_type"] == "mobile"
    assert result.component_fields["method"] == "pattern_detection"
    assert result.confidence_level.rank >= ConfidenceLevel.MEDIUM.rank
    factors = dict(result.component_fields["confidence_factors"])
    assert factors["guessed_country"] == -10


def test_explicit_country_scores_higher_than_guessing():
    validator = _validator()
    guessed = _check(validator, "(415) 555-2671", use_cache=False)
    explicit = _check(validator, "(415) 555-2671", country="US", use_cache=False)
    assert guessed.normalized_value == explicit.normalized_value == "+14155552671"
    assert explicit.component_fields["method"] == "explicit_country"
    assert explicit.confidence > guessed.confidence


def test_international_input_needs_no_country():
    result = _check(_validator(), "+61 412 345 678")
    assert result.normalized_value == "+61412345678"
    assert result.component_fields["country"] == "AU"
    assert result.component_fields["method"] == "international"
    assert result.component_fields["is_mobile"] is True
    assert result.was_corrected is True


def test_extension_is_kept_in_components():
    result = _check(_validator(), "415-555-2671 ext. 42", country="US")
    assert result.normalized_value == "+14155552671"
    assert result.component_fields["extension"] == "42"


def test_invalid_international_number_is_terminal():
    result = _check(_validator(), "+1 555")
    assert result.status == Status.INVALID
    assert result.component_fields["attempts"][0]["strategy"] == "international"
    assert len(result.component_fields["attempts"]) == 1


def test_strict_mode_does_not_fall_back():
    validator = _validator()
    strict = _check(validator, "4155552671", country="GB", strict=True)
    assert strict.status == Status.INVALID
    assert strict.sub_status == SubStatus.INVALID_NUMBER

    lenient = _check(validator, "4155552671", country="GB")
    assert lenient.status == Status.VALID
    assert lenient.component_fields["country"] == "US"


def test_empty_and_garbage_input():
    validator = _validator()
    assert _check(validator, "").sub_status == SubStatus.EMPTY_INPUT
    garbage = _check(validator, "call me")
    assert garbage.status == Status.INVALID
    assert garbage.sub_status == SubStatus.UNPARSEABLE


def test_short_digit_runs_never_fall_back_to_foreign_numbers():
    result = _check(_validator(), "225563")
    assert result.status == Status.INVALID
    assert all(not attempt["success"] for attempt in result.component_fields["attempts"])


def test_round_trip_through_e164():
    validator = _validator()
    for raw, country in (("(415) 555-2671", "US"), ("07911 123456", "GB"), ("0412 345 678", "AU")):
        first = _check(validator, raw, country=country, use_cache=False)
        again = _check(validator, first.normalized_value, use_cache=False)
        assert again.status == Status.VALID
        assert again.normalized_value == first.normalized_value
        assert again.was_corrected is False


def test_high_confidence_results_are_cached_by_e164():
    store = InMemoryStore()
    validator = _validator(store)
    first = _check(validator, "(415) 555-2671", country="US")
    assert first.confidence_level.rank >= ConfidenceLevel.HIGH.rank
    assert store.count(PHONE_TABLE) == 1

    second = _check(validator, "415.555.2671", country="US")
    assert second.check_id == first.check_id
    assert validator.stats["cache_hits"] == 1


def test_guessed_results_are_not_cached():
    store = InMemoryStore()
    _check(_validator(store), "0412345678")
    assert store.count(PHONE_TABLE) == 0


def test_score_is_explainable():
    confidence, factors = PhoneValidator.score("international", True, True, 20, 0, 0)
    assert confidence == 100
    assert sum(points for _, points in factors) == 100
    low, _ = PhoneValidator.score("fallback", True, False, 0, 4, 3)
    assert low == 25 + 20 + 0 + 0 - 10 - 20
