import asyncio

import httpx

from contacts_validation.address_parsing import (
    address_cache_key,
    parse_address_input,
    parse_address_line_1,
    parse_address_string,
    standardize_components,
)
from contacts_validation.address_validation import AddressValidator, basic_score
from contacts_validation.cache import ADDRESS_TABLE, ResultCache
from contacts_validation.config_loader import AddressConfig, ProviderConfig, ValidationOptions
from contacts_validation.models import AddressComponents, Status, SubStatus
from contacts_validation.normalization import format_postal_code
from contacts_validation.opencage import OpenCageClient
from contacts_validation.reference_data import load_reference_data
from contacts_validation.store import InMemoryStore

EMPIRE_STATE = "350 Fifth Avenue, New York, NY 10118"


def _geocode_payload(confidence=9, city="New York", postcode="10118"):
    return {
        "status": {"code": 200, "message": "OK"},
        "results": [
            {
                "confidence": confidence,
                "formatted": f"350 5th Ave, {city}, NY {postcode}, United States of America",
                "components": {
                    "house_number": "350",
                    "road": "5th Ave",
                    "city": city,
                    "state": "New York",
                    "state_code": "NY",
                    "postcode": postcode,
                    "country": "United States of America",
                    "country_code": "us",
                },
                "geometry": {"lat": 40.7484, "lng": -73.9857},
            }
        ],
    }


def _validate(addresses, handler=None, store=None, config=None, options=None):
    calls = []

    def recording(request):
        calls.append(request.url.params.get("q"))
        return handler(request)

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(recording)) as http:
            provider = None
            if handler is not None:
                provider = OpenCageClient(
                    ProviderConfig(
                        name="opencage",
                        base_url="https://api.opencagedata.test",
                        api_key="secret",
                        max_retries=0,
                        retry_delay_ms=0,
                    ),
                    client=http,
                )
            validator = AddressValidator(
                config or AddressConfig(),
                load_reference_data().address,
                ResultCache(store if store is not None else InMemoryStore()),
                provider=provider,
            )
            results = [await validator.validate(address, options) for address in addresses]
            return results, validator

    results, validator = asyncio.run(go())
    return results, validator, calls


def test_parse_address_line_1():
    assert parse_address_line_1("123 N Main Street") == {
        "house_number": "123",
        "street_direction": "N",
        "street_name": "Main",
        "street_type": "St",
    }
    assert parse_address_line_1("Main")["street_name"] == "Main"


def test_parse_address_string_handles_us_and_canadian_postcodes():
    us = parse_address_string("100 Main St Apt 4B, Springfield, IL 62701-1234, USA")
    assert us.address_line_1 == "100 Main St"
    assert us.unit_type == "Apt"
    assert us.unit_number == "4B"
    assert us.postal_code == "62701-1234"
    assert us.state_province == "IL"
    assert us.country == "USA"

    ca = parse_address_string("100 Queen St W, Toronto, ON m5h2n2")
    assert ca.postal_code == "M5H2N2"
    assert ca.state_province == "ON"


def test_standardize_components():
    parsed = parse_address_input(
        {
            "address": "350 fifth avenue",
            "city": "new york",
            "state": "new york",
            "zip": "101181234",
            "country": "united states",
        }
    )
    standardized = standardize_components(parsed)
    assert standardized.address_line_1 == "350 Fifth Ave"
    assert standardized.city == "New York"
    assert standardized.state_province == "NY"
    assert standardized.postal_code == "10118-1234"
    assert standardized.country_code == "US"


def test_canadian_postcode_keeps_its_shape_under_us_default():
    standardized = standardize_components(parse_address_string("100 Queen St W, Toronto, ON m5h2n2"), "US")
    assert standardized.postal_code == "M5H 2N2"


def test_malformed_us_zip_is_left_for_validation_to_reject():
    assert format_postal_code("62701", "US") == "62701"
    assert format_postal_code("62701 1234", "US") == "62701-1234"
    assert format_postal_code("6270199", "US") == "6270199"

    standardized = standardize_components(
        parse_address_input(
            {"address": "100 Main St", "city": "Springfield", "state": "IL", "zip": "6270199", "country": "US"}
        )
    )
    assert standardized.postal_code == "6270199"
    score, warnings = basic_score(standardized)
    assert score == 80
    assert "Invalid postal code format" in warnings


def test_cache_key_is_case_insensitive():
    a = standardize_components(parse_address_string(EMPIRE_STATE))
    b = standardize_components(parse_address_string(EMPIRE_STATE.upper()))
    assert address_cache_key(a) == address_cache_key(b)


def test_basic_score_deductions():
    assert basic_score(AddressComponents())[0] == 15
    score, warnings = basic_score(AddressComponents(city="Boston", postal_code="ABCDE", country_code="US"))
    assert score == 100 - 30 - 20 - 20
    assert "Invalid postal code format" in warnings


def test_scenario_city_alias_alone_is_fuzzy_matched():
    (result,), _, _ = _validate([{"city": "nyc"}])
    fields = result.component_fields
    assert fields["city"] == "New York"
    assert fields["state_province"] == "NY"
    assert fields["country_code"] == "US"
    assert fields["method"] == "fuzzy_match"
    assert result.confidence > 0
    assert result.was_corrected is True
    assert result.status == Status.INVALID
    assert result.sub_status == SubStatus.LOW_CONFIDENCE


def test_confidence_never_drops_as_information_is_added():
    inputs = [
        {"city": "nyc"},
        {"city": "nyc", "state": "NY"},
        {"city": "nyc", "state": "NY", "postal_code": "10118"},
        {"address": "350 Fifth Avenue", "city": "nyc", "state": "NY", "postal_code": "10118"},
    ]
    results, _, _ = _validate(inputs)
    scores = [result.confidence for result in results]
    assert scores == sorted(scores)


def test_geocoded_address_is_high_confidence():
    def handler(request):
        return httpx.Response(200, json=_geocode_payload())

    (result,), validator, calls = _validate([EMPIRE_STATE], handler=handler)
    fields = result.component_fields
    assert result.status == Status.VALID
    assert result.sub_status == SubStatus.CONFIRMED
    assert result.confidence == 95
    assert fields["method"] == "geocode"
    assert fields["country_code"] == "US"
    assert fields["latitude"] == 40.7484
    assert fields["geocoded_address"].startswith("350 5th Ave")
    assert len(calls) == 1
    assert validator.stats["provider_calls"] == 1


def test_geocoder_never_overwrites_supplied_fields():
    def handler(request):
        return httpx.Response(200, json=_geocode_payload(city="Manhattan", postcode="10001"))

    (result,), _, _ = _validate([EMPIRE_STATE], handler=handler)
    fields = result.component_fields
    assert fields["city"] == "New York"
    assert fields["postal_code"] == "10118"
    assert fields["address_line_1"] == "350 Fifth Ave"
    assert "Geocoder disagrees on city" in result.warnings
    assert "Geocoder disagrees on postal code" in result.warnings


def test_geocoder_fills_missing_fields():
    def handler(request):
        return httpx.Response(200, json=_geocode_payload())

    (result,), _, _ = _validate(["350 Fifth Avenue, New York"], handler=handler)
    fields = result.component_fields
    assert fields["state_province"] == "NY"
    assert fields["postal_code"] == "10118"
    assert result.was_corrected is True


def test_geocoder_outage_falls_back_to_local_levels():
    def handler(request):
        return httpx.Response(503, text="down")

    (result,), validator, calls = _validate([EMPIRE_STATE], handler=handler)
    assert result.status == Status.VALID
    assert result.component_fields["method"] != "geocode"
    assert "Geocoding unavailable" in result.warnings
    assert len(calls) == 1
    assert validator.stats["provider_errors"] == 1


def test_provider_can_be_skipped_per_call():
    def handler(request):
        raise AssertionError("geocoder should not be called")

    (result,), _, calls = _validate(
        [EMPIRE_STATE], handler=handler, options=ValidationOptions(use_provider=False)
    )
    assert calls == []
    assert result.component_fields["latitude"] is None


def test_confirmed_addresses_are_served_from_cache():
    store = InMemoryStore()

    def handler(request):
        return httpx.Response(200, json=_geocode_payload())

    (first, second), validator, calls = _validate([EMPIRE_STATE, EMPIRE_STATE.lower()], handler=handler, store=store)
    assert store.count(ADDRESS_TABLE) == 1
    assert second.check_id == first.check_id
    assert len(calls) == 1
    assert validator.stats["cache_hits"] == 1


def test_low_confidence_addresses_are_not_cached():
    store = InMemoryStore()
    _validate([{"city": "nyc"}], store=store)
    assert store.count(ADDRESS_TABLE) == 0


def test_empty_address_is_insufficient():
    results, _, _ = _validate(["", None, {}])
    assert all(result.sub_status == SubStatus.INSUFFICIENT_DATA for result in results)


def test_state_variant_is_normalized():
    (result,), _, _ = _validate([{"city": "Sacramento", "state": "Calif.", "postal_code": "95814"}])
    assert result.component_fields["state_province"] == "CA"
