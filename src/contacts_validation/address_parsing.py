from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Optional, Union

from .models import AddressComponents
from .normalization import (
    COUNTRY_NAMES,
    DIRECTIONS,
    STREET_TYPES,
    UNIT_TYPES,
    country_name,
    format_postal_code,
    infer_country_from_postal,
    normalize_country_iso2,
    normalize_state,
    title_case,
)

UNIT_SPLIT_PATTERN = re.compile(r"(.+?)\s+(apt|apartment|suite|ste|unit|#)\s*(.+)", re.IGNORECASE)
US_ZIP_PATTERN = re.compile(r"\b(\d{5}(?:-\d{4})?)\b")
CA_POSTAL_PATTERN = re.compile(r"\b([A-Z]\d[A-Z]\s?\d[A-Z]\d)\b", re.IGNORECASE)
TRAILING_POSTAL_PATTERN = re.compile(r"^(?:\d{4,}|[A-Z]\d[A-Z])", re.IGNORECASE)
HOUSE_NUMBER_PATTERN = re.compile(r"^\d+[A-Za-z]?$")

# Fields compared when deciding whether standardization changed an address.
CORRECTION_FIELDS = (
    "house_number",
    "street_name",
    "street_type",
    "city",
    "state_province",
    "postal_code",
)
CACHE_KEY_FIELDS = (
    "address_line_1",
    "address_line_2",
    "city",
    "state_province",
    "postal_code",
    "country_code",
)


def parse_address_line_1(line: str) -> Dict[str, str]:
    """Split ``123 N Main St`` into house number, direction, street name and type."""
    result = {"house_number": "", "street_direction": "", "street_name": "", "street_type": ""}
    tokens = (line or "").split()
    if not tokens:
        return result

    index = 0
    if HOUSE_NUMBER_PATTERN.match(tokens[0]):
        result["house_number"] = tokens[0]
        index = 1

    if index < len(tokens) and len(tokens) - index > 1:
        direction = DIRECTIONS.get(tokens[index].lower().rstrip("."))
        if direction:
            result["street_direction"] = direction
            index += 1

    type_index = -1
    for position in range(len(tokens) - 1, index, -1):
        street_type = STREET_TYPES.get(re.sub(r"[.,]", "", tokens[position].lower()))
        if street_type:
            type_index = position
            result["street_type"] = street_type
            break

    name_tokens = tokens[index:type_index] if type_index > index else tokens[index:]
    result["street_name"] = " ".join(name_tokens)
    return result


def parse_address_string(text: str) -> AddressComponents:
    """
    Parse ``street[, city[, state postal[, country]]]``.

    The third part is tried against the US ZIP shape, then the Canadian
    postal shape, then a trailing postal-looking word.
    """
    parts = [part.strip() for part in (text or "").split(",") if part.strip()]
    values: Dict[str, str] = {}
    if not parts:
        return AddressComponents()

    unit = UNIT_SPLIT_PATTERN.match(parts[0])
    if unit:
        values["address_line_1"] = unit.group(1).strip()
        values["address_line_2"] = f"{unit.group(2)} {unit.group(3)}".strip()
        values["unit_type"] = unit.group(2)
        values["unit_number"] = unit.group(3).strip()
    else:
        values["address_line_1"] = parts[0]

    if len(parts) >= 2:
        values["city"] = parts[1]

    if len(parts) >= 3:
        state_zip = parts[2]
        us_zip = US_ZIP_PATTERN.search(state_zip)
        ca_postal = CA_POSTAL_PATTERN.search(state_zip)
        if us_zip:
            values["postal_code"] = us_zip.group(1)
            values["state_province"] = state_zip.replace(us_zip.group(0), "").strip()
        elif ca_postal:
            values["postal_code"] = ca_postal.group(1).upper()
            values["state_province"] = state_zip.replace(ca_postal.group(0), "").strip()
        else:
            words = state_zip.split()
            if len(words) > 1 and TRAILING_POSTAL_PATTERN.match(words[-1]):
                values["postal_code"] = words[-1]
                values["state_province"] = " ".join(words[:-1])
            else:
                values["state_province"] = state_zip

    if len(parts) >= 4:
        values["country"] = parts[3]

    return AddressComponents(**values)


def build_address_line_1(components: AddressComponents) -> str:
    parts = [
        components.house_number,
        components.street_direction,
        components.street_name,
        components.street_type,
    ]
    return " ".join(part for part in parts if part)


def build_address_line_2(components: AddressComponents) -> str:
    return " ".join(part for part in (components.unit_type, components.unit_number) if part)


def parse_address_input(
    payload: Union[str, Mapping[str, Any], AddressComponents, None]
) -> AddressComponents:
    if payload is None:
        return AddressComponents()
    if isinstance(payload, AddressComponents):
        components = payload
    elif isinstance(payload, str):
        components = parse_address_string(payload)
    else:
        components = AddressComponents.from_mapping(payload)

    if not components.address_line_1 and (components.house_number or components.street_name):
        components = components.replace(address_line_1=build_address_line_1(components))
    if not components.address_line_2 and (components.unit_type or components.unit_number):
        components = components.replace(address_line_2=build_address_line_2(components))
    if components.address_line_1 and not components.street_name:
        line = parse_address_line_1(components.address_line_1)
        components = components.replace(
            **{key: value for key, value in line.items() if not getattr(components, key)}
        )
    return components


def _abbreviation(value: str, table: Mapping[str, str], strip: str = "[.,]") -> str:
    if not value:
        return ""
    return table.get(re.sub(strip, "", value.lower()), value)


def _recase(value: str) -> str:
    # Mixed case is taken as deliberate (McArthur, DeKalb).
    if value.islower() or value.isupper():
        return title_case(value)
    return value


def standardize_components(
    components: AddressComponents,
    default_country: Optional[str] = None,
    street_types: Optional[Mapping[str, str]] = None,
) -> AddressComponents:
    """Apply abbreviation, casing and postal formatting rules."""
    country_code = components.country_code.upper()
    if not country_code and components.country:
        country_code = normalize_country_iso2(components.country)
    country = components.country
    if country_code and (not country or normalize_country_iso2(country) == country_code):
        country = country_name(country_code) or country

    standardized = components.replace(
        street_type=_abbreviation(components.street_type, street_types or STREET_TYPES),
        street_direction=_abbreviation(components.street_direction, DIRECTIONS),
        unit_type=_abbreviation(components.unit_type, UNIT_TYPES, strip="[.]"),
        street_name=_recase(components.street_name),
        state_province=normalize_state(components.state_province),
        city=title_case(components.city),
        country_code=country_code,
        country=country,
        postal_code=format_postal_code(
            components.postal_code,
            country_code or infer_country_from_postal(components.postal_code) or default_country or "US",
        ),
    )
    if standardized.street_name:
        standardized = standardized.replace(address_line_1=build_address_line_1(standardized))
    if standardized.unit_type or standardized.unit_number:
        standardized = standardized.replace(address_line_2=build_address_line_2(standardized))
    return standardized


def build_address_string(components: AddressComponents) -> str:
    """Most specific single-line query for the components."""
    parts = [components.address_line_1, components.address_line_2, components.city]
    state_zip = " ".join(p for p in (components.state_province, components.postal_code) if p)
    parts.append(state_zip)
    country = components.country or COUNTRY_NAMES.get(components.country_code, "")
    if country and components.country_code != "US":
        parts.append(country)
    return ", ".join(part for part in parts if part)


def address_cache_key(components: AddressComponents) -> str:
    values = (getattr(components, name) for name in CACHE_KEY_FIELDS)
    return "|".join(value.strip().lower() for value in values if value and value.strip())


def was_address_corrected(original: AddressComponents, standardized: AddressComponents) -> bool:
    for name in CORRECTION_FIELDS:
        before = getattr(original, name).strip().lower()
        after = getattr(standardized, name).strip().lower()
        if before and after and before != after:
            return True
    return False
