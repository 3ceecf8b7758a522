from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .address_parsing import (
    address_cache_key,
    build_address_string,
    parse_address_input,
    standardize_components,
    was_address_corrected,
)
from .cache import ADDRESS_TABLE, ResultCache
from .common import new_result
from .config_loader import AddressConfig, ClientConfig, ValidationOptions
from .errors import ExternalProviderError
from .models import AddressComponents, FieldType, Status, SubStatus, ValidationResult, ValidationStep
from .normalization import (
    BOUNDING_BOXES,
    STATE_CODES,
    closest_city,
    country_name,
    infer_country_from_postal,
    is_valid_postal_code,
    lookup_city,
    match_state_variant,
    normalize_state,
)
from .opencage import GeocodeMatch, OpenCageClient
from .reference_data import AddressReferenceData

logger = logging.getLogger(__name__)

GEOCODE_CAP = 95
POSTAL_PROVIDER_CAP = 85
POSTAL_FORMAT_CAP = 75
CITY_STATE_PROVIDER_CAP = 80
CITY_STATE_STATIC_CAP = 75
FUZZY_CAP = 70

# Fields that count towards geocode completeness.
COMPLETENESS_FIELDS = ("address_line_1", "city", "state_province", "postal_code", "country_code")


@dataclass
class AddressCandidate:
    method: str
    confidence: float
    corrections: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


def basic_score(components: AddressComponents) -> Tuple[float, List[str]]:
    """Structural completeness score, 100 minus deductions for gaps."""
    score = 100
    warnings: List[str] = []
    if not components.has_street:
        score -= 30
        warnings.append("Missing street address")
    if not components.city:
        score -= 20
        warnings.append("Missing city")
    if not components.state_province:
        score -= 20
        warnings.append("Missing state/province")
    if not components.postal_code:
        score -= 10
        warnings.append("Missing postal code")
    if not (components.country or components.country_code):
        score -= 5
        warnings.append("Missing country")
    if (
        components.postal_code
        and components.country_code
        and not is_valid_postal_code(components.postal_code, components.country_code)
    ):
        score -= 20
        warnings.append("Invalid postal code format")
    return float(max(0, score)), warnings


def fill_empty(components: AddressComponents, values: Mapping[str, str]) -> Dict[str, str]:
    """Subset of ``values`` that lands only in empty component fields."""
    return {
        name: value
        for name, value in values.items()
        if value and not getattr(components, name)
    }


def _same_postal(a: str, b: str) -> bool:
    return a.replace(" ", "").upper() == b.replace(" ", "").upper()


def _state_from_match(match: GeocodeMatch) -> str:
    if match.state_code:
        return match.state_code.upper()
    return normalize_state(match.state)


@dataclass
class _AddressRun:
    components: AddressComponents
    options: ValidationOptions
    steps: List[ValidationStep] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    candidates: List[AddressCandidate] = field(default_factory=list)
    provider_down: bool = False
    geocode: Optional[GeocodeMatch] = None

    def step(self, name: str, passed: bool, detail: str = "") -> None:
        self.steps.append(ValidationStep(name, passed, detail))


class AddressValidator:
    """
    Hierarchical address validation.

    Levels run strongest first (geocode, postal code, city/state, fuzzy
    match) and the structural basic score always closes the list. A later
    level only wins when it is strictly more confident.
    """

    def __init__(
        self,
        config: AddressConfig,
        reference: AddressReferenceData,
        cache: ResultCache,
        provider: Optional[OpenCageClient] = None,
        client: Optional[ClientConfig] = None,
    ) -> None:
        self.config = config
        self.reference = reference
        self.cache = cache
        self.provider = provider
        self.client = client or ClientConfig()
        self.stats: Counter = Counter()

    def _provider_usable(self, run: _AddressRun) -> bool:
        return bool(
            self.config.geocode
            and run.options.use_provider
            and not run.provider_down
            and self.provider is not None
            and self.provider.enabled
        )

    async def _lookup(self, run: _AddressRun, query: str, country_code: str) -> Optional[GeocodeMatch]:
        self.stats["provider_calls"] += 1
        try:
            return await self.provider.geocode(
                query,
                country_code=country_code or None,
                bounds=BOUNDING_BOXES.get(country_code or self.config.default_country),
                timeout_ms=run.options.timeout_ms,
            )
        except ExternalProviderError as exc:
            self.stats["provider_errors"] += 1
            run.provider_down = True
            logger.warning("Geocoding unavailable, continuing with local levels: %s", exc)
            run.warnings.append("Geocoding unavailable")
            return None

    async def _geocode_level(self, run: _AddressRun) -> Optional[AddressCandidate]:
        c = run.components
        has_signal = c.postal_code or (c.city and c.state_province) or c.has_street
        if not has_signal or not self._provider_usable(run):
            return None
        match = await self._lookup(run, build_address_string(c), c.country_code)
        if match is None:
            run.step("geocode", False, "no match" if not run.provider_down else "provider error")
            return None
        run.geocode = match

        street = " ".join(part for part in (match.house_number, match.road) if part)
        proposed = {
            "address_line_1": street,
            "city": match.city,
            "state_province": _state_from_match(match),
            "postal_code": match.postcode,
            "country_code": match.country_code,
            "country": match.country,
        }
        warnings = []
        for name in ("city", "state_province", "postal_code"):
            supplied, found = getattr(c, name), proposed[name]
            if supplied and found and supplied.lower() != found.lower():
                warnings.append(f"Geocoder disagrees on {name.replace('_', ' ')}")
        corrections = fill_empty(c, proposed)
        merged = c.replace(**corrections)
        completeness = sum(1 for name in COMPLETENESS_FIELDS if getattr(merged, name))
        confidence = min(match.confidence * 10 + 2 * completeness, GEOCODE_CAP)
        run.step("geocode", True, f"confidence {match.confidence}/10")
        return AddressCandidate("geocode", confidence, corrections, warnings)

    async def _postal_level(self, run: _AddressRun) -> Optional[AddressCandidate]:
        c = run.components
        if not c.postal_code:
            return None
        country = c.country_code or infer_country_from_postal(c.postal_code) or self.config.default_country
        if not is_valid_postal_code(c.postal_code, country):
            run.step("postal_code", False, "invalid format")
            run.warnings.append("Invalid postal code format")
            return None

        if self._provider_usable(run):
            match = await self._lookup(run, f"{c.postal_code}, {country_name(country) or country}", country)
            if match is not None and _same_postal(match.postcode, c.postal_code):
                corrections = fill_empty(
                    c, {"city": match.city, "state_province": _state_from_match(match)}
                )
                score, _ = basic_score(c.replace(**corrections))
                run.step("postal_code", True, "confirmed by geocoder")
                return AddressCandidate(
                    "postal_code", min(score + 10, POSTAL_PROVIDER_CAP), corrections
                )

        score, _ = basic_score(c)
        run.step("postal_code", True, "format only")
        return AddressCandidate(
            "postal_code",
            min(score + 5, POSTAL_FORMAT_CAP),
            warnings=["Postal code checked for format only"],
        )

    async def _city_state_level(self, run: _AddressRun) -> Optional[AddressCandidate]:
        c = run.components
        if not (c.city and c.state_province):
            return None

        if self._provider_usable(run):
            query = ", ".join(p for p in (c.city, c.state_province, c.country or c.country_code) if p)
            match = await self._lookup(run, query, c.country_code)
            if match is not None:
                if (
                    match.city.lower() == c.city.lower()
                    and _state_from_match(match).upper() == c.state_province.upper()
                ):
                    corrections = fill_empty(c, {"postal_code": match.postcode})
                    score, _ = basic_score(c.replace(**corrections))
                    run.step("city_state", True, "confirmed by geocoder")
                    return AddressCandidate(
                        "city_state", min(score + 10, CITY_STATE_PROVIDER_CAP), corrections
                    )
                run.step("city_state", False, "geocoder mismatch")
                run.warnings.append("City and state do not match")
                return None

        known = lookup_city(c.city)
        if known is None:
            return None
        _, state, _ = known
        if state != c.state_province.upper():
            run.step("city_state", False, "static table mismatch")
            run.warnings.append("City and state do not match")
            return None
        score, _ = basic_score(c)
        run.step("city_state", True, "well-known city")
        return AddressCandidate("city_state", min(score + 5, CITY_STATE_STATIC_CAP))

    def _fuzzy_level(self, run: _AddressRun) -> Optional[AddressCandidate]:
        c = run.components
        corrections: Dict[str, str] = {}
        warnings: List[str] = []
        increment = 0

        if c.city:
            known = lookup_city(c.city)
            if known is None:
                close = closest_city(c.city, self.config.fuzzy_cutoff)
                known = lookup_city(close) if close else None
            if known is not None:
                display, state, country = known
                if display != c.city:
                    corrections["city"] = display
                    warnings.append(f"City corrected to {display}")
                    increment += 10
                if not c.state_province:
                    corrections["state_province"] = state
                    warnings.append(f"State inferred as {state}")
                    increment += 10
                if not c.country_code:
                    corrections["country_code"] = country
                    if not c.country:
                        corrections["country"] = country_name(country)

        if c.state_province and c.state_province.upper() not in STATE_CODES:
            code = match_state_variant(c.state_province, self.config.fuzzy_cutoff)
            if code:
                corrections["state_province"] = code
                warnings.append(f"State normalized to {code}")
                increment += 5

        if c.postal_code and not c.country_code and "country_code" not in corrections:
            inferred = infer_country_from_postal(c.postal_code)
            if inferred:
                corrections["country_code"] = inferred
                if not c.country:
                    corrections["country"] = country_name(inferred)
                warnings.append(f"Country inferred as {inferred} from postal code")
                increment += 5

        if not increment:
            return None
        score, _ = basic_score(c)
        run.step("fuzzy_match", True, ", ".join(warnings))
        return AddressCandidate("fuzzy_match", min(score + increment, FUZZY_CAP), corrections, warnings)

    async def validate(
        self,
        address: Union[str, Mapping[str, Any], AddressComponents, None],
        options: Optional[ValidationOptions] = None,
    ) -> ValidationResult:
        options = options or ValidationOptions()
        self.stats["validations"] += 1
        client_id = options.client_id or self.client.default_client_id
        original_input = address.to_dict() if isinstance(address, AddressComponents) else address
        if isinstance(original_input, Mapping):
            original_input = dict(original_input)

        parsed = parse_address_input(address)
        if parsed.is_empty():
            return new_result(
                FieldType.ADDRESS,
                original_input,
                "",
                status=Status.INVALID,
                sub_status=SubStatus.INSUFFICIENT_DATA,
                confidence=0,
                format_valid=False,
                validation_steps=[ValidationStep("input_check", False, "no address components")],
                client_id=client_id,
                version=self.client.version,
            )

        standardized = standardize_components(
            parsed, self.config.default_country, street_types=self.reference.street_types
        )
        cache_key = address_cache_key(standardized)
        use_cache = options.use_cache and self.cache.enabled
        if use_cache:
            cached = self.cache.get(ADDRESS_TABLE, cache_key)
            if cached is not None:
                self.stats["cache_hits"] += 1
                return cached

        run = _AddressRun(components=standardized, options=options)
        run.step("standardize", True)

        geocoded = await self._geocode_level(run)
        if geocoded is not None:
            run.candidates.append(geocoded)
        if geocoded is None or geocoded.confidence < self.config.geocode_short_circuit:
            for level in (self._postal_level, self._city_state_level):
                candidate = await level(run)
                if candidate is not None:
                    run.candidates.append(candidate)
            fuzzy = self._fuzzy_level(run)
            if fuzzy is not None:
                run.candidates.append(fuzzy)

        basic, basic_warnings = basic_score(standardized)
        run.candidates.append(AddressCandidate("basic", basic, warnings=basic_warnings))
        run.step("basic", basic > 0, f"score {basic:g}")

        best = run.candidates[0]
        for candidate in run.candidates[1:]:
            if candidate.confidence > best.confidence:
                best = candidate

        corrections: Dict[str, str] = {}
        for candidate in run.candidates:
            for name, value in candidate.corrections.items():
                corrections.setdefault(name, value)
            for warning in candidate.warnings:
                if warning not in run.warnings:
                    run.warnings.append(warning)

        final = standardized.replace(**corrections)
        if "address_line_1" in corrections:
            final = parse_address_input(final)

        confidence = best.confidence
        valid = confidence >= self.config.valid_threshold
        postal_ok = not final.postal_code or is_valid_postal_code(
            final.postal_code, final.country_code or self.config.default_country
        )
        components = final.to_dict()
        components.update(
            {
                "formatted_address": (run.geocode.formatted if run.geocode else "")
                or build_address_string(final),
                "method": best.method,
                "methods": [[candidate.method, candidate.confidence] for candidate in run.candidates],
                "latitude": run.geocode.latitude if run.geocode else None,
                "longitude": run.geocode.longitude if run.geocode else None,
                "geocoded_address": run.geocode.formatted if run.geocode else None,
            }
        )
        result = new_result(
            FieldType.ADDRESS,
            original_input,
            build_address_string(final),
            status=Status.VALID if valid else Status.INVALID,
            sub_status=SubStatus.CONFIRMED if valid else SubStatus.LOW_CONFIDENCE,
            confidence=confidence,
            format_valid=postal_ok,
            was_corrected=bool(corrections) or was_address_corrected(parsed, final),
            component_fields=components,
            validation_steps=run.steps,
            warnings=run.warnings,
            client_id=client_id,
            version=self.client.version,
        )
        if use_cache and valid and confidence >= self.config.cache_min_confidence:
            self.cache.put(ADDRESS_TABLE, cache_key, result)
        return result
