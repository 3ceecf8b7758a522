from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberFormat, PhoneNumberType

from .cache import PHONE_TABLE, ResultCache
from .common import new_result
from .config_loader import ClientConfig, PhoneConfig, ValidationOptions
from .logging_utils import mask_value
from .models import ConfidenceLevel, FieldType, Status, SubStatus, ValidationResult, ValidationStep
from .reference_data import PhoneReferenceData

logger = logging.getLogger(__name__)

PHONE_INLINE_EXTENSION_PATTERN = re.compile(
    r"^(?P<number>.+?)[\s,;/]*(?:ext\.?|extension|x|#)\s*(?P<ext>\d{1,6})\s*$",
    re.IGNORECASE,
)
STRIP_PATTERN = re.compile(r"[\s\-().]")
# Leading digit group, then letters: 1-800-FLOWERS.
VANITY_PATTERN = re.compile(r"^\+?\d+[a-z][a-z\d]*$")
MIN_FALLBACK_DIGITS = 7

KEYPAD = {
    **dict.fromkeys("abc", "2"),
    **dict.fromkeys("def", "3"),
    **dict.fromkeys("ghi", "4"),
    **dict.fromkeys("jkl", "5"),
    **dict.fromkeys("mno", "6"),
    **dict.fromkeys("pqrs", "7"),
    **dict.fromkeys("tuv", "8"),
    **dict.fromkeys("wxyz", "9"),
}

# (digit count, national prefix pattern, country); first match wins.
PATTERN_RULES: Tuple[Tuple[Tuple[int, ...], re.Pattern, str], ...] = (
    ((10,), re.compile(r"^04"), "AU"),
    ((10,), re.compile(r"^0[2378]"), "AU"),
    ((11,), re.compile(r"^07"), "GB"),
    ((11,), re.compile(r"^0[12]"), "GB"),
    ((10,), re.compile(r"^0[67]"), "FR"),
    ((10,), re.compile(r"^0[1-59]"), "FR"),
    ((11,), re.compile(r"^09"), "PH"),
    ((11, 12), re.compile(r"^01[5-7]"), "DE"),
    ((10,), re.compile(r"^[2-9]"), "US"),
    ((11,), re.compile(r"^1[2-9]"), "US"),
)

METHOD_POINTS = {
    "international": 40,
    "explicit_country": 35,
    "fallback": 25,
    "pattern_detection": 15,
}
GUESSED_METHODS = frozenset({"pattern_detection", "fallback"})

LINE_TYPE_NAMES = {
    PhoneNumberType.MOBILE: "mobile",
    PhoneNumberType.FIXED_LINE: "fixed_line",
    PhoneNumberType.FIXED_LINE_OR_MOBILE: "mobile_or_fixed",
    PhoneNumberType.TOLL_FREE: "toll_free",
    PhoneNumberType.PREMIUM_RATE: "premium_rate",
    PhoneNumberType.SHARED_COST: "shared_cost",
    PhoneNumberType.VOIP: "voip",
    PhoneNumberType.PERSONAL_NUMBER: "personal_number",
    PhoneNumberType.PAGER: "pager",
    PhoneNumberType.UAN: "uan",
    PhoneNumberType.VOICEMAIL: "voicemail",
}


@dataclass(frozen=True)
class CleanedPhone:
    number: str
    extension: str = ""


@dataclass(frozen=True)
class ParseAttempt:
    strategy: str
    country: Optional[str]
    success: bool
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "country": self.country,
            "success": self.success,
            "reason": self.reason,
        }


@dataclass
class _Resolution:
    parsed: phonenumbers.PhoneNumber
    method: str
    country: str
    ambiguous: int = 0


def clean_phone_number(raw: str) -> CleanedPhone:
    """
    Strip punctuation, split off an extension, map keypad letters of vanity
    numbers and turn international dialing prefixes (0011, 011, 00) into ``+``.
    Letters anywhere else are dropped.
    """
    text = (raw or "").strip()
    if not text:
        return CleanedPhone("")
    extension = ""
    match = PHONE_INLINE_EXTENSION_PATTERN.match(text)
    if match and re.search(r"\d", match.group("number")):
        text = match.group("number")
        extension = match.group("ext")

    text = STRIP_PATTERN.sub("", text).lower()
    if VANITY_PATTERN.match(text):
        vanity = "".join(KEYPAD.get(ch, ch) for ch in text)
        if len(re.sub(r"\D", "", vanity)) >= MIN_FALLBACK_DIGITS:
            text = vanity
    plus = text.startswith("+")
    digits = re.sub(r"\D", "", text)
    if plus:
        return CleanedPhone(f"+{digits}", extension)

    if digits.startswith("0011") and len(digits) > 12:
        return CleanedPhone(f"+{digits[4:]}", extension)
    if digits.startswith("011") and len(digits) > 11:
        return CleanedPhone(f"+{digits[3:]}", extension)
    if digits.startswith("00") and len(digits) > 10:
        return CleanedPhone(f"+{digits[2:]}", extension)
    return CleanedPhone(digits, extension)


def _parse(number: str, region: Optional[str]) -> Optional[phonenumbers.PhoneNumber]:
    try:
        return phonenumbers.parse(number, region)
    except NumberParseException:
        return None


def _is_valid(parsed: Optional[phonenumbers.PhoneNumber]) -> bool:
    return parsed is not None and phonenumbers.is_valid_number(parsed)


def _possible_national_length(country: str, national: str) -> bool:
    if len(national) < MIN_FALLBACK_DIGITS:
        return False
    metadata = phonenumbers.PhoneMetadata.metadata_for_region(country)
    if metadata is None or metadata.general_desc is None:
        return True
    lengths = metadata.general_desc.possible_length or ()
    return not lengths or len(national) in lengths


def matching_pattern_countries(digits: str) -> List[str]:
    countries: List[str] = []
    for lengths, pattern, country in PATTERN_RULES:
        if len(digits) in lengths and pattern.match(digits) and country not in countries:
            countries.append(country)
    return countries


def _e164(parsed: phonenumbers.PhoneNumber) -> str:
    return phonenumbers.format_number(parsed, PhoneNumberFormat.E164)


class PhoneValidator:
    """Multi-strategy phone parsing with a scored, explainable verdict."""

    def __init__(
        self,
        config: PhoneConfig,
        reference: PhoneReferenceData,
        cache: ResultCache,
        client: Optional[ClientConfig] = None,
    ) -> None:
        self.config = config
        self.reference = reference
        self.cache = cache
        self.client = client or ClientConfig()
        self.stats: Counter = Counter()

    def _calling_code(self, country: str) -> str:
        data = self.reference.countries.get(country)
        if data and data.calling_code:
            return data.calling_code
        return f"+{phonenumbers.country_code_for_region(country)}"

    def _resolve(
        self, number: str, explicit: Optional[str], strict: bool, attempts: List[ParseAttempt]
    ) -> Tuple[Optional[_Resolution], Optional[phonenumbers.PhoneNumber]]:
        """Return the accepted resolution and the last structurally parsed number."""
        last_parsed: Optional[phonenumbers.PhoneNumber] = None

        if number.startswith("+"):
            parsed = _parse(number, None)
            last_parsed = parsed or last_parsed
            if _is_valid(parsed):
                region = phonenumbers.region_code_for_number(parsed) or ""
                attempts.append(ParseAttempt("international", region, True))
                return _Resolution(parsed, "international", region), last_parsed
            attempts.append(
                ParseAttempt("international", None, False, "invalid" if parsed else "unparseable")
            )
            return None, last_parsed

        tried: List[str] = []
        if explicit:
            tried.append(explicit)
            parsed = _parse(number, explicit)
            last_parsed = parsed or last_parsed
            if _is_valid(parsed):
                attempts.append(ParseAttempt("explicit_country", explicit, True))
                return _Resolution(parsed, "explicit_country", explicit), last_parsed
            attempts.append(
                ParseAttempt("explicit_country", explicit, False, "invalid" if parsed else "unparseable")
            )
            if strict:
                return None, last_parsed

        matched = matching_pattern_countries(number)
        guess = next((country for country in matched if country not in tried), None)
        if guess:
            tried.append(guess)
            parsed = _parse(number, guess)
            last_parsed = parsed or last_parsed
            if _is_valid(parsed):
                attempts.append(ParseAttempt("pattern_detection", guess, True))
                e164 = _e164(parsed)
                ambiguous = 0
                for other in matched:
                    if other == guess or other == explicit:
                        continue
                    alternative = _parse(number, other)
                    if _is_valid(alternative) and _e164(alternative) != e164:
                        ambiguous += 1
                return _Resolution(parsed, "pattern_detection", guess, ambiguous), last_parsed
            attempts.append(ParseAttempt("pattern_detection", guess, False, "invalid"))

        national = number[1:] if number.startswith("0") else number
        resolution: Optional[_Resolution] = None
        seen: List[str] = []
        for country in self.config.fallback_countries:
            if country in tried:
                continue
            if not _possible_national_length(country, national):
                if resolution is None:
                    attempts.append(ParseAttempt("fallback", country, False, "length"))
                continue
            parsed = _parse(f"{self._calling_code(country)}{national}", None)
            if not _is_valid(parsed):
                if resolution is None:
                    attempts.append(ParseAttempt("fallback", country, False, "invalid"))
                continue
            e164 = _e164(parsed)
            if resolution is None:
                region = phonenumbers.region_code_for_number(parsed) or country
                attempts.append(ParseAttempt("fallback", region, True))
                resolution = _Resolution(parsed, "fallback", region)
                seen.append(e164)
            elif e164 not in seen:
                seen.append(e164)
                resolution.ambiguous += 1
            last_parsed = last_parsed or parsed
        return resolution, last_parsed

    def _line_type(self, parsed: phonenumbers.PhoneNumber, country: str) -> Tuple[str, int]:
        """Return ``(line_type, points)``."""
        number_type = phonenumbers.number_type(parsed)
        national = str(parsed.national_number)
        data = self.reference.countries.get(country)
        prefix_mobile = bool(
            data and any(national.startswith(prefix) for prefix in data.mobile_prefixes)
        )
        if number_type in (PhoneNumberType.MOBILE, PhoneNumberType.FIXED_LINE):
            return LINE_TYPE_NAMES[number_type], 20
        if number_type == PhoneNumberType.FIXED_LINE_OR_MOBILE:
            if country in self.config.mobile_dominant_countries or prefix_mobile:
                return "mobile", 10
            return "mobile_or_fixed", 15
        if number_type == PhoneNumberType.UNKNOWN:
            return ("mobile", 10) if prefix_mobile else ("unknown", 0)
        return LINE_TYPE_NAMES.get(number_type, "unknown"), 15

    @staticmethod
    def score(
        method: str,
        is_valid: bool,
        is_possible: bool,
        line_points: int,
        failed_attempts: int,
        ambiguous: int,
    ) -> Tuple[float, List[List[Any]]]:
        factors: List[List[Any]] = [[f"method:{method}", METHOD_POINTS.get(method, 0)]]
        if is_valid:
            factors.append(["valid_number", 20])
        if is_possible:
            factors.append(["possible_number", 10])
        factors.append(["line_type", line_points])
        factors.append(["efficiency", max(0, 10 - 3 * failed_attempts)])
        if method in GUESSED_METHODS:
            factors.append(["guessed_country", -10])
        if ambiguous:
            factors.append(["ambiguity", -min(20, 10 * ambiguous)])
        total = sum(points for _, points in factors)
        return float(max(0, min(100, total))), factors

    async def validate(
        self, phone: Any, options: Optional[ValidationOptions] = None
    ) -> ValidationResult:
        options = options or ValidationOptions()
        self.stats["validations"] += 1
        raw = "" if phone is None else str(phone)
        client_id = options.client_id or self.client.default_client_id
        steps: List[ValidationStep] = []

        def finish(
            normalized: str,
            status: Status,
            sub_status: SubStatus,
            confidence: float,
            format_valid: bool,
            was_corrected: bool,
            components: Dict[str, Any],
        ) -> ValidationResult:
            return new_result(
                FieldType.PHONE,
                raw,
                normalized,
                status=status,
                sub_status=sub_status,
                confidence=confidence,
                format_valid=format_valid,
                was_corrected=was_corrected,
                component_fields=components,
                validation_steps=steps,
                client_id=client_id,
                version=self.client.version,
            )

        if not raw.strip():
            steps.append(ValidationStep("input_check", False, "empty input"))
            return finish("", Status.INVALID, SubStatus.EMPTY_INPUT, 0, False, False, {})

        cleaned = clean_phone_number(raw)
        steps.append(ValidationStep("cleaning", bool(cleaned.number), cleaned.number))
        attempts: List[ParseAttempt] = []
        strict = bool(options.strict if options.strict is not None else self.config.strict)
        resolution, last_parsed = (None, None)
        if cleaned.number.lstrip("+"):
            resolution, last_parsed = self._resolve(
                cleaned.number, options.country, strict and bool(options.country), attempts
            )

        if resolution is None:
            sub_status = SubStatus.INVALID_NUMBER if last_parsed is not None else SubStatus.UNPARSEABLE
            steps.append(ValidationStep("country_resolution", False, sub_status.value))
            logger.debug("Phone %s did not resolve: %s", mask_value(raw), sub_status.value)
            return finish(
                cleaned.number,
                Status.INVALID,
                sub_status,
                0,
                False,
                False,
                {
                    "extension": cleaned.extension,
                    "attempts": [attempt.to_dict() for attempt in attempts],
                },
            )

        parsed = resolution.parsed
        e164 = _e164(parsed)
        steps.append(ValidationStep("country_resolution", True, f"{resolution.method}:{resolution.country}"))

        use_cache = options.use_cache and self.cache.enabled
        if use_cache:
            cached = self.cache.get(PHONE_TABLE, e164)
            if cached is not None:
                self.stats["cache_hits"] += 1
                return cached

        country = phonenumbers.region_code_for_number(parsed) or resolution.country
        line_type, line_points = self._line_type(parsed, country)
        failed = sum(1 for attempt in attempts if not attempt.success)
        confidence, factors = self.score(
            resolution.method,
            True,
            phonenumbers.is_possible_number(parsed),
            line_points,
            failed,
            resolution.ambiguous,
        )
        if resolution.ambiguous:
            steps.append(ValidationStep("ambiguity", False, f"{resolution.ambiguous} other candidate(s)"))

        components = {
            "e164": e164,
            "international": phonenumbers.format_number(parsed, PhoneNumberFormat.INTERNATIONAL),
            "national": phonenumbers.format_number(parsed, PhoneNumberFormat.NATIONAL),
            "rfc3966": phonenumbers.format_number(parsed, PhoneNumberFormat.RFC3966),
            "country": country,
            "calling_code": f"+{parsed.country_code}",
            "line_type": line_type,
            "is_mobile": line_type == "mobile",
            "extension": cleaned.extension,
            "method": resolution.method,
            "attempts": [attempt.to_dict() for attempt in attempts],
            "confidence_factors": factors,
        }
        result = finish(
            e164,
            Status.VALID,
            SubStatus.VALID_NUMBER,
            confidence,
            True,
            e164 != raw.strip(),
            components,
        )
        if use_cache and result.confidence_level.rank >= ConfidenceLevel.HIGH.rank:
            self.cache.put(PHONE_TABLE, e164, result)
        return result

