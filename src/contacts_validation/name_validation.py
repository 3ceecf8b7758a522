from __future__ import annotations

import logging
import re
import unicodedata
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .cache import NAME_TABLE, ResultCache
from .common import new_result
from .config_loader import ClientConfig, ValidationOptions
from .logging_utils import mask_value
from .models import ConfidenceLevel, FieldType, Status, SubStatus, ValidationResult, ValidationStep
from .reference_data import NameReferenceData

logger = logging.getLogger(__name__)

NAME_PUNCTUATION = frozenset("'-. ,")
WHITESPACE_PATTERN = re.compile(r"\s+")
LEVEL_CONFIDENCE = {"high": 90, "medium": 60, "low": 30}
# Unicode character-name prefixes, checked in order.
SCRIPT_PREFIXES = (
    ("CYRILLIC", "cyrillic"),
    ("GREEK", "greek"),
    ("ARABIC", "arabic"),
    ("HEBREW", "hebrew"),
    ("DEVANAGARI", "devanagari"),
    ("THAI", "thai"),
    ("HANGUL", "korean"),
    ("HIRAGANA", "japanese"),
    ("KATAKANA", "japanese"),
    ("CJK", "han"),
)


def sanitize_name(value: Any) -> str:
    if value is None:
        return ""
    return WHITESPACE_PATTERN.sub(" ", str(value)).strip()


def is_valid_name_format(name: str) -> bool:
    """Letters, combining marks and ``'-. ,`` only; at least two characters."""
    if len(name) < 2:
        return False
    for char in name:
        if char in NAME_PUNCTUATION:
            continue
        if unicodedata.category(char)[0] not in ("L", "M"):
            return False
    return True


def detect_script(name: str) -> str:
    saw_letter = False
    for char in name:
        if not char.isalpha():
            continue
        saw_letter = True
        char_name = unicodedata.name(char, "")
        if char_name.startswith("LATIN"):
            continue
        for prefix, script in SCRIPT_PREFIXES:
            if char_name.startswith(prefix):
                return script
        return "other"
    return "latin" if saw_letter else "unknown"


def _input_form(original: Any) -> str:
    """Sanitized text of a name input; separate names join as ``first|last``."""
    if isinstance(original, dict):
        return f"{sanitize_name(original.get('first_name'))}|{sanitize_name(original.get('last_name'))}"
    return sanitize_name(original)


def _bare(token: str) -> str:
    return token.lower().rstrip(".").replace(",", "")


def _capitalize(word: str) -> str:
    return word[:1].upper() + word[1:].lower() if word else word


def _is_mixed_case(word: str) -> bool:
    return word != word.lower() and word != word.upper()


def _is_uniform_case(word: str) -> bool:
    return bool(word) and (word == word.upper() or word == word.lower())


@dataclass
class ParsedName:
    first_name: str = ""
    middle_name: str = ""
    last_name: str = ""
    honorific: str = ""
    suffix: str = ""
    comma_format: bool = False
    reformatted: bool = False
    issues: List[str] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        first = " ".join(part for part in (self.honorific, self.first_name) if part)
        last = " ".join(part for part in (self.last_name, self.suffix) if part)
        return " ".join(part for part in (first, self.middle_name, last) if part)


class NameValidator:
    """
    Parses and recapitalizes personal names. Deterministic; the only I/O is
    the optional result cache.
    """

    def __init__(
        self,
        reference: NameReferenceData,
        cache: Optional[ResultCache] = None,
        client: Optional[ClientConfig] = None,
    ) -> None:
        self.reference = reference
        self.cache = cache or ResultCache(None)
        self.client = client or ClientConfig()
        self.stats: Counter = Counter()

    def contains_security_threat(self, name: str) -> bool:
        lowered = name.lower()
        return any(pattern in lowered for pattern in self.reference.security_patterns)

    def is_suspicious(self, name: str) -> bool:
        lowered = name.lower()
        if lowered in self.reference.suspicious_names:
            return True
        tokens = [token.strip("'-.,") for token in lowered.split()]
        return any(token in self.reference.suspicious_names for token in tokens if token)

    def is_honorific(self, token: str) -> bool:
        return _bare(token) in self.reference.honorifics

    def is_suffix(self, token: str) -> bool:
        bare = _bare(token)
        return bare in self.reference.suffixes

    def format_suffix(self, token: str) -> str:
        bare = _bare(token)
        if bare in self.reference.suffixes:
            return self.reference.suffixes[bare]
        return _capitalize(bare) + "."

    def format_honorific(self, token: str) -> str:
        word = token.rstrip(".")
        if _is_uniform_case(word):
            word = _capitalize(word)
        return word + ("." if token.endswith(".") else "")

    def proper_capitalize(self, name: str, is_last_name: bool = False) -> str:
        if not name:
            return name
        if detect_script(name) not in ("latin", "unknown"):
            return name
        if " " in name and not self._particle_lead(name):
            return " ".join(self.proper_capitalize(part, is_last_name) for part in name.split(" "))
        if "-" in name:
            return "-".join(self.proper_capitalize(part, is_last_name) for part in name.split("-"))

        lowered = name.lower()
        special = self.reference.special_cases.get(lowered)
        if special:
            return special

        particle = self._particle_lead(name)
        if particle:
            head, rest = name[: len(particle)], name[len(particle) + 1 :]
            head = _capitalize(head) if is_last_name else head.lower()
            return f"{head} {self.proper_capitalize(rest, is_last_name)}"
        if lowered in self.reference.particles:
            return _capitalize(name) if is_last_name else lowered

        if lowered.startswith("mac") and len(name) > 4 and _is_mixed_case(name):
            return "Mac" + name[3].upper() + name[4:]
        if lowered.startswith("mc") and len(name) > 2:
            return "Mc" + _capitalize(name[2:])
        if lowered.startswith("o'") and len(name) > 2:
            return "O'" + _capitalize(name[2:])
        if "'" in name:
            return "'".join(_capitalize(part) for part in name.split("'"))
        return _capitalize(name)

    def _particle_lead(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for particle in self.reference.particles:
            if lowered.startswith(particle + " "):
                return particle
        return None

    def parse_components(self, name: str) -> ParsedName:
        parsed = ParsedName()
        if "," in name:
            return self._parse_comma_form(name)

        tokens = name.split(" ")
        if len(tokens) > 1 and self.is_honorific(tokens[0]):
            parsed.honorific = self.format_honorific(tokens[0])
            parsed.reformatted = True
            tokens = tokens[1:]
        if len(tokens) > 1 and self.is_suffix(tokens[-1]):
            parsed.suffix = self.format_suffix(tokens[-1])
            parsed.reformatted = True
            tokens = tokens[:-1]

        if len(tokens) == 1:
            parsed.first_name = tokens[0]
        elif len(tokens) == 2:
            parsed.first_name, parsed.last_name = tokens
        elif len(tokens) >= 3:
            parsed.first_name = tokens[0]
            start = next(
                (
                    index
                    for index in range(1, len(tokens))
                    if tokens[index].lower() in self.reference.particles
                ),
                len(tokens) - 1,
            )
            parsed.middle_name = " ".join(tokens[1:start])
            parsed.last_name = " ".join(tokens[start:])
        return parsed

    def _parse_comma_form(self, name: str) -> ParsedName:
        parsed = ParsedName(comma_format=True, reformatted=True)
        parts = [part.strip() for part in name.split(",")]
        if len(parts) != 2 or not parts[0] or not parts[1]:
            parsed.issues.append("Unrecognized comma-separated name")
            return parsed

        last_tokens = parts[0].split(" ")
        if len(last_tokens) > 1 and self.is_suffix(last_tokens[-1]):
            parsed.suffix = self.format_suffix(last_tokens[-1])
            last_tokens = last_tokens[:-1]
        parsed.last_name = " ".join(last_tokens)

        first_tokens = parts[1].split(" ")
        if len(first_tokens) > 1 and self.is_honorific(first_tokens[0]):
            parsed.honorific = self.format_honorific(first_tokens[0])
            first_tokens = first_tokens[1:]
        parsed.first_name = first_tokens[0]
        parsed.middle_name = " ".join(first_tokens[1:])
        return parsed

    def _finish(
        self,
        original: Any,
        parsed: ParsedName,
        script: str,
        level: str,
        originals: Tuple[str, ...],
        steps: List[ValidationStep],
        warnings: List[str],
        client_id: str,
    ) -> ValidationResult:
        raw = (parsed.first_name, parsed.middle_name, parsed.last_name)
        parsed.first_name = self.proper_capitalize(parsed.first_name)
        parsed.middle_name = self.proper_capitalize(parsed.middle_name)
        parsed.last_name = self.proper_capitalize(parsed.last_name, is_last_name=True)
        steps.append(ValidationStep("capitalization", True, parsed.full_name))

        changed = raw != (parsed.first_name, parsed.middle_name, parsed.last_name)
        was_corrected = (
            changed
            or parsed.reformatted
            or any(_is_uniform_case(value) for value in originals if any(c.isalpha() for c in value))
        )

        status, sub_status, format_valid = Status.VALID, SubStatus.VALID_FORMAT, True
        issues = parsed.issues
        if not parsed.first_name and not parsed.last_name:
            status, sub_status, format_valid = Status.INVALID, SubStatus.INVALID_FORMAT, False
            issues.append("Missing both first and last name")
            level = "low"
        elif not parsed.first_name:
            issues.append("Missing first name")
            level = "medium" if level == "high" else level
        elif not parsed.last_name:
            issues.append("Missing last name")
            level = "medium" if level == "high" else level

        components = {
            "first_name": parsed.first_name,
            "middle_name": parsed.middle_name,
            "last_name": parsed.last_name,
            "honorific": parsed.honorific,
            "suffix": parsed.suffix,
            "full_name": parsed.full_name,
            "script": script,
            "is_comma_format": parsed.comma_format,
            "potential_issues": list(issues),
            "confidence_level": level,
        }
        return new_result(
            FieldType.NAME,
            original,
            parsed.full_name,
            status=status,
            sub_status=sub_status,
            confidence=LEVEL_CONFIDENCE[level] if format_valid else 0,
            format_valid=format_valid,
            was_corrected=was_corrected,
            component_fields=components,
            validation_steps=steps,
            warnings=warnings + issues,
            client_id=client_id,
            version=self.client.version,
        )

    def _rejected(
        self,
        original: Any,
        normalized: str,
        sub_status: SubStatus,
        issue: str,
        script: str,
        steps: List[ValidationStep],
        client_id: str,
    ) -> ValidationResult:
        return new_result(
            FieldType.NAME,
            original,
            normalized,
            status=Status.INVALID,
            sub_status=sub_status,
            confidence=0,
            format_valid=False,
            component_fields={
                "script": script,
                "potential_issues": [issue],
                "confidence_level": "low",
            },
            validation_steps=steps,
            warnings=[issue],
            client_id=client_id,
            version=self.client.version,
        )

    def _screen(
        self, original: Any, name: str, steps: List[ValidationStep], client_id: str
    ) -> Tuple[Optional[ValidationResult], str, List[str]]:
        script = detect_script(name)
        if not is_valid_name_format(name):
            steps.append(ValidationStep("format", False, "unsupported characters or too short"))
            return (
                self._rejected(
                    original, name, SubStatus.INVALID_FORMAT, "Name contains invalid characters",
                    script, steps, client_id,
                ),
                script,
                [],
            )
        steps.append(ValidationStep("format", True))
        if self.contains_security_threat(name):
            steps.append(ValidationStep("security", False, "code-like pattern"))
            logger.warning("Rejected name with code-like pattern: %s", mask_value(name))
            return (
                self._rejected(
                    original, name, SubStatus.SECURITY_RISK, "Name may contain code or SQL patterns",
                    script, steps, client_id,
                ),
                script,
                [],
            )
        warnings: List[str] = []
        if self.is_suspicious(name):
            warnings.append("Name may be a test or placeholder")
        return None, script, warnings

    def _empty(self, original: Any, steps: List[ValidationStep], client_id: str) -> ValidationResult:
        steps.append(ValidationStep("input_check", False, "empty input"))
        return new_result(
            FieldType.NAME,
            original,
            "",
            status=Status.INVALID,
            sub_status=SubStatus.EMPTY_INPUT,
            confidence=0,
            format_valid=False,
            component_fields={"potential_issues": ["Empty name"], "confidence_level": "low"},
            validation_steps=steps,
            client_id=client_id,
            version=self.client.version,
        )

    def _cached(self, form: str, options: ValidationOptions) -> Optional[ValidationResult]:
        if not (options.use_cache and self.cache.enabled):
            return None
        cached = self.cache.get(NAME_TABLE, form.lower())
        # Keys fold case; only an identical input may reuse the stored verdict.
        if cached is None or _input_form(cached.original_input) != form:
            return None
        self.stats["cache_hits"] += 1
        logger.debug("Name cache hit for %s", mask_value(form))
        return cached

    def _store(self, result: ValidationResult, form: str, options: ValidationOptions) -> ValidationResult:
        if (
            options.use_cache
            and result.valid
            and result.confidence_level.rank >= ConfidenceLevel.HIGH.rank
        ):
            self.cache.put(NAME_TABLE, form.lower(), result)
        return result

    def validate(self, name: Any, options: Optional[ValidationOptions] = None) -> ValidationResult:
        options = options or ValidationOptions()
        self.stats["validations"] += 1
        client_id = options.client_id or self.client.default_client_id
        steps: List[ValidationStep] = []
        sanitized = sanitize_name(name)
        if not sanitized:
            return self._empty(name, steps, client_id)
        cached = self._cached(sanitized, options)
        if cached is not None:
            return cached

        rejected, script, warnings = self._screen(name, sanitized, steps, client_id)
        if rejected is not None:
            return rejected

        parsed = self.parse_components(sanitized)
        steps.append(ValidationStep("parsing", True, "comma" if parsed.comma_format else "ordered"))
        level = "low" if warnings else "high"
        result = self._finish(name, parsed, script, level, (sanitized,), steps, warnings, client_id)
        return self._store(result, sanitized, options)

    def validate_separate_names(
        self, first_name: Any, last_name: Any, options: Optional[ValidationOptions] = None
    ) -> ValidationResult:
        options = options or ValidationOptions()
        self.stats["validations"] += 1
        client_id = options.client_id or self.client.default_client_id
        steps: List[ValidationStep] = []
        first = sanitize_name(first_name)
        last = sanitize_name(last_name)
        original: Dict[str, Any] = {"first_name": first_name, "last_name": last_name}
        combined = " ".join(part for part in (first, last) if part)
        if not combined:
            return self._empty(original, steps, client_id)
        form = _input_form(original)
        cached = self._cached(form, options)
        if cached is not None:
            return cached

        rejected, script, warnings = self._screen(original, combined, steps, client_id)
        if rejected is not None:
            return rejected

        parsed = ParsedName()
        first_tokens = first.split(" ") if first else []
        if len(first_tokens) > 1 and self.is_honorific(first_tokens[0]):
            parsed.honorific = self.format_honorific(first_tokens[0])
            parsed.reformatted = True
            first_tokens = first_tokens[1:]
        if first_tokens:
            parsed.first_name = first_tokens[0]
            parsed.middle_name = " ".join(first_tokens[1:])

        last_tokens = last.split(" ") if last else []
        if len(last_tokens) > 1 and self.is_suffix(last_tokens[-1]):
            parsed.suffix = self.format_suffix(last_tokens[-1])
            parsed.reformatted = True
            last_tokens = last_tokens[:-1]
        parsed.last_name = " ".join(last_tokens)
        steps.append(ValidationStep("parsing", True, "separate"))

        level = "low" if warnings else "high"
        result = self._finish(
            original, parsed, script, level, tuple(v for v in (first, last) if v), steps, warnings, client_id
        )
        return self._store(result, form, options)
