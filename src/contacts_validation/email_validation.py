from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from email_validator import EmailNotValidError, validate_email

from .cache import EMAIL_TABLE, ResultCache
from .common import new_result
from .config_loader import ClientConfig, EmailConfig, ValidationOptions
from .dns_check import MxChecker
from .errors import ExternalProviderError
from .logging_utils import mask_value
from .models import BounceStatus, FieldType, Status, SubStatus, ValidationResult, ValidationStep
from .reference_data import EmailReferenceData
from .zerobounce import EmailVerification, ZeroBounceClient

logger = logging.getLogger(__name__)

EMAIL_FORMAT_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
WHITESPACE_RE = re.compile(r"\s")

ALIAS_DOMAINS = frozenset({"gmail.com"})

PROVIDER_VALID = frozenset({"valid"})
PROVIDER_INVALID = frozenset({"invalid", "spamtrap", "abuse", "do_not_mail"})

PROVIDER_VALID_CONFIDENCE = 95
PROVIDER_UNCERTAIN_CONFIDENCE = 40
FALLBACK_VALID_CONFIDENCE = 60
FALLBACK_UNKNOWN_CONFIDENCE = 30


def is_valid_email_format(email: str) -> bool:
    return bool(email) and EMAIL_FORMAT_RE.match(email) is not None


def split_email(email: str) -> Tuple[str, str]:
    if "@" not in email:
        return email, ""
    local, _, domain = email.rpartition("@")
    return local, domain


def correct_email_typos(
    email: str,
    reference: EmailReferenceData,
    remove_gmail_aliases: bool = True,
) -> Tuple[str, bool]:
    """
    Return ``(corrected_email, changed)``.

    Corrections run in a fixed order: whitespace, typo TLD, missing-dot TLD,
    domain typo map, then gmail ``+tag`` aliases. Case folding alone does not
    count as a change.
    """
    if not email:
        return "", False
    cleaned = email.strip().lower()
    compact = WHITESPACE_RE.sub("", cleaned)
    changed = compact != cleaned
    local, domain = split_email(compact)
    if not domain:
        return compact, changed

    for typo, correct in reference.tld_typos.items():
        if domain.endswith(typo):
            domain = domain[: -len(typo)] + correct
            changed = True
            break

    if "." not in domain:
        for tld in sorted(reference.valid_tlds, key=len, reverse=True):
            bare = tld.lstrip(".")
            if domain.endswith(bare) and len(domain) > len(bare):
                domain = domain[: -len(bare)] + tld
                changed = True
                logger.debug("Missing-dot TLD repaired to %s", domain)
                break

    fixed = reference.domain_typos.get(domain)
    if fixed and fixed != domain:
        domain = fixed
        changed = True

    if remove_gmail_aliases and domain in ALIAS_DOMAINS and "+" in local:
        local = local.split("+", 1)[0]
        changed = True

    return f"{local}@{domain}", changed


@dataclass
class _EmailRun:
    """Mutable scratch state for one validation call."""

    raw: str
    client_id: str
    steps: List[ValidationStep] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    components: Dict[str, Any] = field(default_factory=dict)

    def step(self, name: str, passed: bool, detail: str = "") -> None:
        self.steps.append(ValidationStep(name, passed, detail))


class EmailValidator:
    """
    Email pipeline: cache, format, typo correction, domain classification,
    optional MX lookup, provider escalation, basic fallback.
    """

    def __init__(
        self,
        config: EmailConfig,
        reference: EmailReferenceData,
        cache: ResultCache,
        provider: Optional[ZeroBounceClient] = None,
        mx_checker: Optional[MxChecker] = None,
        client: Optional[ClientConfig] = None,
    ) -> None:
        self.config = config
        self.reference = reference
        self.cache = cache
        self.provider = provider
        self.mx_checker = mx_checker or MxChecker(
            ttl_seconds=config.mx_cache_ttl_seconds,
            timeout_seconds=config.mx_lookup_timeout_seconds,
        )
        self.client = client or ClientConfig()
        self.stats: Counter = Counter()

    def _provider_usable(self, options: ValidationOptions) -> bool:
        return bool(options.use_provider and self.provider is not None and self.provider.enabled)

    def _finish(
        self,
        run: _EmailRun,
        normalized: str,
        status: Status,
        sub_status: Optional[SubStatus],
        confidence: float,
        format_valid: bool,
        was_corrected: bool,
        bounce: BounceStatus,
    ) -> ValidationResult:
        local, domain = split_email(normalized)
        components = {
            "email": normalized,
            "local_part": local,
            "domain": domain,
            "bounce_status": bounce.value,
            "provider_status": None,
            "provider_sub_status": None,
            "did_you_mean": None,
            "mx_found": None,
            "domain_known_valid": domain in self.reference.valid_domains if domain else False,
            "free_email": None,
            "alias_removed": False,
        }
        components.update(run.components)
        return new_result(
            FieldType.EMAIL,
            run.raw,
            normalized,
            status=status,
            sub_status=sub_status,
            confidence=confidence,
            format_valid=format_valid,
            was_corrected=was_corrected,
            component_fields=components,
            validation_steps=run.steps,
            warnings=run.warnings,
            client_id=run.client_id,
            version=self.client.version,
        )

    async def _verify(self, email: str, options: ValidationOptions) -> EmailVerification:
        self.stats["provider_calls"] += 1
        try:
            return await self.provider.verify(email, timeout_ms=options.timeout_ms)
        except ExternalProviderError:
            self.stats["provider_errors"] += 1
            raise

    async def validate(
        self, email: Any, options: Optional[ValidationOptions] = None
    ) -> ValidationResult:
        options = options or ValidationOptions()
        self.stats["validations"] += 1
        return await self._validate(email, options, depth=0)

    async def _validate(
        self, email: Any, options: ValidationOptions, depth: int
    ) -> ValidationResult:
        reference = self.reference
        raw = "" if email is None else str(email)
        run = _EmailRun(raw=raw, client_id=options.client_id or self.client.default_client_id)

        if not raw.strip():
            run.step("input_check", False, "empty input")
            return self._finish(
                run, "", Status.INVALID, SubStatus.EMPTY_INPUT, 0, False, False, BounceStatus.LIKELY
            )

        cache_key = raw.strip().lower()
        use_cache = options.use_cache and self.cache.enabled
        if use_cache:
            cached = self.cache.get(EMAIL_TABLE, cache_key)
            if cached is not None:
                self.stats["cache_hits"] += 1
                logger.debug("Email cache hit for %s", mask_value(cache_key))
                return cached
            run.step("cache_lookup", False, "miss")

        if not is_valid_email_format(WHITESPACE_RE.sub("", raw.strip())):
            run.step("format_check", False, "grammar mismatch")
            suggestion = None
            if self._provider_usable(options) and depth < self.config.max_suggestion_depth:
                try:
                    suggestion = (await self._verify(raw.strip(), options)).did_you_mean
                except ExternalProviderError as exc:
                    logger.warning("Suggestion lookup failed for %s: %s", mask_value(raw), exc)
            if suggestion and suggestion != cache_key:
                run.step("provider_suggestion", True, suggestion)
                nested = await self._validate(suggestion, options, depth + 1)
                return nested.replace(
                    original_input=raw,
                    was_corrected=True,
                    validation_steps=tuple(run.steps) + nested.validation_steps,
                )
            return self._finish(
                run,
                raw.strip(),
                Status.INVALID,
                SubStatus.BAD_FORMAT,
                0,
                False,
                False,
                BounceStatus.LIKELY,
            )
        run.step("format_check", True)

        corrected, changed = correct_email_typos(
            raw, reference, remove_gmail_aliases=self.config.remove_gmail_aliases
        )
        original_local = split_email(raw.strip().lower())[0]
        local, domain = split_email(corrected)
        run.components["alias_removed"] = original_local != local and "+" in original_local
        run.step("typo_correction", True, corrected if changed else "no change")

        if domain in reference.invalid_domains:
            run.step("domain_check", False, "known invalid domain")
            return self._finish(
                run,
                corrected,
                Status.INVALID,
                SubStatus.INVALID_DOMAIN,
                0,
                True,
                changed,
                BounceStatus.LIKELY,
            )

        try:
            validate_email(corrected, check_deliverability=False)
        except EmailNotValidError as exc:
            run.step("syntax_confirmation", False, str(exc))
            return self._finish(
                run,
                corrected,
                Status.INVALID,
                SubStatus.BAD_FORMAT,
                0,
                False,
                changed,
                BounceStatus.LIKELY,
            )
        run.step("syntax_confirmation", True)
        run.step("domain_check", True, "known valid" if domain in reference.valid_domains else "unlisted")

        mx_found: Optional[bool] = None
        if self.config.check_mx_records:
            mx_found = await self.mx_checker.has_mx(domain)
            run.components["mx_found"] = mx_found
            if mx_found is False:
                run.step("mx_check", False, "no MX records")
                return self._finish(
                    run,
                    corrected,
                    Status.INVALID,
                    SubStatus.NO_MX_RECORDS,
                    0,
                    True,
                    changed,
                    BounceStatus.LIKELY,
                )
            run.step("mx_check", mx_found is True, "lookup failed" if mx_found is None else "")

        if self._provider_usable(options):
            try:
                result = await self._escalate(run, corrected, changed, options)
            except ExternalProviderError as exc:
                logger.warning(
                    "Email provider unavailable for %s, using basic fallback: %s",
                    mask_value(corrected),
                    exc,
                )
                run.step("provider_verification", False, str(exc))
                run.warnings.append("External verification unavailable")
            else:
                self._store(result, cache_key, use_cache)
                return result

        if mx_found is None and domain in reference.valid_domains:
            mx_found = await self.mx_checker.has_mx(domain)
            run.components["mx_found"] = mx_found
        if domain in reference.valid_domains and mx_found:
            run.step("basic_fallback", True, "known domain with MX")
            result = self._finish(
                run,
                corrected,
                Status.VALID,
                SubStatus.BASIC_FALLBACK,
                FALLBACK_VALID_CONFIDENCE,
                True,
                changed,
                BounceStatus.UNKNOWN,
            )
        else:
            run.step("basic_fallback", False, "domain not confirmed")
            result = self._finish(
                run,
                corrected,
                Status.UNKNOWN,
                SubStatus.BASIC_FALLBACK,
                FALLBACK_UNKNOWN_CONFIDENCE,
                True,
                changed,
                BounceStatus.UNKNOWN,
            )
        self._store(result, cache_key, use_cache)
        return result

    async def _escalate(
        self, run: _EmailRun, email: str, changed: bool, options: ValidationOptions
    ) -> ValidationResult:
        verification = await self._verify(email, options)
        if verification.did_you_mean and verification.did_you_mean != email:
            run.step("provider_verification", True, f"suggested {verification.did_you_mean}")
            run.components["did_you_mean"] = verification.did_you_mean
            email = verification.did_you_mean
            changed = True
            verification = await self._verify(email, options)

        run.components.update(
            {
                "provider_status": verification.status,
                "provider_sub_status": verification.sub_status or None,
                "free_email": verification.free_email,
            }
        )
        if verification.mx_found is not None:
            run.components["mx_found"] = verification.mx_found

        if verification.status in PROVIDER_VALID:
            run.step("provider_verification", True, verification.status)
            return self._finish(
                run,
                email,
                Status.VALID,
                SubStatus.PROVIDER_VERIFIED,
                PROVIDER_VALID_CONFIDENCE,
                True,
                changed,
                BounceStatus.UNLIKELY,
            )
        if verification.status in PROVIDER_INVALID:
            run.step("provider_verification", False, verification.status)
            return self._finish(
                run,
                email,
                Status.INVALID,
                SubStatus.PROVIDER_REJECTED,
                0,
                True,
                changed,
                BounceStatus.LIKELY,
            )
        run.step("provider_verification", False, verification.status)
        return self._finish(
            run,
            email,
            Status.UNKNOWN,
            SubStatus.PROVIDER_UNCERTAIN,
            PROVIDER_UNCERTAIN_CONFIDENCE,
            True,
            changed,
            BounceStatus.LIKELY,
        )

    def _store(self, result: ValidationResult, cache_key: str, use_cache: bool) -> None:
        if not use_cache:
            return
        if not (
            result.valid
            and result.component_fields.get("bounce_status") == BounceStatus.UNLIKELY.value
        ):
            return
        self.cache.put(EMAIL_TABLE, cache_key, result)
