from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .address_validation import AddressValidator
from .cache import ResultCache
from .config_loader import EngineConfig, ValidationOptions
from .dns_check import MxChecker
from .email_validation import EmailValidator
from .models import AddressComponents, FieldType, ValidationResult
from .name_validation import NameValidator
from .opencage import OpenCageClient
from .phone_validation import PhoneValidator
from .reference_data import ReferenceData, load_reference_data
from .store import DataStore, InMemoryStore
from .zerobounce import ZeroBounceClient

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Results line up with the submitted items; failed slots hold None."""

    results: List[Optional[ValidationResult]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    summary: Dict[str, int] = field(default_factory=dict)


def _options(options: Optional[ValidationOptions], overrides: Mapping[str, Any]) -> ValidationOptions:
    base = options or ValidationOptions()
    changes = {key: value for key, value in overrides.items() if value is not None}
    return replace(base, **changes) if changes else base


class ValidationEngine:
    """
    Owns the reference snapshot, cache, providers and per-field validators.

    One engine per process (or per test); nothing here is global.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        store: Optional[DataStore] = None,
        zerobounce: Optional[ZeroBounceClient] = None,
        opencage: Optional[OpenCageClient] = None,
        mx_checker: Optional[MxChecker] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.store: DataStore = store if store is not None else InMemoryStore(self.config.reference_data)
        self.reference: ReferenceData = load_reference_data(self.store)
        self.cache = ResultCache(self.store, enabled=self.config.cache.enabled)

        if zerobounce is None and self.config.zerobounce.configured:
            zerobounce = ZeroBounceClient(self.config.zerobounce)
        if opencage is None and self.config.opencage.configured:
            opencage = OpenCageClient(self.config.opencage)
        self.zerobounce = zerobounce
        self.opencage = opencage
        self.mx_checker = mx_checker or MxChecker(
            ttl_seconds=self.config.email.mx_cache_ttl_seconds,
            timeout_seconds=self.config.email.mx_lookup_timeout_seconds,
        )

        client = self.config.client
        self.email = EmailValidator(
            self.config.email, self.reference.email, self.cache, zerobounce, self.mx_checker, client
        )
        self.phone = PhoneValidator(self.config.phone, self.reference.phone, self.cache, client)
        self.address = AddressValidator(
            self.config.address, self.reference.address, self.cache, opencage, client
        )
        self.name = NameValidator(self.reference.name, self.cache, client)
        logger.info(
            "Validation engine ready (zerobounce=%s, opencage=%s, cache=%s)",
            bool(zerobounce and zerobounce.enabled),
            bool(opencage and opencage.enabled),
            self.cache.enabled,
        )

    @classmethod
    def from_config(cls, config: EngineConfig) -> "ValidationEngine":
        return cls(config)

    async def __aenter__(self) -> "ValidationEngine":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def validate_email(
        self, email: Any, options: Optional[ValidationOptions] = None, **overrides: Any
    ) -> ValidationResult:
        return await self.email.validate(email, _options(options, overrides))

    async def validate_phone(
        self, phone: Any, options: Optional[ValidationOptions] = None, **overrides: Any
    ) -> ValidationResult:
        return await self.phone.validate(phone, _options(options, overrides))

    async def validate_address(
        self,
        address: Union[str, Mapping[str, Any], AddressComponents, None],
        options: Optional[ValidationOptions] = None,
        **overrides: Any,
    ) -> ValidationResult:
        return await self.address.validate(address, _options(options, overrides))

    async def validate_name(
        self, name: Any, options: Optional[ValidationOptions] = None, **overrides: Any
    ) -> ValidationResult:
        return self.name.validate(name, _options(options, overrides))

    async def validate_separate_names(
        self,
        first_name: Any,
        last_name: Any,
        options: Optional[ValidationOptions] = None,
        **overrides: Any,
    ) -> ValidationResult:
        return self.name.validate_separate_names(first_name, last_name, _options(options, overrides))

    async def _validate_item(
        self, item: Any, field_type: FieldType, options: Optional[ValidationOptions]
    ) -> ValidationResult:
        if field_type == FieldType.EMAIL:
            return await self.validate_email(item, options)
        if field_type == FieldType.PHONE:
            if isinstance(item, Mapping):
                return await self.validate_phone(item.get("phone"), options, country=item.get("country") or None)
            return await self.validate_phone(item, options)
        if field_type == FieldType.ADDRESS:
            return await self.validate_address(item, options)
        if isinstance(item, Mapping) and ("first_name" in item or "last_name" in item):
            return await self.validate_separate_names(item.get("first_name"), item.get("last_name"), options)
        if isinstance(item, Mapping):
            return await self.validate_name(item.get("name") or item.get("full_name"), options)
        return await self.validate_name(item, options)

    async def validate_batch(
        self,
        items: Sequence[Any],
        field_type: Union[FieldType, str],
        concurrency: Optional[int] = None,
        delay_between_chunks_ms: Optional[float] = None,
        continue_on_error: Optional[bool] = None,
        options: Optional[ValidationOptions] = None,
    ) -> BatchResult:
        """
        Validate ``items`` in chunks of ``concurrency``.

        Each chunk finishes before the next starts, separated by
        ``delay_between_chunks_ms``. With ``continue_on_error`` false the first
        unexpected error propagates; otherwise it is recorded per item.
        """
        try:
            field_type = FieldType(field_type)
        except ValueError:
            raise ValueError(f"Unknown field type: {field_type!r}") from None

        batch_cfg = self.config.batch
        size = concurrency or batch_cfg.concurrency
        if size < 1:
            raise ValueError("concurrency must be >= 1")
        delay_ms = batch_cfg.delay_between_chunks_ms if delay_between_chunks_ms is None else delay_between_chunks_ms
        keep_going = batch_cfg.continue_on_error if continue_on_error is None else continue_on_error

        batch = BatchResult(results=[None] * len(items))
        for start in range(0, len(items), size):
            if start and delay_ms:
                await asyncio.sleep(delay_ms / 1000.0)
            chunk = items[start : start + size]
            outcomes = await asyncio.gather(
                *(self._validate_item(item, field_type, options) for item in chunk),
                return_exceptions=keep_going,
            )
            for offset, outcome in enumerate(outcomes):
                index = start + offset
                if isinstance(outcome, Exception):
                    logger.warning("Batch item %d (%s) failed: %s", index, field_type.value, outcome)
                    batch.errors.append(
                        {"index": index, "input": chunk[offset], "error": str(outcome)}
                    )
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    batch.results[index] = outcome

        batch.summary = {
            "total": len(items),
            "successful": len(items) - len(batch.errors),
            "failed": len(batch.errors),
        }
        logger.info("Batch %s finished: %s", field_type.value, batch.summary)
        return batch

    def _providers(self) -> Dict[str, Any]:
        return {"zerobounce": self.zerobounce, "opencage": self.opencage}

    def health_check(self) -> Dict[str, Any]:
        """Snapshot of engine state; makes no live calls."""
        providers: Dict[str, Dict[str, Any]] = {}
        degraded = False
        for name, provider in self._providers().items():
            if provider is None:
                providers[name] = {"enabled": False, "circuit_state": None}
                continue
            state = provider.get_circuit_state()
            degraded = degraded or state == "open"
            providers[name] = {"enabled": provider.enabled, "circuit_state": state}
        return {
            "status": "degraded" if degraded else "healthy",
            "reference_data": self.reference.summary(),
            "providers": providers,
            "cache_enabled": self.cache.enabled,
            "mx_cache_size": self.mx_checker.cache_size,
        }

    def get_stats(self) -> Dict[str, Any]:
        validators = {
            FieldType.EMAIL.value: self.email,
            FieldType.PHONE.value: self.phone,
            FieldType.ADDRESS.value: self.address,
            FieldType.NAME.value: self.name,
        }
        stats: Dict[str, Any] = {}
        for key, validator in validators.items():
            counters = validator.stats
            stats[key] = {
                "validations": counters["validations"],
                "cache_hits": counters["cache_hits"],
                "provider_calls": counters["provider_calls"],
                "provider_errors": counters["provider_errors"],
            }
        stats["breakers"] = {
            name: provider.breaker.get_stats()
            for name, provider in self._providers().items()
            if provider is not None
        }
        return stats

    def reload_reference_data(self) -> ReferenceData:
        """Rebuild the snapshot from the store and hand it to every validator."""
        snapshot = load_reference_data(self.store)
        self.reference = snapshot
        self.email.reference = snapshot.email
        self.phone.reference = snapshot.phone
        self.address.reference = snapshot.address
        self.name.reference = snapshot.name
        logger.info("Reference data reloaded: %s", snapshot.sources)
        return snapshot

    async def aclose(self) -> None:
        for provider in self._providers().values():
            if provider is not None:
                await provider.aclose()
