from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import phonenumbers
import yaml  # type: ignore[import-untyped]

from .errors import ConfigurationError

DEFAULT_FALLBACK_COUNTRIES = ["US", "GB", "CA", "AU", "DE", "FR", "PH"]
DEFAULT_MOBILE_DOMINANT_COUNTRIES = ["US", "CA", "PH", "IN", "BR", "MX"]


def _require_region(value: str, label: str) -> str:
    region = (value or "").strip().upper()
    if region not in phonenumbers.SUPPORTED_REGIONS:
        raise ConfigurationError(f"{label}: unknown country code {value!r}")
    return region


def _require_non_negative(value: float, label: str) -> None:
    if value is None or value < 0:
        raise ConfigurationError(f"{label} must be >= 0, got {value!r}")


def _require_percentage(value: float, label: str) -> None:
    if value is None or not 0 <= value <= 100:
        raise ConfigurationError(f"{label} must be within 0-100, got {value!r}")


@dataclass
class EmailConfig:
    remove_gmail_aliases: bool = True
    check_mx_records: bool = False
    mx_cache_ttl_seconds: float = 3600.0
    mx_lookup_timeout_seconds: float = 5.0
    max_suggestion_depth: int = 1

    def __post_init__(self) -> None:
        _require_non_negative(self.mx_cache_ttl_seconds, "email.mx_cache_ttl_seconds")
        _require_non_negative(self.mx_lookup_timeout_seconds, "email.mx_lookup_timeout_seconds")
        if self.max_suggestion_depth not in (0, 1):
            raise ConfigurationError("email.max_suggestion_depth must be 0 or 1")


@dataclass
class PhoneConfig:
    default_country: str = "US"
    strict: bool = False
    fallback_countries: List[str] = field(
        default_factory=lambda: list(DEFAULT_FALLBACK_COUNTRIES)
    )
    mobile_dominant_countries: List[str] = field(
        default_factory=lambda: list(DEFAULT_MOBILE_DOMINANT_COUNTRIES)
    )

    def __post_init__(self) -> None:
        self.default_country = _require_region(self.default_country, "phone.default_country")
        self.fallback_countries = [
            _require_region(c, "phone.fallback_countries") for c in self.fallback_countries
        ]
        self.mobile_dominant_countries = [
            _require_region(c, "phone.mobile_dominant_countries")
            for c in self.mobile_dominant_countries
        ]
        if self.default_country not in self.fallback_countries:
            self.fallback_countries.insert(0, self.default_country)


@dataclass
class AddressConfig:
    geocode: bool = True
    default_country: str = "US"
    valid_threshold: int = 60
    cache_min_confidence: int = 80
    geocode_short_circuit: int = 85
    fuzzy_cutoff: float = 0.85

    def __post_init__(self) -> None:
        self.default_country = _require_region(self.default_country, "address.default_country")
        _require_percentage(self.valid_threshold, "address.valid_threshold")
        _require_percentage(self.cache_min_confidence, "address.cache_min_confidence")
        _require_percentage(self.geocode_short_circuit, "address.geocode_short_circuit")
        if self.cache_min_confidence < self.valid_threshold:
            raise ConfigurationError(
                "address.cache_min_confidence cannot be lower than address.valid_threshold"
            )
        if not 0 < self.fuzzy_cutoff <= 1:
            raise ConfigurationError("address.fuzzy_cutoff must be within (0, 1]")


@dataclass
class BreakerConfig:
    error_threshold_percentage: float = 50.0
    rolling_window_seconds: float = 10.0
    volume_threshold: int = 5
    reset_timeout_seconds: float = 60.0

    def __post_init__(self) -> None:
        _require_percentage(self.error_threshold_percentage, "breaker.error_threshold_percentage")
        _require_non_negative(self.rolling_window_seconds, "breaker.rolling_window_seconds")
        _require_non_negative(self.reset_timeout_seconds, "breaker.reset_timeout_seconds")
        if self.volume_threshold < 1:
            raise ConfigurationError("breaker.volume_threshold must be >= 1")


@dataclass
class ProviderConfig:
    name: str
    base_url: str
    api_key: str = ""
    enabled: bool = True
    timeout_ms: float = 5000.0
    retry_timeout_ms: Optional[float] = None
    max_retries: int = 2
    retry_delay_ms: float = 500.0
    breaker: BreakerConfig = field(default_factory=BreakerConfig)

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ConfigurationError(f"{self.name}.base_url is required")
        self.base_url = self.base_url.rstrip("/")
        _require_non_negative(self.timeout_ms, f"{self.name}.timeout_ms")
        _require_non_negative(self.retry_delay_ms, f"{self.name}.retry_delay_ms")
        if self.retry_timeout_ms is not None:
            _require_non_negative(self.retry_timeout_ms, f"{self.name}.retry_timeout_ms")
        if self.max_retries < 0:
            raise ConfigurationError(f"{self.name}.max_retries must be >= 0")

    @property
    def configured(self) -> bool:
        return self.enabled and bool(self.api_key)


@dataclass
class BatchConfig:
    concurrency: int = 10
    delay_between_chunks_ms: float = 1000.0
    continue_on_error: bool = True

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ConfigurationError("batch.concurrency must be >= 1")
        _require_non_negative(self.delay_between_chunks_ms, "batch.delay_between_chunks_ms")


@dataclass
class CacheConfig:
    enabled: bool = True


@dataclass
class ClientConfig:
    default_client_id: str = "0001"
    version: str = "2.0.0"

    def __post_init__(self) -> None:
        if not str(self.default_client_id).isdigit():
            raise ConfigurationError("client.default_client_id must be numeric")
        if not self.version.replace(".", "").isdigit():
            raise ConfigurationError("client.version must look like 2.0.0")


@dataclass
class LoggingConfig:
    level: str = "WARNING"


@dataclass
class EngineConfig:
    email: EmailConfig = field(default_factory=EmailConfig)
    phone: PhoneConfig = field(default_factory=PhoneConfig)
    address: AddressConfig = field(default_factory=AddressConfig)
    zerobounce: ProviderConfig = field(
        default_factory=lambda: ProviderConfig(
            name="zerobounce",
            base_url="https://api.zerobounce.net/v2",
            timeout_ms=6000.0,
            retry_timeout_ms=8000.0,
            max_retries=3,
            retry_delay_ms=1000.0,
        )
    )
    opencage: ProviderConfig = field(
        default_factory=lambda: ProviderConfig(
            name="opencage",
            base_url="https://api.opencagedata.com",
            timeout_ms=5000.0,
            max_retries=2,
            retry_delay_ms=500.0,
        )
    )
    batch: BatchConfig = field(default_factory=BatchConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    reference_data: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)


@dataclass(frozen=True)
class ValidationOptions:
    """Per-call switches; engine defaults apply to anything left as None."""

    client_id: Optional[str] = None
    use_cache: bool = True
    use_provider: bool = True
    country: Optional[str] = None
    strict: Optional[bool] = None
    timeout_ms: Optional[float] = None

    def __post_init__(self) -> None:
        if self.client_id is not None and not str(self.client_id).isdigit():
            raise ConfigurationError(f"client_id must be numeric, got {self.client_id!r}")
        if self.country:
            object.__setattr__(self, "country", _require_region(self.country, "country"))
        if self.timeout_ms is not None:
            _require_non_negative(self.timeout_ms, "timeout_ms")
        if self.strict and not self.country:
            raise ConfigurationError("strict phone validation requires an explicit country")


def _load_yaml(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _section(cls: Any, values: Any, name: str) -> Any:
    try:
        return cls(**(values or {}))
    except TypeError as exc:
        raise ConfigurationError(f"{name}: {exc}") from exc


def _provider_config(
    defaults: ProviderConfig, section: Dict[str, Any], env_key: str
) -> ProviderConfig:
    breaker_cfg = section.get("breaker", {}) or {}
    return ProviderConfig(
        name=defaults.name,
        base_url=section.get("base_url", defaults.base_url),
        api_key=section.get("api_key") or os.getenv(env_key, ""),
        enabled=section.get("enabled", defaults.enabled),
        timeout_ms=section.get("timeout_ms", defaults.timeout_ms),
        retry_timeout_ms=section.get("retry_timeout_ms", defaults.retry_timeout_ms),
        max_retries=section.get("max_retries", defaults.max_retries),
        retry_delay_ms=section.get("retry_delay_ms", defaults.retry_delay_ms),
        breaker=_section(BreakerConfig, breaker_cfg, f"{defaults.name}.breaker"),
    )


def build_engine_config(config_data: Dict[str, Any]) -> EngineConfig:
    defaults = EngineConfig()
    return EngineConfig(
        email=_section(EmailConfig, config_data.get("email"), "email"),
        phone=_section(PhoneConfig, config_data.get("phone"), "phone"),
        address=_section(AddressConfig, config_data.get("address"), "address"),
        zerobounce=_provider_config(
            defaults.zerobounce, config_data.get("zerobounce", {}) or {}, "ZEROBOUNCE_API_KEY"
        ),
        opencage=_provider_config(
            defaults.opencage, config_data.get("opencage", {}) or {}, "OPENCAGE_API_KEY"
        ),
        batch=_section(BatchConfig, config_data.get("batch"), "batch"),
        cache=_section(CacheConfig, config_data.get("cache"), "cache"),
        client=_section(ClientConfig, config_data.get("client"), "client"),
        logging=_section(LoggingConfig, config_data.get("logging"), "logging"),
        reference_data=dict(config_data.get("reference_data", {}) or {}),
    )


def load_engine_config(args: argparse.Namespace) -> EngineConfig:
    config_data = _load_yaml(getattr(args, "config", None))

    phone_cfg = dict(config_data.get("phone", {}) or {})
    if getattr(args, "default_phone_country", None):
        phone_cfg["default_country"] = args.default_phone_country
    config_data["phone"] = phone_cfg

    email_cfg = dict(config_data.get("email", {}) or {})
    if getattr(args, "check_mx", None):
        email_cfg["check_mx_records"] = True
    config_data["email"] = email_cfg

    if getattr(args, "no_providers", None):
        for section in ("zerobounce", "opencage"):
            provider_cfg = dict(config_data.get(section, {}) or {})
            provider_cfg["enabled"] = False
            config_data[section] = provider_cfg

    batch_cfg = dict(config_data.get("batch", {}) or {})
    if getattr(args, "concurrency", None):
        batch_cfg["concurrency"] = args.concurrency
    config_data["batch"] = batch_cfg

    logging_cfg = dict(config_data.get("logging", {}) or {})
    arg_level = getattr(args, "log_level", None)
    logging_cfg["level"] = (arg_level or logging_cfg.get("level") or "WARNING").upper()
    config_data["logging"] = logging_cfg

    return build_engine_config(config_data)
