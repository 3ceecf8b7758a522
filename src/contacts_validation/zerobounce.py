from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import (
    ProviderCredentialsError,
    ProviderCreditsExhaustedError,
    ProviderRequestError,
)
from .http_provider import HttpProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailVerification:
    email: str
    status: str
    sub_status: str = ""
    did_you_mean: Optional[str] = None
    free_email: bool = False
    mx_found: Optional[bool] = None
    domain_age_days: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def _as_bool(value: Any) -> Optional[bool]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"true", "1", "yes"}


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _raise_for_error_payload(provider: str, data: Dict[str, Any]) -> None:
    error = str(data.get("error") or "").strip()
    if not error:
        return
    lowered = error.lower()
    if "credit" in lowered:
        raise ProviderCreditsExhaustedError(provider, error)
    if "key" in lowered or "unauthori" in lowered:
        raise ProviderCredentialsError(provider, error)
    raise ProviderRequestError(provider, error)


def parse_verification(email: str, data: Dict[str, Any]) -> EmailVerification:
    did_you_mean = str(data.get("did_you_mean") or "").strip().lower() or None
    return EmailVerification(
        email=str(data.get("address") or email),
        status=str(data.get("status") or "unknown").strip().lower(),
        sub_status=str(data.get("sub_status") or "").strip().lower(),
        did_you_mean=did_you_mean,
        free_email=bool(_as_bool(data.get("free_email"))),
        mx_found=_as_bool(data.get("mx_found")),
        domain_age_days=_as_int(data.get("domain_age_days")),
        raw=dict(data),
    )


class ZeroBounceClient(HttpProvider):
    """Email verification against the ZeroBounce v2 API."""

    async def verify(
        self, email: str, ip_address: str = "", timeout_ms: Optional[float] = None
    ) -> EmailVerification:
        data = await self.get_json(
            "/validate",
            {"api_key": self.config.api_key, "email": email, "ip_address": ip_address},
            timeout_ms,
        )
        _raise_for_error_payload(self.name, data)
        verification = parse_verification(email, data)
        logger.debug("ZeroBounce status=%s sub_status=%s", verification.status, verification.sub_status)
        return verification

    async def get_credits(self) -> int:
        """Remaining credits; ZeroBounce answers -1 for an invalid key."""
        data = await self.get_json("/getcredits", {"api_key": self.config.api_key})
        _raise_for_error_payload(self.name, data)
        credits = _as_int(data.get("Credits"))
        if credits is None:
            raise ProviderRequestError(self.name, "credits missing from response")
        if credits < 0:
            raise ProviderCredentialsError(self.name, "invalid API key")
        return credits
