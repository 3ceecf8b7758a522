from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .circuit_breaker import CircuitBreaker
from .config_loader import ProviderConfig
from .errors import (
    CircuitOpenError,
    ExternalProviderError,
    ProviderCredentialsError,
    ProviderCreditsExhaustedError,
    ProviderRateLimitError,
    ProviderRequestError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from .resilience import retry_with_backoff, with_timeout

logger = logging.getLogger(__name__)

USER_AGENT = "contacts-validation/2.0"


def error_for_status(provider: str, status_code: int, detail: str = "") -> ExternalProviderError:
    """Map an HTTP status code onto the provider error hierarchy."""
    message = f"HTTP {status_code}" + (f": {detail}" if detail else "")
    if status_code in (401, 403):
        return ProviderCredentialsError(provider, message, status_code)
    if status_code == 402:
        return ProviderCreditsExhaustedError(provider, message, status_code)
    if status_code == 429:
        return ProviderRateLimitError(provider, message, status_code)
    if status_code >= 500:
        return ProviderUnavailableError(provider, message, status_code)
    return ProviderRequestError(provider, message, status_code)


class HttpProvider:
    """
    Shared plumbing for JSON-over-HTTP enrichment providers.

    Every call passes through the provider's circuit breaker, a per-attempt
    timeout and exponential-backoff retries for retryable failures. The
    ``httpx.AsyncClient`` can be injected; one created here is closed by
    :meth:`aclose`.
    """

    def __init__(
        self,
        config: ProviderConfig,
        client: Optional[httpx.AsyncClient] = None,
        breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self.config = config
        self.name = config.name
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={"Accept": "application/json", "User-Agent": USER_AGENT}
        )
        self.breaker = breaker or CircuitBreaker.from_config(config.name, config.breaker)

    @property
    def enabled(self) -> bool:
        return self.config.configured

    def get_circuit_state(self) -> str:
        return self.breaker.get_state().value

    async def _request_once(
        self, path: str, params: Dict[str, Any], timeout_ms: Optional[float]
    ) -> Dict[str, Any]:
        url = f"{self.config.base_url}{path}"
        timeout_s = timeout_ms / 1000.0 if timeout_ms else None
        try:
            response = await with_timeout(
                self._client.get(url, params=params, timeout=timeout_s),
                timeout_ms,
                self.name,
            )
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(self.name, timeout_ms or 0) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(self.name, f"network error: {exc}") from exc

        if response.status_code >= 400:
            raise error_for_status(self.name, response.status_code, response.text[:200])
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderRequestError(self.name, "response was not JSON") from exc
        if not isinstance(data, dict):
            raise ProviderRequestError(self.name, "unexpected response payload")
        return data

    async def get_json(
        self, path: str, params: Dict[str, Any], timeout_ms: Optional[float] = None
    ) -> Dict[str, Any]:
        if not self.enabled:
            raise ProviderUnavailableError(self.name, "provider is not configured")
        if not self.breaker.can_execute():
            raise CircuitOpenError(self.name)

        first_timeout = timeout_ms if timeout_ms is not None else self.config.timeout_ms
        retry_timeout = self.config.retry_timeout_ms or first_timeout
        attempts = {"count": 0}

        async def attempt() -> Dict[str, Any]:
            attempts["count"] += 1
            current = first_timeout if attempts["count"] == 1 else retry_timeout
            return await self._request_once(path, params, current)

        try:
            data = await retry_with_backoff(
                attempt,
                max_retries=self.config.max_retries,
                initial_delay_ms=self.config.retry_delay_ms,
                label=f"{self.name} {path}",
            )
        except ExternalProviderError as exc:
            self.breaker.record_failure()
            logger.warning("%s %s failed after %d attempt(s): %s", self.name, path, attempts["count"], exc)
            raise
        except BaseException:
            # Cancelled or crashed; a half-open trial must still be settled.
            self.breaker.record_failure()
            raise
        self.breaker.record_success()
        return data

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
