from __future__ import annotations

from typing import Optional


class ValidationEngineError(Exception):
    """Base class for every error raised by the validation engine."""


class ConfigurationError(ValidationEngineError, ValueError):
    pass


class ExternalProviderError(ValidationEngineError):
    retryable = False

    def __init__(
        self, provider: str, message: str, status_code: Optional[int] = None
    ) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class ProviderTimeoutError(ExternalProviderError):
    retryable = True

    def __init__(self, provider: str, timeout_ms: float) -> None:
        super().__init__(provider, f"timed out after {timeout_ms:g}ms")
        self.timeout_ms = timeout_ms


class ProviderUnavailableError(ExternalProviderError):
    """Network failure or 5xx response."""

    retryable = True


class ProviderRateLimitError(ExternalProviderError):
    pass


class ProviderCredentialsError(ExternalProviderError):
    pass


class ProviderCreditsExhaustedError(ExternalProviderError):
    pass


class ProviderRequestError(ExternalProviderError):
    """Malformed request or unexpected response payload."""


class CircuitOpenError(ExternalProviderError):
    def __init__(self, provider: str) -> None:
        super().__init__(provider, "circuit breaker is open")


class PersistenceError(ValidationEngineError):
    def __init__(
        self, message: str, operation: str = "", table: str = ""
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.table = table


class DuplicateKeyError(PersistenceError):
    pass


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ExternalProviderError) and exc.retryable
