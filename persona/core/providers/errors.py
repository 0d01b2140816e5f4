"""Shared provider error types for cross-protocol normalization."""

from __future__ import annotations

from typing import Optional


class ProviderMappedError(Exception):
    """Normalized provider exception with a stable error code."""

    def __init__(
        self,
        error_code: str,
        message: str,
        *,
        retryable: bool = False,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.retryable = retryable
        self.status_code = status_code


class ProviderConfigurationError(ProviderMappedError):
    """A model is missing fields its provider kind requires."""

    def __init__(self, message: str) -> None:
        super().__init__("configuration_error", message)


class ProviderTimeoutError(ProviderMappedError):
    """Timeout error normalized across providers."""

    def __init__(self, message: str) -> None:
        super().__init__("timeout", message, retryable=True)


class ProviderConnectionError(ProviderMappedError):
    """Connection-level transport error."""

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__("connection_error", message, retryable=retryable)


class ProviderRateLimitError(ProviderMappedError):
    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__("rate_limit", message, retryable=True, status_code=status_code)


class ProviderAuthenticationError(ProviderMappedError):
    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__("authentication_error", message, status_code=status_code)


class ProviderPermissionDeniedError(ProviderMappedError):
    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__("permission_denied", message, status_code=status_code)


class ProviderInsufficientBalanceError(ProviderMappedError):
    """Insufficient account balance/credits."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__("insufficient_balance", message, status_code=status_code)


class ProviderModelNotFoundError(ProviderMappedError):
    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__("model_not_found", message, status_code=status_code)


class ProviderBadRequestError(ProviderMappedError):
    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__("bad_request", message, status_code=status_code)


class ProviderContextLengthExceededError(ProviderMappedError):
    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__("context_length_exceeded", message, status_code=status_code)


class ProviderContentPolicyViolationError(ProviderMappedError):
    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__("content_policy_violation", message, status_code=status_code)


class ProviderServiceUnavailableError(ProviderMappedError):
    """Service unavailable/transient provider outage."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__("service_unavailable", message, retryable=True, status_code=status_code)


class ProviderApiError(ProviderMappedError):
    """Generic upstream API error."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__("api_error", message, status_code=status_code)
