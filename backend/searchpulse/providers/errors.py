from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx


@dataclass(frozen=True)
class ErrorClassification:
    error_code: str
    reason_code: str
    retryable: bool
    severity: str


class ProviderError(Exception):
    """Typed upstream failure; never carries partial rows."""

    default_message = "Provider request failed."
    error_code = "provider_internal_error"
    reason_code = "internal_error"
    retryable = False
    severity = "critical"

    def __init__(
        self,
        message: str | None = None,
        *,
        upstream_payload: dict[str, Any] | None = None,
        classification: ErrorClassification | None = None,
    ) -> None:
        super().__init__(message or self.default_message)
        if classification is not None:
            self.error_code = classification.error_code
            self.reason_code = classification.reason_code
            self.retryable = classification.retryable
            self.severity = classification.severity
        self.upstream_payload = upstream_payload

    def classification(self) -> ErrorClassification:
        return ErrorClassification(self.error_code, self.reason_code, self.retryable, self.severity)


class ProviderTimeoutError(ProviderError):
    default_message = "Provider request timed out."
    error_code = "provider_timeout"
    reason_code = "timeout"
    retryable = True
    severity = "error"


class ProviderConnectionError(ProviderError):
    default_message = "Provider connection failed."
    error_code = "provider_connection"
    reason_code = "connection_error"
    retryable = True
    severity = "error"


class ProviderRateLimitError(ProviderError):
    default_message = "Provider rate-limited request."
    error_code = "provider_rate_limited"
    reason_code = "rate_limited"
    retryable = True
    severity = "warning"


class ProviderAuthError(ProviderError):
    default_message = "Provider authentication failed."
    error_code = "provider_auth"
    reason_code = "auth_failed"
    severity = "critical"


class ProviderQuotaExceededError(ProviderError):
    default_message = "Provider quota exhausted."
    error_code = "provider_quota_exhausted"
    reason_code = "quota_exhausted"
    severity = "warning"


class ProviderBadRequestError(ProviderError):
    default_message = "Provider rejected request payload."
    error_code = "provider_bad_request"
    reason_code = "bad_request"
    severity = "error"


class ProviderResponseFormatError(ProviderError):
    default_message = "Provider response format is invalid."
    error_code = "provider_response_invalid"
    reason_code = "response_invalid"
    severity = "error"


class ProviderDependencyError(ProviderError):
    default_message = "Provider dependency unavailable."
    error_code = "provider_dependency_unavailable"
    reason_code = "dependency_unavailable"
    retryable = True
    severity = "error"


def classification_from_exception(exc: Exception) -> ErrorClassification:
    if isinstance(exc, ProviderError):
        return exc.classification()
    if isinstance(exc, TimeoutError | httpx.TimeoutException):
        return ProviderTimeoutError().classification()
    if isinstance(exc, ConnectionError | httpx.ConnectError):
        return ProviderConnectionError().classification()
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code if exc.response is not None else 0
        if status_code in {401, 403}:
            return ProviderAuthError().classification()
        if status_code == 429:
            return ProviderRateLimitError().classification()
        if 400 <= status_code < 500:
            return ProviderBadRequestError().classification()
        if status_code >= 500:
            return ProviderDependencyError().classification()
    if isinstance(exc, httpx.HTTPError):
        return ProviderDependencyError().classification()
    return ProviderError().classification()


def classify_provider_error(exc: Exception) -> ProviderError:
    if isinstance(exc, ProviderError):
        return exc
    classification = classification_from_exception(exc)
    return ProviderError(str(exc) or classification.reason_code, classification=classification)
