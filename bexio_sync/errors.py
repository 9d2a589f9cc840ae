from __future__ import annotations

import enum

import httpx


class BexioSyncError(RuntimeError):
    status_code = 500
    code = "internal_error"
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(BexioSyncError):
    code = "configuration_error"


class ValidationError(BexioSyncError):
    status_code = 400
    code = "invalid_request"


class RemoteRejection(BexioSyncError):
    """The provider answered a token or API request with a non-2xx status."""

    code = "remote_rejection"

    def __init__(self, status_code: int, body: str, message: str | None = None) -> None:
        super().__init__(message or f"Provider request failed with status {status_code}: {body}")
        self.status_code = status_code
        self.body = body

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status_code == 429 or self.status_code >= 500


class TransientNetworkError(BexioSyncError):
    status_code = 503
    code = "provider_unavailable"
    retryable = True


class SessionNotFound(BexioSyncError):
    status_code = 404
    code = "session_not_found"

    def __init__(self, session_id: str) -> None:
        super().__init__("Session not found or expired.")
        self.session_id = session_id


class TokenInvalid(BexioSyncError):
    status_code = 401
    code = "token_invalid"


class PartialUpdateError(BexioSyncError):
    """The old entry was deleted but its replacement could not be created."""

    code = "partial_update"

    def __init__(self, entry_id: int, cause: BaseException) -> None:
        super().__init__(
            f"Time entry {entry_id} was deleted but the replacement could not be created: {cause}"
        )
        self.entry_id = entry_id
        self.cause = cause


class FailureKind(enum.Enum):
    TRANSIENT = "transient"
    TOKEN_INVALID = "token_invalid"
    TERMINAL = "terminal"


def classify_status(status_code: int) -> FailureKind:
    if status_code == 429 or status_code >= 500:
        return FailureKind.TRANSIENT
    if status_code in (400, 401):
        return FailureKind.TOKEN_INVALID
    return FailureKind.TERMINAL


def classify_failure(error: BaseException) -> FailureKind:
    if isinstance(error, TokenInvalid):
        return FailureKind.TOKEN_INVALID
    if isinstance(error, (httpx.TimeoutException, httpx.TransportError, TransientNetworkError)):
        return FailureKind.TRANSIENT
    if isinstance(error, RemoteRejection):
        return classify_status(error.status_code)
    if isinstance(error, BexioSyncError) and error.retryable:
        return FailureKind.TRANSIENT
    return FailureKind.TERMINAL


def is_transient(error: BaseException) -> bool:
    return classify_failure(error) is FailureKind.TRANSIENT
