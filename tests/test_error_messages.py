import httpx
import pytest

from bexio_sync.errors import (
    ConfigurationError,
    FailureKind,
    RemoteRejection,
    TokenInvalid,
    TransientNetworkError,
    classify_failure,
    is_transient,
)
from bexio_sync.http import friendly_error_message


def test_401_message() -> None:
    assert friendly_error_message(401) == "Authentication failed. Your bexio session may have expired."


def test_403_message() -> None:
    assert "missing a required scope" in friendly_error_message(403)


def test_404_message() -> None:
    assert friendly_error_message(404) == "The requested resource was not found in bexio."


def test_429_message() -> None:
    assert friendly_error_message(429, 45) == "Rate limit exceeded. Please wait 45 seconds."
    assert friendly_error_message(429) == "Rate limit exceeded. Please wait 1 seconds."


def test_500_message() -> None:
    assert friendly_error_message(503) == "bexio is experiencing issues. Please try again later."


def test_other_status_message() -> None:
    assert friendly_error_message(409) == "bexio API request failed with status 409."


@pytest.mark.parametrize(
    ("error", "kind"),
    [
        (RemoteRejection(500, "oops"), FailureKind.TRANSIENT),
        (RemoteRejection(429, "slow down"), FailureKind.TRANSIENT),
        (RemoteRejection(400, "invalid_grant"), FailureKind.TOKEN_INVALID),
        (RemoteRejection(401, "unauthorized"), FailureKind.TOKEN_INVALID),
        (RemoteRejection(403, "forbidden"), FailureKind.TERMINAL),
        (TransientNetworkError("down"), FailureKind.TRANSIENT),
        (httpx.ReadTimeout("slow"), FailureKind.TRANSIENT),
        (httpx.ConnectError("refused"), FailureKind.TRANSIENT),
        (TokenInvalid("expired"), FailureKind.TOKEN_INVALID),
        (ConfigurationError("no client id"), FailureKind.TERMINAL),
        (ValueError("unexpected"), FailureKind.TERMINAL),
    ],
)
def test_classify_failure(error, kind) -> None:
    assert classify_failure(error) is kind


def test_is_transient() -> None:
    assert is_transient(RemoteRejection(502, "bad gateway"))
    assert not is_transient(RemoteRejection(404, "missing"))
