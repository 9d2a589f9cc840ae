import json
from collections import Counter

import httpx
import pytest

from bexio_sync.client.api import BexioApi
from bexio_sync.client.models import TimeEntryDraft
from bexio_sync.client.token_manager import RefreshClient, TokenManager

SERVER_URL = "https://sync.example.com"
FAILING_DATE = "2026-03-07"


def _drafts(count: int) -> list[TimeEntryDraft]:
    return [TimeEntryDraft(date=f"2026-03-{day:02d}", duration="01:00") for day in range(1, count + 1)]


def _envelope(status: int, data) -> httpx.Response:
    return httpx.Response(status, json={"data": data, "status": status, "statusText": "", "headers": {}})


def _build_api(handler, sleep_recorder) -> BexioApi:
    manager = TokenManager(RefreshClient(SERVER_URL))
    manager.connect_api_key("api-key", "company-42")
    return BexioApi(
        SERVER_URL,
        manager,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        sleep=sleep_recorder,
        rand=lambda low, high: 0.0,
    )


@pytest.mark.asyncio
async def test_batch_create_isolates_failures(sleep_recorder) -> None:
    attempts: Counter = Counter()

    def handler(request: httpx.Request) -> httpx.Response:
        date = json.loads(request.content)["data"]["tracking"]["date"]
        attempts[date] += 1
        if date == FAILING_DATE:
            return _envelope(500, {"message": "boom"})
        return _envelope(201, {"id": attempts.total(), "date": date})

    api = _build_api(handler, sleep_recorder)

    result = await api.create_time_entries(_drafts(12))

    assert len(result.succeeded) == 11
    assert [(failure.index, failure.date) for failure in result.failed] == [(6, FAILING_DATE)]
    assert result.failed[0].error == "bexio is experiencing issues. Please try again later."
    assert attempts[FAILING_DATE] == 3
    assert all(count == 1 for date, count in attempts.items() if date != FAILING_DATE)
    # two pauses between three batches, plus the two backoffs for the failing entry
    assert sleep_recorder.calls.count(1.0) == 2
    assert sorted(call for call in sleep_recorder.calls if call != 1.0) == [
        pytest.approx(0.4),
        pytest.approx(0.8),
    ]


@pytest.mark.asyncio
async def test_batch_create_single_batch_has_no_pause(sleep_recorder) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return _envelope(201, {"id": 1})

    api = _build_api(handler, sleep_recorder)

    result = await api.create_time_entries(_drafts(5))

    assert len(result.succeeded) == 5
    assert result.failed == []
    assert sleep_recorder.calls == []


@pytest.mark.asyncio
async def test_batch_create_does_not_retry_rejected_entries(sleep_recorder) -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        date = json.loads(request.content)["data"]["tracking"]["date"]
        calls.append(date)
        if date == "2026-03-02":
            return _envelope(422, {"message": "duration invalid"})
        return _envelope(201, {"id": len(calls)})

    api = _build_api(handler, sleep_recorder)

    result = await api.create_time_entries(_drafts(3))

    assert len(result.succeeded) == 2
    assert result.failed[0].index == 1
    assert calls.count("2026-03-02") == 1
