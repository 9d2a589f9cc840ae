from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Sequence

import httpx

from bexio_sync.constants import CLIENT_LOGGER, PROVIDER_TIMEOUT_SECONDS
from bexio_sync.errors import BexioSyncError, PartialUpdateError, TransientNetworkError
from bexio_sync.http import friendly_error_message

from .models import (
    BusinessActivity,
    Contact,
    Project,
    TimeEntry,
    TimeEntryDraft,
    TimesheetStatus,
    WorkPackage,
    filter_valid,
)
from .retry import WRITE_RETRY, RetryPolicy
from .token_manager import TokenManager

BATCH_SIZE = 5
BATCH_PAUSE_SECONDS = 1.0
READ_RATE_LIMIT_DELAY_SECONDS = 1.0

CONTACTS_ENDPOINT = "/2.0/contact"
PROJECTS_ENDPOINT = "/3.0/projects"
TIMESHEET_ENDPOINT = "/2.0/timesheet"
TIMESHEET_STATUS_ENDPOINT = "/2.0/timesheet_status"
CLIENT_SERVICE_ENDPOINT = "/2.0/client_service"


class ProxyError(BexioSyncError):
    code = "proxy_error"

    def __init__(self, status_code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.data = data

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status_code == 429 or self.status_code >= 500


class NotConnectedError(BexioSyncError):
    status_code = 401
    code = "not_connected"


@dataclass(frozen=True)
class BatchFailure:
    index: int
    date: str
    error: str


@dataclass
class BatchResult:
    succeeded: list[Any] = field(default_factory=list)
    failed: list[BatchFailure] = field(default_factory=list)


@dataclass
class BulkDeleteResult:
    deleted: list[int] = field(default_factory=list)
    failed: list[tuple[int, str]] = field(default_factory=list)


def _batches(items: Sequence, size: int):
    for start in range(0, len(items), size):
        yield start, items[start : start + size]


class BexioApi:
    def __init__(
        self,
        server_url: str,
        token_manager: TokenManager,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = PROVIDER_TIMEOUT_SECONDS,
        sleep=asyncio.sleep,
        rand=random.uniform,
    ) -> None:
        self._proxy_url = f"{server_url.rstrip('/')}/api/bexio-proxy"
        self._tokens = token_manager
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._sleep = sleep
        self._write_retry = RetryPolicy(**WRITE_RETRY, sleep=sleep, rand=rand)

        self.contacts: list[Contact] = []
        self.projects: list[Project] = []
        self.time_entries: list[TimeEntry] = []
        token_manager.add_disconnect_listener(self._clear_caches)

    async def aclose(self) -> None:
        await self._client.aclose()

    # -- transport -------------------------------------------------------------

    async def _invoke(self, endpoint: str, method: str = "GET", data: Any = None) -> Any:
        token = await self._tokens.ensure_valid_token()
        credential = self._tokens.credential
        if not token or credential is None:
            raise NotConnectedError("Not connected to bexio.")

        body: dict[str, Any] = {
            "endpoint": endpoint,
            "method": method,
            "accessToken": token,
            "companyId": credential.company_id,
        }
        if data is not None:
            body["data"] = data

        try:
            response = await self._client.post(self._proxy_url, json=body)
        except (httpx.TimeoutException, httpx.TransportError) as error:
            raise TransientNetworkError(f"Proxy unreachable: {error}") from error

        try:
            envelope = response.json()
        except ValueError:
            envelope = {}
        if not isinstance(envelope, dict):
            envelope = {}

        status = envelope.get("status") if isinstance(envelope.get("status"), int) else response.status_code
        if response.status_code >= 400 or status >= 400:
            status = max(status, response.status_code)
            headers = envelope.get("headers") or {}
            wait_seconds = None
            if isinstance(headers, dict) and str(headers.get("retry-after", "")).isdigit():
                wait_seconds = int(headers["retry-after"])
            raise ProxyError(status, friendly_error_message(status, wait_seconds), envelope.get("data"))
        return envelope.get("data")

    async def _read(self, endpoint: str) -> Any:
        try:
            return await self._invoke(endpoint)
        except ProxyError as error:
            if error.status_code != 429:
                raise
            CLIENT_LOGGER.warning(
                "Rate limited on %s; retrying once after %ss",
                endpoint,
                READ_RATE_LIMIT_DELAY_SECONDS,
            )
            await self._sleep(READ_RATE_LIMIT_DELAY_SECONDS)
            return await self._invoke(endpoint)

    # -- reads -----------------------------------------------------------------

    async def fetch_contacts(self) -> list[Contact]:
        self.contacts = filter_valid(Contact, await self._read(CONTACTS_ENDPOINT))
        CLIENT_LOGGER.info("Fetched %s contacts", len(self.contacts))
        return self.contacts

    async def fetch_projects(self) -> list[Project]:
        self.projects = filter_valid(Project, await self._read(PROJECTS_ENDPOINT))
        CLIENT_LOGGER.info("Fetched %s projects", len(self.projects))
        return self.projects

    async def fetch_time_entries(self) -> list[TimeEntry]:
        self.time_entries = filter_valid(TimeEntry, await self._read(TIMESHEET_ENDPOINT))
        CLIENT_LOGGER.info("Fetched %s time entries", len(self.time_entries))
        return self.time_entries

    async def fetch_work_packages(self, project_id: int | None) -> list[WorkPackage]:
        if not project_id:
            return []
        try:
            rows = await self._read(f"{PROJECTS_ENDPOINT}/{project_id}/packages")
        except ProxyError as error:
            if error.status_code == 404:
                CLIENT_LOGGER.info("Project %s has no work packages", project_id)
                return []
            raise
        return filter_valid(WorkPackage, rows)

    async def fetch_timesheet_statuses(self) -> list[TimesheetStatus]:
        return filter_valid(TimesheetStatus, await self._read(TIMESHEET_STATUS_ENDPOINT))

    async def fetch_business_activities(self) -> list[BusinessActivity]:
        return filter_valid(BusinessActivity, await self._read(CLIENT_SERVICE_ENDPOINT))

    # -- writes ----------------------------------------------------------------

    async def create_time_entry(self, draft: TimeEntryDraft) -> Any:
        return await self._write_retry.run(
            lambda: self._invoke(TIMESHEET_ENDPOINT, "POST", draft.to_payload()),
            description=f"time entry for {draft.date}",
        )

    async def create_time_entries(self, drafts: Sequence[TimeEntryDraft]) -> BatchResult:
        result = BatchResult()
        for start, batch in _batches(drafts, BATCH_SIZE):
            if start:
                await self._sleep(BATCH_PAUSE_SECONDS)
            outcomes = await asyncio.gather(
                *(self.create_time_entry(draft) for draft in batch),
                return_exceptions=True,
            )
            for offset, (draft, outcome) in enumerate(zip(batch, outcomes)):
                if isinstance(outcome, BaseException):
                    CLIENT_LOGGER.warning("Time entry %s (%s) failed: %s", start + offset, draft.date, outcome)
                    result.failed.append(BatchFailure(index=start + offset, date=draft.date, error=str(outcome)))
                else:
                    result.succeeded.append(outcome)

        CLIENT_LOGGER.info(
            "Created %s of %s time entries (%s failed)",
            len(result.succeeded),
            len(drafts),
            len(result.failed),
        )
        return result

    async def delete_time_entry(self, entry_id: int) -> None:
        try:
            await self._invoke(f"{TIMESHEET_ENDPOINT}/{entry_id}", "DELETE")
        except ProxyError as error:
            if error.status_code != 404:
                raise
            CLIENT_LOGGER.info("Time entry %s already deleted", entry_id)
        self.time_entries = [entry for entry in self.time_entries if entry.id != entry_id]

    async def bulk_delete_time_entries(self, entry_ids: Sequence[int]) -> BulkDeleteResult:
        result = BulkDeleteResult()
        for entry_id in entry_ids:
            try:
                await self.delete_time_entry(entry_id)
            except BexioSyncError as error:
                result.failed.append((entry_id, str(error)))
            else:
                result.deleted.append(entry_id)
        CLIENT_LOGGER.info("Deleted %s time entries (%s failed)", len(result.deleted), len(result.failed))
        return result

    async def update_time_entry(self, entry_id: int, draft: TimeEntryDraft) -> Any:
        """Replace an entry by deleting it and creating ``draft`` in its place.

        The delete has to succeed first. If the create then fails, the old
        entry is gone and :class:`PartialUpdateError` is raised.
        """
        await self.delete_time_entry(entry_id)
        try:
            return await self.create_time_entry(draft)
        except Exception as error:
            CLIENT_LOGGER.error("Time entry %s was deleted but its replacement failed: %s", entry_id, error)
            raise PartialUpdateError(entry_id, error) from error

    def disconnect(self) -> None:
        self._tokens.disconnect()

    def _clear_caches(self) -> None:
        self.contacts = []
        self.projects = []
        self.time_entries = []
