from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field, StrictInt, model_validator

from bexio_sync.constants import CLIENT_LOGGER

RecordT = TypeVar("RecordT", bound=BaseModel)

DEFAULT_CLIENT_SERVICE_ID = 5
DEFAULT_USER_ID = 1


class _Record(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: StrictInt


class Contact(_Record):
    name_1: str | None = None
    name_2: str | None = None
    nr: str | None = None
    mail: str | None = None


class Project(_Record):
    name: str | None = None
    nr: str | None = None
    contact_id: int | None = None
    pr_state_id: int | None = None
    pr_project_type_id: int | None = None


class TimeEntry(_Record):
    date: str = Field(min_length=1)
    duration: str | int | None = None
    text: str | None = None
    allowable_bill: bool | None = None
    contact_id: int | None = None
    project_id: int | None = None
    user_id: int | None = None
    client_service_id: int | None = None
    status_id: int | None = None
    pr_package_id: int | None = None
    pr_milestone_id: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _project_alias(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("pr_project_id") is not None:
            data = {**data, "project_id": data["pr_project_id"]}
        return data


class WorkPackage(_Record):
    name: str | None = None
    spent_time_in_hours: float | None = None
    estimated_time_in_hours: float | None = None
    comment: str | None = None
    pr_milestone_id: int | None = None


class TimesheetStatus(_Record):
    name: str | None = None


class BusinessActivity(_Record):
    name: str | None = None
    default_is_billable: bool | None = None


def filter_valid(model: type[RecordT], rows: Any) -> list[RecordT]:
    """Validate API rows, dropping (and logging) the ones that do not fit."""
    if not isinstance(rows, list):
        if rows not in (None, {}):
            CLIENT_LOGGER.warning("Expected a list of %s rows, got %s", model.__name__, type(rows).__name__)
        return []

    valid: list[RecordT] = []
    dropped = 0
    for row in rows:
        try:
            valid.append(model.model_validate(row))
        except pydantic.ValidationError:
            dropped += 1
    if dropped:
        CLIENT_LOGGER.warning("Dropped %s invalid %s rows", dropped, model.__name__)
    return valid


@dataclass(frozen=True)
class TimeEntryDraft:
    date: str
    duration: str
    text: str = ""
    allowable_bill: bool = True
    client_service_id: int = DEFAULT_CLIENT_SERVICE_ID
    user_id: int = DEFAULT_USER_ID
    contact_id: int | None = None
    project_id: int | None = None
    status_id: int | None = None
    pr_package_id: int | None = None
    pr_milestone_id: int | None = None

    def to_payload(self) -> dict:
        payload: dict[str, Any] = {
            "user_id": self.user_id,
            "client_service_id": self.client_service_id,
            "text": self.text,
            "allowable_bill": self.allowable_bill,
            "tracking": {
                "type": "duration",
                "date": self.date,
                "duration": self.duration,
            },
        }
        optional = {
            "contact_id": self.contact_id,
            "pr_project_id": self.project_id,
            "status_id": self.status_id,
            "pr_package_id": self.pr_package_id,
            "pr_milestone_id": self.pr_milestone_id,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        return payload

    @classmethod
    def from_entry(cls, entry: TimeEntry, **changes) -> "TimeEntryDraft":
        values = {
            "date": entry.date,
            "duration": str(entry.duration or ""),
            "text": entry.text or "",
            "allowable_bill": True if entry.allowable_bill is None else entry.allowable_bill,
            "client_service_id": entry.client_service_id or DEFAULT_CLIENT_SERVICE_ID,
            "user_id": entry.user_id or DEFAULT_USER_ID,
            "contact_id": entry.contact_id,
            "project_id": entry.project_id,
            "status_id": entry.status_id,
            "pr_package_id": entry.pr_package_id,
            "pr_milestone_id": entry.pr_milestone_id,
        }
        values.update(changes)
        return cls(**values)
