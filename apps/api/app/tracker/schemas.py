from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


EntryStatus = Literal["Not Found", "Maybe", "Interested", "Not Interested", "Closed"]
CloseType = Literal["Closed Won", "Closed Lost", ""]

NO_REQUIREMENT = "No Requirement"
NO_REQUIREMENT_SPECIFICATION = "No specific requirement"
NO_REQUIREMENT_SIZE = "Not Applicable"

_TEXT_FIELDS = (
    "customer_name",
    "customer_email",
    "mobile_number",
    "contact_person",
    "organization",
    "category",
    "type",
    "state",
    "city",
    "address",
    "next_action",
    "remarks",
    "live_location",
    "attachment_path",
    "first_person_meet",
    "second_person_meet",
    "third_person_meet",
    "fourth_person_meet",
)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _to_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ProductItem(BaseModel):
    name: str = Field(min_length=1)
    specification: str | None = None
    size: str | None = None
    quantity: int = 0

    @field_validator("name", "specification", "size", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _apply_product_rule(self) -> ProductItem:
        if self.name == NO_REQUIREMENT:
            self.quantity = 0
            self.specification = self.specification or NO_REQUIREMENT_SPECIFICATION
            self.size = self.size or NO_REQUIREMENT_SIZE
            return self
        if not self.specification or not self.size:
            raise ValueError(f"product '{self.name}' requires a specification and a size")
        if self.quantity < 1:
            raise ValueError(f"product '{self.name}' requires a quantity of at least 1")
        return self


class _EntryFields(BaseModel):
    """Fields shared by create and update payloads, with their normalization."""

    model_config = ConfigDict(extra="forbid")

    customer_name: str | None = None
    customer_email: str | None = None
    mobile_number: str | None = Field(default=None, pattern=r"^\d{10}$")
    contact_person: str | None = None
    organization: str | None = None
    category: str | None = None
    type: str | None = None
    state: str | None = None
    city: str | None = None
    address: str | None = None
    estimated_value: float | None = None
    close_amount: float | None = Field(default=None, ge=0)
    close_type: CloseType | None = None
    next_action: str | None = None
    follow_up_date: datetime | None = None
    expected_closing_date: datetime | None = None
    first_date: datetime | None = None
    first_person_meet: str | None = None
    second_person_meet: str | None = None
    third_person_meet: str | None = None
    fourth_person_meet: str | None = None
    remarks: str | None = None
    attachment_path: str | None = None
    live_location: str | None = None
    assigned_to: list[uuid.UUID] | None = None

    @field_validator(*_TEXT_FIELDS, mode="before")
    @classmethod
    def _strip_text(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("mobile_number", "follow_up_date", "expected_closing_date", "first_date", mode="before")
    @classmethod
    def _empty_is_null(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("follow_up_date", "expected_closing_date", "first_date")
    @classmethod
    def _normalize_dates(cls, value: datetime | None) -> datetime | None:
        return _to_utc(value)

    @field_validator("assigned_to")
    @classmethod
    def _dedupe_assignees(cls, value: list[uuid.UUID] | None) -> list[uuid.UUID] | None:
        if value is None:
            return None
        return list(dict.fromkeys(value))


class EntryCreate(_EntryFields):
    status: EntryStatus
    live_location: str = Field(min_length=1)
    products: list[ProductItem] = Field(default_factory=list)
    created_at: datetime | None = None

    @field_validator("created_at", mode="before")
    @classmethod
    def _empty_created_at(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("created_at")
    @classmethod
    def _normalize_created_at(cls, value: datetime | None) -> datetime | None:
        return _to_utc(value)


class BulkEntryRow(_EntryFields):
    """A spreadsheet row. Lenient: status defaults and live location is optional."""

    model_config = ConfigDict(extra="ignore")

    status: EntryStatus | None = None
    products: list[ProductItem] = Field(default_factory=list)
    created_at: datetime | None = None

    @field_validator("status", "close_type", mode="before")
    @classmethod
    def _empty_uses_default(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("created_at", mode="before")
    @classmethod
    def _empty_created_at(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("created_at")
    @classmethod
    def _normalize_created_at(cls, value: datetime | None) -> datetime | None:
        return _to_utc(value)


class EntryUpdate(_EntryFields):
    """Partial update. Only fields present in the payload are considered."""

    status: EntryStatus | None = None
    products: list[ProductItem] | None = None


class HistorySnapshotRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: str
    remarks: str | None
    live_location: str | None
    next_action: str | None
    estimated_value: float | None
    products: list[dict[str, Any]]
    assigned_to: list[uuid.UUID]
    follow_up_date: datetime | None
    first_person_meet: str | None
    second_person_meet: str | None
    third_person_meet: str | None
    fourth_person_meet: str | None
    attachment_path: str | None
    timestamp: datetime

    @field_validator("follow_up_date", "timestamp")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return _to_utc(value)


class EntryRead(BaseModel):
    id: uuid.UUID
    customer_name: str | None
    customer_email: str | None
    mobile_number: str | None
    contact_person: str | None
    organization: str | None
    category: str | None
    type: str | None
    state: str | None
    city: str | None
    address: str | None
    estimated_value: float | None
    close_amount: float | None
    close_type: str
    status: str
    next_action: str | None
    follow_up_date: datetime | None
    expected_closing_date: datetime | None
    first_date: datetime | None
    first_person_meet: str | None
    second_person_meet: str | None
    third_person_meet: str | None
    fourth_person_meet: str | None
    remarks: str | None
    attachment_path: str | None
    live_location: str | None
    products: list[dict[str, Any]]
    created_by_id: uuid.UUID
    assigned_to: list[uuid.UUID]
    history: list[HistorySnapshotRead]
    created_at: datetime
    updated_at: datetime

    @field_validator("follow_up_date", "expected_closing_date", "first_date", "created_at", "updated_at")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return _to_utc(value)


class BulkRowError(BaseModel):
    index: int
    message: str
    errors: list[dict[str, Any]] = Field(default_factory=list)


class BulkCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entries: list[dict[str, Any]] = Field(min_length=1)


class BulkCreateResult(BaseModel):
    inserted: int
    entries: list[EntryRead]
    errors: list[BulkRowError]
