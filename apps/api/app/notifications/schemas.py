from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


ReadStatus = Literal["read", "unread"]


class NotificationEntryRef(BaseModel):
    id: uuid.UUID
    customer_name: str | None = None


class NotificationRead(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    message: str
    entry: NotificationEntryRef | None
    read: bool
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_records: int
    limit: int


class NotificationPage(BaseModel):
    items: list[NotificationRead]
    pagination: Pagination


class MarkReadRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ids: list[uuid.UUID] = Field(min_length=1)


class MarkReadResult(BaseModel):
    updated: int


class ClearResult(BaseModel):
    deleted: int
