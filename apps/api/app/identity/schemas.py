from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


Role = Literal["others", "admin", "superadmin"]


class UserCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str = Field(min_length=1, max_length=150)
    email: EmailStr
    role: Role = "others"

    @field_validator("username")
    @classmethod
    def _strip_username(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("username must not be blank")
        return value


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    username: str
    email: str
    role: str
    created_at: datetime
    assigned_admin_ids: list[uuid.UUID] = Field(default_factory=list)


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    username: str


class RoleRead(BaseModel):
    user_id: uuid.UUID
    role: str
    is_admin: bool


class TeamMemberRead(BaseModel):
    id: uuid.UUID
    username: str
    email: str
    role: str
    assigned_admin_ids: list[uuid.UUID]
    assigned_admin_usernames: str


class AssignmentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: uuid.UUID
    admin_id: uuid.UUID | None = None


class AssignmentResult(BaseModel):
    user: UserRead
    admin_id: uuid.UUID | None
    propagated_to: list[uuid.UUID] = Field(default_factory=list)
    removed_links: int = 0
