from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError
from sqlalchemy import Select, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app import audit, events
from app.core.config import get_settings
from app.core.database import storage_guard
from app.core.errors import DependencyFailure, NotFoundError, ValidationFailure
from app.identity.repository import HierarchyRepository
from app.metrics import observe_authz_denied, observe_history_appended, observe_history_evicted
from app.notifications.intents import NotificationIntent
from app.otel import traced
from app.platform.security import ActorContext, AuthorizationError, resolve_scope
from app.tracker.history import append_snapshot, apply_edit, snapshot_of
from app.tracker.models import Entry
from app.tracker.phone_validation import PhoneNumberPolicy, ReservedNumberPolicy
from app.tracker.schemas import (
    BulkCreateResult,
    BulkEntryRow,
    BulkRowError,
    EntryCreate,
    EntryRead,
    EntryUpdate,
    HistorySnapshotRead,
)


logger = logging.getLogger("app.tracker")

INITIAL_REMARKS = "Initial entry created"
BULK_REMARKS = "Bulk upload entry"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EntryMutation:
    """Result of a mutating entry operation plus the notifications it owes."""

    entry: EntryRead | None
    history_appended: bool = False
    intents: list[NotificationIntent] = field(default_factory=list)


@dataclass
class BulkMutation:
    result: BulkCreateResult
    intents: list[NotificationIntent] = field(default_factory=list)


def _display_name(entry: Entry) -> str:
    return entry.customer_name or "Unknown"


@dataclass
class EntryService:
    users: HierarchyRepository = field(default_factory=HierarchyRepository)
    phone_policy: PhoneNumberPolicy = field(default_factory=ReservedNumberPolicy)
    history_limit: int | None = None
    entity_type = "tracker.entry"

    def create_entry(self, session: Session, actor: ActorContext, dto: EntryCreate) -> EntryMutation:
        self._check_phone(session, actor, dto.mobile_number)
        assignees = dto.assigned_to or []
        self._require_users(session, assignees)

        created_at = dto.created_at or utcnow()
        entry = Entry(
            **self._entry_values(dto),
            status=dto.status,
            close_type=dto.close_type or "",
            products=[product.model_dump() for product in dto.products],
            created_by_id=actor.user_id,
            created_at=created_at,
            updated_at=created_at,
        )
        entry.set_assignees(assignees)
        append_snapshot(
            entry,
            snapshot_of(entry, remarks=dto.remarks or INITIAL_REMARKS, timestamp=created_at),
            self._history_limit(),
        )
        session.add(entry)
        self._commit(session, "Could not store the entry")
        observe_history_appended("create")

        name = _display_name(entry)
        intents = [NotificationIntent(user_id=actor.user_id, message=f"New entry created: {name}", entry_id=entry.id)]
        intents.extend(
            NotificationIntent(user_id=user_id, message=f"Assigned to new entry: {name}", entry_id=entry.id)
            for user_id in assignees
        )

        entry_read = self._to_read(entry)
        self._record(actor, entry.id, action="create", after={"status": entry.status})
        logger.info(
            "entry.created",
            extra={"actor_id": str(actor.user_id), "entry_id": str(entry.id), "status": entry.status},
        )
        return EntryMutation(entry=entry_read, history_appended=True, intents=intents)

    def list_entries(
        self,
        session: Session,
        actor: ActorContext,
        *,
        status: str | None = None,
        q: str | None = None,
        cursor: str | None = None,
        limit: int = 50,
    ) -> list[EntryRead]:
        scope = resolve_scope(session, actor)
        stmt: Select[tuple[Entry]] = (
            select(Entry)
            .where(scope.entry_filter())
            .options(selectinload(Entry.assignees), selectinload(Entry.history))
        )
        if status:
            stmt = stmt.where(Entry.status == status)
        if q:
            pattern = f"%{q.strip()}%"
            stmt = stmt.where(
                or_(
                    Entry.customer_name.ilike(pattern),
                    Entry.organization.ilike(pattern),
                    Entry.mobile_number.ilike(pattern),
                )
            )

        offset = int(cursor) if cursor and cursor.isdigit() else 0
        with storage_guard(session, "Could not load entries"):
            entries = session.scalars(stmt.order_by(Entry.created_at.desc()).offset(offset).limit(limit)).all()
            return [self._to_read(entry) for entry in entries]

    def get_entry(self, session: Session, actor: ActorContext, entry_id: uuid.UUID) -> EntryRead:
        entry = self._load_visible(session, actor, entry_id, operation="get_entry")
        return self._to_read(entry)

    def edit_entry(self, session: Session, actor: ActorContext, entry_id: uuid.UUID, dto: EntryUpdate) -> EntryMutation:
        entry = self._load_visible(session, actor, entry_id, operation="edit_entry")
        if "mobile_number" in dto.model_fields_set:
            self._check_phone(session, actor, dto.mobile_number)
        if dto.assigned_to:
            self._require_users(session, dto.assigned_to)

        before = {"status": entry.status, "assigned_to": [str(item) for item in entry.assigned_to]}
        with traced("app.tracker", "entry.edit", entry_id=entry.id, actor_id=actor.user_id) as span:
            outcome = apply_edit(entry, dto, now=utcnow(), history_limit=self._history_limit())
            span.set_attribute("history_appended", outcome.history_appended)
            self._commit(session, "Could not update the entry")

        if outcome.history_appended:
            observe_history_appended(outcome.triggers[0])
            observe_history_evicted(outcome.evicted)

        name = _display_name(entry)
        intents = [
            NotificationIntent(user_id=user_id, message=f"Assigned to updated entry: {name}", entry_id=entry.id)
            for user_id in outcome.added_assignees
        ]
        intents.extend(
            NotificationIntent(user_id=user_id, message=f"Unassigned from entry: {name}", entry_id=entry.id)
            for user_id in outcome.removed_assignees
        )
        if outcome.history_appended:
            message = f'Entry "{name}" has been updated.'
            intents.append(NotificationIntent(user_id=entry.created_by_id, message=message, entry_id=entry.id))
            intents.extend(
                NotificationIntent(user_id=user_id, message=message, entry_id=entry.id)
                for user_id in entry.assigned_to
            )

        entry_read = self._to_read(entry)
        self._record(
            actor,
            entry.id,
            action="update",
            before=before,
            after={
                "status": entry.status,
                "assigned_to": [str(item) for item in entry.assigned_to],
                "triggers": list(outcome.triggers),
            },
        )
        logger.info(
            "entry.edited",
            extra={
                "actor_id": str(actor.user_id),
                "entry_id": str(entry.id),
                "triggers": list(outcome.triggers),
                "recipients": len(intents),
            },
        )
        return EntryMutation(entry=entry_read, history_appended=outcome.history_appended, intents=intents)

    def delete_entry(self, session: Session, actor: ActorContext, entry_id: uuid.UUID) -> EntryMutation:
        with storage_guard(session, "Could not load the entry"):
            entry = session.get(Entry, entry_id)
            if entry is None:
                raise NotFoundError("Entry not found", details={"entry_id": str(entry_id)})
            assigned_to = list(entry.assigned_to)
        scope = resolve_scope(session, actor)
        if not scope.includes_user(entry.created_by_id):
            self._deny(actor, entry.id, "delete_entry", "Not allowed to delete this entry")

        name = _display_name(entry)
        recipients = list(dict.fromkeys([actor.user_id, *assigned_to]))
        intents = [
            NotificationIntent(user_id=user_id, message=f"Entry deleted: {name}", entry_id=entry.id)
            for user_id in recipients
        ]
        before = {"status": entry.status, "customer_name": entry.customer_name}
        session.delete(entry)
        self._commit(session, "Could not delete the entry")

        self._record(actor, entry_id, action="delete", before=before, after=None)
        logger.info("entry.deleted", extra={"actor_id": str(actor.user_id), "entry_id": str(entry_id)})
        return EntryMutation(entry=None, intents=intents)

    def bulk_create(self, session: Session, actor: ActorContext, rows: list[dict[str, Any]]) -> BulkMutation:
        """Insert every valid row; report the rest by index.

        Rows are validated independently. Unknown assignees are dropped rather
        than failing the row, and the history timestamp follows the row's
        ``created_at``.
        """

        errors: list[BulkRowError] = []
        accepted: list[tuple[BulkEntryRow, list[uuid.UUID]]] = []
        for index, raw in enumerate(rows):
            try:
                row = BulkEntryRow.model_validate(raw)
            except ValidationError as exc:
                errors.append(BulkRowError(index=index, message="Invalid entry", errors=_error_details(exc)))
                continue
            check = self.phone_policy.check(row.mobile_number, self._username(session, actor))
            if not check.is_valid:
                errors.append(BulkRowError(index=index, message=check.message))
                continue
            requested = row.assigned_to or []
            known = self.users.existing_ids(session, requested)
            accepted.append((row, [user_id for user_id in requested if user_id in known]))

        if not accepted:
            raise ValidationFailure(
                "No valid entries to upload",
                details={"errors": [error.model_dump() for error in errors]},
            )

        entries: list[tuple[Entry, list[uuid.UUID]]] = []
        history_limit = self._history_limit()
        for row, assignees in accepted:
            created_at = row.created_at or utcnow()
            entry = Entry(
                **self._entry_values(row),
                status=row.status or "Not Found",
                close_type=row.close_type or "",
                products=[product.model_dump() for product in row.products],
                created_by_id=actor.user_id,
                created_at=created_at,
                updated_at=created_at,
            )
            entry.set_assignees(assignees)
            append_snapshot(
                entry,
                snapshot_of(entry, remarks=row.remarks or BULK_REMARKS, timestamp=created_at),
                history_limit,
            )
            session.add(entry)
            entries.append((entry, assignees))
        self._commit(session, "Could not store the uploaded entries")

        intents: list[NotificationIntent] = []
        for entry, assignees in entries:
            observe_history_appended("bulk_create")
            name = _display_name(entry)
            intents.append(NotificationIntent(user_id=actor.user_id, message=f"Bulk entry created: {name}", entry_id=entry.id))
            intents.extend(
                NotificationIntent(user_id=user_id, message=f"Assigned to bulk entry: {name}", entry_id=entry.id)
                for user_id in assignees
            )
            self._record(actor, entry.id, action="create", after={"status": entry.status, "source": "bulk"})

        logger.info(
            "entry.bulk_created",
            extra={"actor_id": str(actor.user_id), "sent": len(entries), "error": len(errors) or None},
        )
        return BulkMutation(
            result=BulkCreateResult(
                inserted=len(entries),
                entries=[self._to_read(entry) for entry, _ in entries],
                errors=errors,
            ),
            intents=intents,
        )

    def _entry_values(self, dto: EntryCreate | BulkEntryRow) -> dict[str, Any]:
        values = dto.model_dump(
            exclude={"status", "close_type", "products", "assigned_to", "created_at"},
        )
        estimated = values.get("estimated_value")
        if estimated is not None and estimated <= 0:
            values["estimated_value"] = None
        return values

    def _load_visible(self, session: Session, actor: ActorContext, entry_id: uuid.UUID, *, operation: str) -> Entry:
        with storage_guard(session, "Could not load the entry"):
            entry = session.get(Entry, entry_id)
            if entry is None:
                raise NotFoundError("Entry not found", details={"entry_id": str(entry_id)})
            assigned_to = list(entry.assigned_to)
        scope = resolve_scope(session, actor)
        if not scope.can_see_entry(entry.created_by_id, assigned_to):
            self._deny(actor, entry.id, operation, "Not allowed to access this entry")
        return entry

    def _check_phone(self, session: Session, actor: ActorContext, number: str | None) -> None:
        if not number:
            return
        check = self.phone_policy.check(number, self._username(session, actor))
        if not check.is_valid:
            raise ValidationFailure(check.message, code="own_phone_number", details={"field": "mobile_number"})

    def _username(self, session: Session, actor: ActorContext) -> str:
        user = self.users.get_user(session, actor.user_id)
        return user.username if user is not None else actor.username

    def _require_users(self, session: Session, user_ids: Iterable[uuid.UUID]) -> None:
        requested = list(user_ids)
        known = self.users.existing_ids(session, requested)
        missing = [str(user_id) for user_id in requested if user_id not in known]
        if missing:
            raise ValidationFailure(f"User not found: {missing[0]}", details={"missing_user_ids": missing})

    def _history_limit(self) -> int:
        return self.history_limit if self.history_limit is not None else get_settings().history_limit

    def _commit(self, session: Session, message: str) -> None:
        try:
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("storage.commit_failed", extra={"error": str(exc)[:500]})
            raise DependencyFailure(message) from exc

    def _deny(self, actor: ActorContext, entry_id: uuid.UUID, operation: str, message: str) -> None:
        observe_authz_denied(operation)
        audit.record(
            actor_user_id=str(actor.user_id),
            entity_type=self.entity_type,
            entity_id=str(entry_id),
            action="authz_denied",
            before=None,
            after={"operation": operation},
            correlation_id=actor.correlation_id,
        )
        logger.warning(
            "authz.denied",
            extra={"actor_id": str(actor.user_id), "entry_id": str(entry_id), "operation": operation},
        )
        raise AuthorizationError(message, operation=operation)

    def _record(
        self,
        actor: ActorContext,
        entry_id: uuid.UUID,
        *,
        action: str,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
    ) -> None:
        audit.record(
            actor_user_id=str(actor.user_id),
            entity_type=self.entity_type,
            entity_id=str(entry_id),
            action=action,
            before=before,
            after=after,
            correlation_id=actor.correlation_id,
        )
        events.emit(
            f"tracker.entry.{action}d",
            actor_user_id=str(actor.user_id),
            payload={"entry_id": str(entry_id), **(after or {})},
            correlation_id=actor.correlation_id,
        )

    def _to_read(self, entry: Entry) -> EntryRead:
        return EntryRead(
            id=entry.id,
            customer_name=entry.customer_name,
            customer_email=entry.customer_email,
            mobile_number=entry.mobile_number,
            contact_person=entry.contact_person,
            organization=entry.organization,
            category=entry.category,
            type=entry.type,
            state=entry.state,
            city=entry.city,
            address=entry.address,
            estimated_value=entry.estimated_value,
            close_amount=entry.close_amount,
            close_type=entry.close_type or "",
            status=entry.status,
            next_action=entry.next_action,
            follow_up_date=entry.follow_up_date,
            expected_closing_date=entry.expected_closing_date,
            first_date=entry.first_date,
            first_person_meet=entry.first_person_meet,
            second_person_meet=entry.second_person_meet,
            third_person_meet=entry.third_person_meet,
            fourth_person_meet=entry.fourth_person_meet,
            remarks=entry.remarks,
            attachment_path=entry.attachment_path,
            live_location=entry.live_location,
            products=list(entry.products or []),
            created_by_id=entry.created_by_id,
            assigned_to=entry.assigned_to,
            history=[HistorySnapshotRead.model_validate(snapshot) for snapshot in entry.history],
            created_at=entry.created_at,
            updated_at=entry.updated_at,
        )


def _error_details(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": [str(part) for part in error["loc"]], "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]


entry_service = EntryService()
