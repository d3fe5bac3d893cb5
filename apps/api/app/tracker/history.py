"""Change detection for entry edits.

An edit is compared against the entry's state before it is applied. Each
``ChangeRule`` decides whether one tracked aspect changed; when at least one
rule fires, a single history snapshot describing the post-edit state is
appended. The first rule that fired supplies the default remarks.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from app.core.errors import ValidationFailure
from app.tracker.models import PERSON_MET_FIELDS, Entry, EntryHistory, as_utc
from app.tracker.schemas import EntryUpdate


@dataclass(frozen=True)
class ProposedEdit:
    supplied: frozenset[str]
    values: dict[str, Any]

    @classmethod
    def from_update(cls, changes: EntryUpdate) -> ProposedEdit:
        supplied = frozenset(changes.model_fields_set)
        values = changes.model_dump(include=set(supplied))
        if values.get("estimated_value") is not None and values["estimated_value"] <= 0:
            values["estimated_value"] = None
        return cls(supplied=supplied, values=values)

    def has(self, name: str) -> bool:
        return name in self.supplied

    def given(self, name: str) -> bool:
        """Supplied with a usable value: not null and, for text, not blank."""

        if name not in self.supplied:
            return False
        value = self.values.get(name)
        if value is None:
            return False
        if isinstance(value, str):
            return bool(value)
        return True

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default) if self.given(name) else default


def _status_changed(entry: Entry, edit: ProposedEdit) -> bool:
    return edit.given("status") and edit.values["status"] != entry.status


def _remarks_changed(entry: Entry, edit: ProposedEdit) -> bool:
    if not edit.has("remarks") or edit.values["remarks"] is None:
        return False
    return edit.values["remarks"] != (entry.remarks or "")


def _products_changed(entry: Entry, edit: ProposedEdit) -> bool:
    # an empty list never clears products
    return edit.given("products") and bool(edit.values["products"]) and edit.values["products"] != list(entry.products or [])


def _assignees_changed(entry: Entry, edit: ProposedEdit) -> bool:
    if not edit.has("assigned_to") or edit.values["assigned_to"] is None:
        return False
    return set(edit.values["assigned_to"]) != set(entry.assigned_to)


def _follow_up_changed(entry: Entry, edit: ProposedEdit) -> bool:
    if not edit.has("follow_up_date"):
        return False
    return as_utc(edit.values["follow_up_date"]) != as_utc(entry.follow_up_date)


def _person_met_changed(entry: Entry, edit: ProposedEdit) -> bool:
    return any(
        edit.given(name) and edit.values[name] != (getattr(entry, name) or "")
        for name in PERSON_MET_FIELDS
    )


def _attachment_added(entry: Entry, edit: ProposedEdit) -> bool:
    return edit.given("attachment_path") and edit.values["attachment_path"] != entry.attachment_path


@dataclass(frozen=True)
class ChangeRule:
    name: str
    default_remarks: str | None
    fired: Callable[[Entry, ProposedEdit], bool]


CHANGE_RULES: tuple[ChangeRule, ...] = (
    ChangeRule("status", "Status updated", _status_changed),
    ChangeRule("remarks", None, _remarks_changed),
    ChangeRule("products", "Products updated", _products_changed),
    ChangeRule("assigned_to", "Assigned users updated", _assignees_changed),
    ChangeRule("follow_up_date", "Follow-up date updated", _follow_up_changed),
    ChangeRule("person_met", "Person meet updated", _person_met_changed),
    ChangeRule("attachment", "Attachment added", _attachment_added),
)


@dataclass
class EditOutcome:
    triggers: tuple[str, ...] = ()
    snapshot: EntryHistory | None = None
    evicted: int = 0
    added_assignees: list[uuid.UUID] = field(default_factory=list)
    removed_assignees: list[uuid.UUID] = field(default_factory=list)

    @property
    def history_appended(self) -> bool:
        return self.snapshot is not None


def snapshot_of(entry: Entry, *, remarks: str | None, timestamp: datetime, **overrides: Any) -> EntryHistory:
    """Capture the entry's tracked fields, with ``overrides`` taking precedence."""

    values: dict[str, Any] = {
        "status": entry.status,
        "live_location": entry.live_location,
        "next_action": entry.next_action,
        "estimated_value": entry.estimated_value,
        "products": [dict(item) for item in entry.products or []],
        "assigned_to": list(entry.assigned_to),
        "follow_up_date": entry.follow_up_date,
        "attachment_path": entry.attachment_path,
    }
    for name in PERSON_MET_FIELDS:
        values[name] = getattr(entry, name)
    values.update(overrides)
    values["assigned_to"] = [str(user_id) for user_id in values["assigned_to"]]
    return EntryHistory(remarks=remarks, timestamp=timestamp, **values)


def append_snapshot(entry: Entry, snapshot: EntryHistory, history_limit: int) -> int:
    """Append and evict from the front while over the limit. Returns the evicted count."""

    entry.history.append(snapshot)
    evicted = 0
    while len(entry.history) > history_limit:
        entry.history.pop(0)
        evicted += 1
    if evicted:
        entry.history.reorder()
    return evicted


def _snapshot_remarks(fired: tuple[ChangeRule, ...], edit: ProposedEdit) -> str | None:
    if edit.given("remarks"):
        return edit.values["remarks"]
    first = fired[0]
    if first.default_remarks is None:
        return edit.values.get("remarks") or None
    return first.default_remarks


def _snapshot_overrides(entry: Entry, edit: ProposedEdit) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for name in ("status", "live_location", "next_action", "estimated_value", "attachment_path", *PERSON_MET_FIELDS):
        if edit.given(name):
            overrides[name] = edit.values[name]
    if _products_changed(entry, edit):
        overrides["products"] = edit.values["products"]
    if edit.has("assigned_to") and edit.values["assigned_to"] is not None:
        overrides["assigned_to"] = edit.values["assigned_to"]
    if edit.has("follow_up_date"):
        overrides["follow_up_date"] = edit.values["follow_up_date"]
    return overrides


def _apply_live_fields(entry: Entry, edit: ProposedEdit, now: datetime) -> None:
    for name in edit.supplied:
        value = edit.values[name]
        if name in {"status", "close_type"}:
            if value is not None:
                setattr(entry, name, value)
        elif name == "products":
            if value:
                entry.products = value
        elif name == "assigned_to":
            if value is not None:
                entry.set_assignees(value)
        else:
            setattr(entry, name, value)
    entry.updated_at = now


def apply_edit(entry: Entry, changes: EntryUpdate, *, now: datetime, history_limit: int) -> EditOutcome:
    """Diff ``changes`` against ``entry``, mutate it and append at most one snapshot.

    Raises ``ValidationFailure`` before touching the entry when a status change
    has no live location, either supplied or already recorded. Accepting the
    stored location is a deliberate relaxation: the request itself need not
    repeat it.
    """

    edit = ProposedEdit.from_update(changes)
    fired = tuple(rule for rule in CHANGE_RULES if rule.fired(entry, edit))
    names = tuple(rule.name for rule in fired)

    if "status" in names and not (edit.given("live_location") or entry.live_location):
        raise ValidationFailure(
            "Live location is required when updating status",
            details={"field": "live_location"},
        )

    previous_assignees = list(entry.assigned_to)
    snapshot = None
    if fired:
        snapshot = snapshot_of(
            entry,
            remarks=_snapshot_remarks(fired, edit),
            timestamp=now,
            **_snapshot_overrides(entry, edit),
        )

    _apply_live_fields(entry, edit, now)

    outcome = EditOutcome(triggers=names, snapshot=snapshot)
    if snapshot is not None:
        outcome.evicted = append_snapshot(entry, snapshot, history_limit)
    if "assigned_to" in names:
        current = entry.assigned_to
        outcome.added_assignees = [user_id for user_id in current if user_id not in previous_assignees]
        outcome.removed_assignees = [user_id for user_id in previous_assignees if user_id not in current]
    return outcome
