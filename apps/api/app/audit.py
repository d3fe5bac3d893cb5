"""Append-only audit trail for hierarchy and entry mutations.

The trail is held in process and capped, so recording never touches the
request's database session and cannot fail a write that already committed.
"""

from __future__ import annotations

import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any

from app.context import get_correlation_id
from app.logging import mask_sensitive

AUDIT_TRAIL_LIMIT = 10_000

audit_entries: deque[dict[str, Any]] = deque(maxlen=AUDIT_TRAIL_LIMIT)


def record(
    actor_user_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    item = {
        "id": str(uuid.uuid4()),
        "actor_user_id": actor_user_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "action": action,
        "before": mask_sensitive(before),
        "after": mask_sensitive(after),
        "correlation_id": correlation_id or get_correlation_id(),
        "occurred_at": datetime.now(timezone.utc).isoformat(),
    }
    audit_entries.append(item)
    return item


def entries_for(entity_type: str, entity_id: str | None = None, *, action: str | None = None) -> list[dict[str, Any]]:
    return [
        item
        for item in audit_entries
        if item["entity_type"] == entity_type
        and (entity_id is None or item["entity_id"] == entity_id)
        and (action is None or item["action"] == action)
    ]
