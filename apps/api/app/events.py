from __future__ import annotations

import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any

from app.context import get_correlation_id
from app.core.events import event_bus

ENVELOPE_VERSION = 1

published_events: deque[dict[str, Any]] = deque(maxlen=5000)


def emit(event_type: str, *, actor_user_id: str, payload: dict[str, Any], correlation_id: str | None = None) -> dict[str, Any]:
    envelope = {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "actor_user_id": actor_user_id,
        "version": ENVELOPE_VERSION,
        "correlation_id": correlation_id,
        "payload": payload,
    }
    publish(envelope)
    return envelope


def publish(envelope: dict[str, Any]) -> None:
    """Stamp the ambient correlation id and fan the envelope out on the in-process bus."""

    if envelope.get("correlation_id") is None:
        envelope["correlation_id"] = get_correlation_id()

    published_events.append(envelope)
    event_type = envelope.get("event_type")
    if isinstance(event_type, str) and event_type:
        event_bus.publish(event_type, envelope)
