from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from proptrack.context import get_correlation_id
from proptrack.core.events import event_bus

published_events: list[dict[str, Any]] = []


def publish(event_type: str, *, actor_user_id: str, payload: dict[str, Any], correlation_id: str | None = None) -> dict[str, Any]:
    envelope: dict[str, Any] = {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "actor_user_id": actor_user_id,
        "correlation_id": correlation_id or get_correlation_id(),
        "version": 1,
        "payload": payload,
    }
    published_events.append(envelope)
    event_bus.publish(event_type, envelope)
    return envelope
