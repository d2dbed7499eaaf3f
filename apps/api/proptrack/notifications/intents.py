from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

SERVICE_REQUEST_UPDATE = "SERVICE_REQUEST_UPDATE"
JOB_ASSIGNED = "JOB_ASSIGNED"


class IntentKind(StrEnum):
    NOTIFY_REQUESTER = "NotifyRequester"
    NOTIFY_ASSIGNEE = "NotifyAssignee"
    NOTIFY_MANAGER = "NotifyManager"


@dataclass(frozen=True, slots=True)
class NotificationIntent:
    """A notification the lifecycle wants delivered once its write has committed."""

    kind: IntentKind
    recipient_id: str
    notification_type: str
    title: str
    message: str
    entity_type: str
    entity_id: str
