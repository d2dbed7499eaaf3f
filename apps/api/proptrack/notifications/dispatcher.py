from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

from sqlalchemy.orm import Session

from proptrack.core.config import get_settings
from proptrack.metrics import (
    observe_notification_enqueued,
    observe_notification_failure,
    observe_notification_handoff_failure,
)
from proptrack.notifications.intents import NotificationIntent
from proptrack.notifications.models import Notification

logger = logging.getLogger("proptrack.notifications")


def _celery_deliver(notification_id: str) -> Any:
    from proptrack.notifications.tasks import deliver_notification

    return deliver_notification.delay(notification_id)


class NotificationDispatcher:
    """Persists notifications in ``Queued`` state and optionally hands them to Celery."""

    def __init__(
        self,
        *,
        async_delivery: bool | None = None,
        deliver: Callable[[str], Any] | None = None,
    ) -> None:
        if async_delivery is None:
            async_delivery = get_settings().notifications_async_delivery
        self.async_delivery = async_delivery
        self._deliver = deliver or _celery_deliver

    def enqueue(
        self,
        session: Session,
        *,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        entity_type: str,
        entity_id: str,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        session.add(notification)
        session.commit()

        observe_notification_enqueued(notification_type)
        logger.info(
            "notification.enqueued",
            extra={
                "notification_id": notification.id,
                "notification_type": notification_type,
                "user_id": user_id,
            },
        )
        if self.async_delivery:
            self._hand_off(notification)
        return notification

    def _hand_off(self, notification: Notification) -> None:
        # The row is already committed as Queued; a broker failure leaves it
        # there for a later sweep rather than un-enqueuing it.
        try:
            self._deliver(notification.id)
        except Exception as exc:
            observe_notification_handoff_failure(notification.type)
            logger.exception(
                "notification.handoff_failed",
                extra={
                    "notification_id": notification.id,
                    "notification_type": notification.type,
                    "error": str(exc),
                },
            )

    def dispatch(self, session: Session, intents: Iterable[NotificationIntent]) -> list[Notification]:
        """Enqueue every intent; a failing intent is logged and skipped."""

        enqueued: list[Notification] = []
        for intent in intents:
            try:
                enqueued.append(
                    self.enqueue(
                        session,
                        user_id=intent.recipient_id,
                        notification_type=intent.notification_type,
                        title=intent.title,
                        message=intent.message,
                        entity_type=intent.entity_type,
                        entity_id=intent.entity_id,
                    )
                )
            except Exception as exc:
                session.rollback()
                observe_notification_failure(intent.notification_type)
                logger.exception(
                    "notification.enqueue_failed",
                    extra={
                        "notification_type": intent.notification_type,
                        "user_id": intent.recipient_id,
                        "error": str(exc),
                    },
                )
        return enqueued
