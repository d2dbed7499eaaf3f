from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from proptrack.core.celery_app import celery_app
from proptrack.core.database import SessionLocal, utcnow
from proptrack.notifications.models import Notification, NotificationStatus

logger = logging.getLogger("proptrack.notifications")


def mark_delivered(session: Session, notification_id: str) -> bool:
    notification = session.get(Notification, notification_id)
    if notification is None:
        return False
    if notification.status == NotificationStatus.DELIVERED:
        return True
    notification.status = NotificationStatus.DELIVERED.value
    notification.delivered_at = utcnow()
    session.commit()
    logger.info(
        "notification.delivered",
        extra={"notification_id": notification_id, "notification_type": notification.type},
    )
    return True


@celery_app.task(name="proptrack.notifications.deliver")
def deliver_notification(notification_id: str) -> bool:
    with SessionLocal() as session:
        return mark_delivered(session, notification_id)
