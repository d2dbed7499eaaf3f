from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from proptrack.accounts.models import User
from proptrack.core.database import new_id, utcnow
from proptrack.core.errors import ConflictError, ValidationError
from proptrack.jobs.models import Job, JobStatus
from proptrack.metrics import observe_status_transition
from proptrack.notifications.intents import (
    JOB_ASSIGNED,
    SERVICE_REQUEST_UPDATE,
    IntentKind,
    NotificationIntent,
)
from proptrack.platform.security.context import Principal, Role
from proptrack.platform.security.errors import AuthorizationError
from proptrack.properties.models import Property
from proptrack.service_requests.models import ServiceRequest, ServiceRequestStatus as Status
from proptrack.service_requests.policy import is_requester, manages_property

logger = logging.getLogger("proptrack.service_requests")


STRICT_TRANSITIONS: dict[Status, frozenset[Status]] = {
    Status.SUBMITTED: frozenset({Status.UNDER_REVIEW, Status.APPROVED, Status.REJECTED}),
    Status.UNDER_REVIEW: frozenset({Status.APPROVED, Status.REJECTED, Status.COMPLETED}),
    Status.APPROVED: frozenset({Status.COMPLETED}),
    Status.REJECTED: frozenset(),
    Status.COMPLETED: frozenset(),
    Status.CONVERTED_TO_JOB: frozenset(),
}

CONVERTIBLE_STATUSES = frozenset({Status.SUBMITTED, Status.UNDER_REVIEW, Status.APPROVED})

STATUS_MESSAGES: dict[str, str] = {
    Status.UNDER_REVIEW: "Your service request is now under review",
    Status.APPROVED: "Your service request has been approved and will be addressed soon",
    Status.REJECTED: "Your service request has been rejected",
    Status.COMPLETED: "Your service request has been completed",
}


@dataclass(frozen=True, slots=True)
class ConversionRequest:
    assigned_to_id: str | None = None
    scheduled_date: datetime | None = None
    estimated_cost: Decimal | None = None
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class JobSeed:
    job_id: str
    service_request_id: str
    title: str
    description: str
    priority: str
    property_id: str
    unit_id: str | None
    status: JobStatus
    assigned_to_id: str | None
    scheduled_date: datetime | None
    estimated_cost: Decimal | None
    notes: str

    def build(self) -> Job:
        return Job(
            id=self.job_id,
            service_request_id=self.service_request_id,
            title=self.title,
            description=self.description,
            priority=self.priority,
            property_id=self.property_id,
            unit_id=self.unit_id,
            status=self.status.value,
            assigned_to_id=self.assigned_to_id,
            scheduled_date=self.scheduled_date,
            estimated_cost=self.estimated_cost,
            notes=self.notes,
        )


def parse_status(value: str) -> Status:
    try:
        return Status(value)
    except ValueError:
        allowed = ", ".join(status.value for status in Status)
        raise ValidationError(f"Invalid status '{value}'. Allowed values: {allowed}") from None


class RequestLifecycle:
    """Status state machine for service requests.

    In strict mode only the edges in ``STRICT_TRANSITIONS`` are accepted. In
    permissive mode any status other than CONVERTED_TO_JOB may be set from
    any non-frozen status. Conversion is only reachable through
    :meth:`plan_conversion`, whichever mode is active.
    """

    def __init__(self, *, strict_transitions: bool = True, clock: Callable[[], datetime] = utcnow) -> None:
        self.strict_transitions = strict_transitions
        self._clock = clock

    def allowed_targets(self, current: str) -> frozenset[Status]:
        source = parse_status(current)
        if source is Status.CONVERTED_TO_JOB:
            return frozenset()
        if self.strict_transitions:
            return STRICT_TRANSITIONS[source]
        return frozenset(status for status in Status if status not in {Status.CONVERTED_TO_JOB, source})

    def ensure_mutable(self, record: ServiceRequest) -> None:
        if record.status == Status.CONVERTED_TO_JOB:
            raise ConflictError("Service request has been converted to a job and can no longer be modified")

    def check_transition(self, record: ServiceRequest, new_status: str) -> Status:
        self.ensure_mutable(record)
        target = parse_status(new_status)
        if target is Status.CONVERTED_TO_JOB:
            raise ConflictError("Use the convert-to-job operation to convert a service request")
        if target == record.status:
            return target
        if target not in self.allowed_targets(record.status):
            raise ConflictError(f"Invalid status transition from {record.status} to {target.value}")
        return target

    def apply_status(self, record: ServiceRequest, new_status: str, actor: Principal) -> list[NotificationIntent]:
        target = self.check_transition(record, new_status)
        previous = record.status
        if target == previous:
            return []

        record.status = target.value
        if target is not Status.SUBMITTED:
            record.reviewed_at = self._clock()

        observe_status_transition(from_status=previous, to_status=target.value)
        logger.info(
            "service_request.status_changed",
            extra={
                "service_request_id": record.id,
                "user_id": actor.id,
                "from_status": previous,
                "to_status": target.value,
            },
        )
        return [self.status_change_intent(record, target.value)]

    def apply_review_notes(self, record: ServiceRequest, review_notes: str | None) -> bool:
        self.ensure_mutable(record)
        if review_notes == record.review_notes:
            return False
        record.review_notes = review_notes
        record.reviewed_at = self._clock()
        return True

    def status_change_intent(self, record: ServiceRequest, new_status: str) -> NotificationIntent:
        copy = STATUS_MESSAGES.get(new_status, f"Your service request status has been updated to {new_status}")
        return NotificationIntent(
            kind=IntentKind.NOTIFY_REQUESTER,
            recipient_id=record.requested_by_id,
            notification_type=SERVICE_REQUEST_UPDATE,
            title="Service Request Update",
            message=f'{copy}: "{record.title}"',
            entity_type="service_request",
            entity_id=record.id,
        )

    def creation_intents(
        self,
        record: ServiceRequest,
        creator: Principal,
        requester: User | None,
        property_: Property,
    ) -> list[NotificationIntent]:
        if creator.role is not Role.TENANT:
            return []
        name = requester.display_name if requester is not None else "A tenant"
        return [
            NotificationIntent(
                kind=IntentKind.NOTIFY_MANAGER,
                recipient_id=property_.manager_id,
                notification_type=SERVICE_REQUEST_UPDATE,
                title="New Service Request",
                message=f"{name} submitted a {record.category} request at {property_.name}",
                entity_type="service_request",
                entity_id=record.id,
            )
        ]

    def plan_conversion(self, record: ServiceRequest, actor: Principal, request: ConversionRequest) -> JobSeed:
        if actor.role is not Role.PROPERTY_MANAGER:
            raise AuthorizationError("Only property managers can convert to jobs")
        if not manages_property(actor, record.property):
            raise AuthorizationError("Access denied")
        if record.status == Status.CONVERTED_TO_JOB:
            raise ConflictError("Service request already converted to job", status_code=400)
        if self.strict_transitions and record.status not in CONVERTIBLE_STATUSES:
            raise ConflictError(f"Service request in status {record.status} cannot be converted to a job")

        return JobSeed(
            job_id=new_id(),
            service_request_id=record.id,
            title=record.title,
            description=record.description,
            priority=record.priority,
            property_id=record.property_id,
            unit_id=record.unit_id,
            status=JobStatus.ASSIGNED if request.assigned_to_id else JobStatus.OPEN,
            assigned_to_id=request.assigned_to_id or None,
            scheduled_date=request.scheduled_date,
            estimated_cost=request.estimated_cost,
            notes=request.notes or f"Converted from service request #{record.id}",
        )

    def conversion_values(self, seed: JobSeed) -> dict[str, Any]:
        return {
            "status": Status.CONVERTED_TO_JOB.value,
            "reviewed_at": self._clock(),
            "review_notes": f"Converted to job #{seed.job_id}",
        }

    def conversion_intents(self, record: ServiceRequest, job: Job, property_name: str) -> list[NotificationIntent]:
        intents = [
            NotificationIntent(
                kind=IntentKind.NOTIFY_REQUESTER,
                recipient_id=record.requested_by_id,
                notification_type=SERVICE_REQUEST_UPDATE,
                title="Service Request Converted to Job",
                message=f'Your request "{record.title}" has been converted to a job and will be addressed soon.',
                entity_type="job",
                entity_id=job.id,
            )
        ]
        if job.assigned_to_id:
            intents.append(
                NotificationIntent(
                    kind=IntentKind.NOTIFY_ASSIGNEE,
                    recipient_id=job.assigned_to_id,
                    notification_type=JOB_ASSIGNED,
                    title="New Job Assigned",
                    message=f"You have been assigned to job: {job.title} at {property_name}",
                    entity_type="job",
                    entity_id=job.id,
                )
            )
        return intents

    def check_deletion(self, record: ServiceRequest, actor: Principal, *, has_linked_job: bool) -> None:
        tenant_withdrawal = (
            actor.role is Role.TENANT and is_requester(actor, record) and record.status == Status.SUBMITTED
        )
        if not (tenant_withdrawal or manages_property(actor, record.property)):
            raise AuthorizationError("Access denied")
        if has_linked_job or record.status == Status.CONVERTED_TO_JOB:
            raise ConflictError("Cannot delete service request that has been converted to a job", status_code=400)
