from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, TypeVar

from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from proptrack import audit, events
from proptrack.accounts.models import User
from proptrack.core.config import get_settings
from proptrack.core.errors import ConflictError, NotFoundError, ValidationError
from proptrack.jobs.assignments import JobAssignments, SqlJobAssignments
from proptrack.metrics import observe_conversion
from proptrack.notifications.dispatcher import NotificationDispatcher
from proptrack.platform.security.context import Principal, Role
from proptrack.platform.security.errors import AuthorizationError
from proptrack.platform.security.predicates import Predicate
from proptrack.platform.security.rls import ensure_in_scope
from proptrack.properties.models import Property, Unit, UnitTenant
from proptrack.service_requests.lifecycle import ConversionRequest, RequestLifecycle
from proptrack.service_requests.models import (
    ServiceRequest,
    ServiceRequestCategory,
    ServiceRequestPriority,
    ServiceRequestStatus,
)
from proptrack.service_requests.policy import RESOURCE, AccessScopeResolver, FieldPermissionPolicy
from proptrack.service_requests.repository import ServiceRequestRepository
from proptrack.service_requests.schemas import (
    ConversionResult,
    ConvertToJobRequest,
    DeleteAck,
    JobRead,
    ServiceRequestCreate,
    ServiceRequestFilters,
    ServiceRequestPage,
    ServiceRequestRead,
    ServiceRequestUpdate,
)

logger = logging.getLogger("proptrack.service_requests")
tracer = trace.get_tracer("proptrack.service_requests")

REQUIRED_CREATE_FIELDS = ("title", "description", "category", "property_id")
PLAIN_UPDATE_FIELDS = ("title", "description", "priority")

EnumT = TypeVar("EnumT", bound=StrEnum)


def _parse_choice(enum_type: type[EnumT], value: str, field_name: str) -> EnumT:
    try:
        return enum_type(value.strip().upper())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(
            f"Invalid {field_name} '{value}'. Allowed values: {allowed}",
            details={"field": field_name, "allowed": [member.value for member in enum_type]},
        ) from None


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


@dataclass(slots=True)
class ServiceRequestService:
    repository: ServiceRequestRepository = field(default_factory=ServiceRequestRepository)
    field_policy: FieldPermissionPolicy = field(default_factory=FieldPermissionPolicy)
    lifecycle: RequestLifecycle | None = None
    dispatcher: NotificationDispatcher | None = None
    assignments_factory: Callable[[Session], JobAssignments] | None = None

    def _lifecycle(self) -> RequestLifecycle:
        if self.lifecycle is None:
            return RequestLifecycle(strict_transitions=get_settings().service_request_strict_transitions)
        return self.lifecycle

    def _dispatcher(self) -> NotificationDispatcher:
        if self.dispatcher is None:
            return NotificationDispatcher()
        return self.dispatcher

    def _assignments(self, session: Session) -> JobAssignments:
        if self.assignments_factory is not None:
            return self.assignments_factory(session)
        return SqlJobAssignments(session, include_closed_jobs=get_settings().technician_scope_include_closed_jobs)

    def scope_for(self, session: Session, principal: Principal) -> Predicate:
        return AccessScopeResolver(self._assignments(session)).scope_for(principal)

    def _load_visible(self, session: Session, principal: Principal, service_request_id: str, *, action: str) -> ServiceRequest:
        record = self.repository.get(session, service_request_id)
        if record is None:
            raise NotFoundError("Service request not found")
        ensure_in_scope(RESOURCE, self.scope_for(session, principal), record, principal, action=action)
        return record

    def list_service_requests(
        self,
        session: Session,
        principal: Principal,
        filters: ServiceRequestFilters,
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> ServiceRequestPage:
        settings = get_settings()
        page_size = settings.service_request_default_page_size if limit is None else limit
        page_size = max(1, min(page_size, settings.service_request_max_page_size))
        offset = max(0, offset)

        rows, total = self.repository.list(
            session,
            self.scope_for(session, principal),
            filters,
            limit=page_size,
            offset=offset,
        )
        return ServiceRequestPage(
            items=[ServiceRequestRead.model_validate(row) for row in rows],
            total=total,
            page=offset // page_size + 1,
            has_more=offset + page_size < total,
        )

    def get_service_request(self, session: Session, principal: Principal, service_request_id: str) -> ServiceRequestRead:
        record = self._load_visible(session, principal, service_request_id, action="read")
        return ServiceRequestRead.model_validate(record)

    def create_service_request(
        self,
        session: Session,
        principal: Principal,
        dto: ServiceRequestCreate,
    ) -> ServiceRequestRead:
        if principal.role is Role.TECHNICIAN:
            raise AuthorizationError("Technicians cannot create service requests")
        if principal.role not in (Role.TENANT, Role.PROPERTY_MANAGER):
            raise AuthorizationError("Only tenants and managers can create service requests")

        missing = [name for name in REQUIRED_CREATE_FIELDS if _blank(getattr(dto, name))]
        if missing:
            raise ValidationError(
                "Missing required fields: title, description, category, property_id",
                details={"missing_fields": missing},
            )

        category = _parse_choice(ServiceRequestCategory, dto.category or "", "category")
        priority = (
            ServiceRequestPriority.MEDIUM
            if _blank(dto.priority)
            else _parse_choice(ServiceRequestPriority, dto.priority or "", "priority")
        )

        if principal.role is Role.TENANT and _blank(dto.unit_id):
            raise ValidationError("Unit ID is required for tenants")

        property_ = session.get(Property, dto.property_id)
        if property_ is None:
            raise NotFoundError("Property not found")

        if principal.role is Role.TENANT:
            self._ensure_active_tenancy(session, principal, property_, dto.unit_id or "")
        else:
            if property_.manager_id != principal.id:
                raise AuthorizationError("Access denied")
            if dto.unit_id and self._unit_property_id(session, dto.unit_id) != property_.id:
                raise ValidationError("Unit does not belong to this property")

        record = ServiceRequest(
            title=(dto.title or "").strip(),
            description=(dto.description or "").strip(),
            category=category.value,
            priority=priority.value,
            status=ServiceRequestStatus.SUBMITTED.value,
            photos=dto.photos or [],
            property_id=property_.id,
            unit_id=dto.unit_id or None,
            requested_by_id=principal.id,
        )
        session.add(record)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("Service request could not be created")
        session.refresh(record)

        snapshot = self._snapshot(record)
        audit.record(
            actor_user_id=principal.id,
            entity_type=RESOURCE,
            entity_id=record.id,
            action="service_request.created",
            before=None,
            after=snapshot,
            correlation_id=principal.correlation_id,
        )
        events.publish(
            "service_request.created",
            actor_user_id=principal.id,
            payload={"service_request_id": record.id, "property_id": record.property_id, "category": record.category},
            correlation_id=principal.correlation_id,
        )
        logger.info(
            "service_request.created",
            extra={"service_request_id": record.id, "user_id": principal.id, "role": principal.role.value},
        )

        result = ServiceRequestRead.model_validate(record)
        intents = self._lifecycle().creation_intents(record, principal, session.get(User, principal.id), property_)
        self._dispatcher().dispatch(session, intents)
        return result

    def update_service_request(
        self,
        session: Session,
        principal: Principal,
        service_request_id: str,
        dto: ServiceRequestUpdate,
    ) -> ServiceRequestRead:
        lifecycle = self._lifecycle()
        record = self._load_visible(session, principal, service_request_id, action="update")
        lifecycle.ensure_mutable(record)

        changes = dto.changes()
        self.field_policy.validate_write(principal, record, dto.requested_fields())
        if "status" in changes:
            lifecycle.check_transition(record, str(changes["status"]))

        before: dict[str, Any] = {}
        after: dict[str, Any] = {}
        for name in PLAIN_UPDATE_FIELDS:
            if name in changes and getattr(record, name) != changes[name]:
                before[name] = getattr(record, name)
                after[name] = changes[name]
                setattr(record, name, changes[name])

        if "review_notes" in changes:
            previous_notes = record.review_notes
            if lifecycle.apply_review_notes(record, changes["review_notes"]):
                before["review_notes"] = previous_notes
                after["review_notes"] = record.review_notes

        intents = []
        if "status" in changes:
            previous_status = record.status
            intents = lifecycle.apply_status(record, str(changes["status"]), principal)
            if intents:
                before["status"] = previous_status
                after["status"] = record.status

        if not after:
            return ServiceRequestRead.model_validate(record)

        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("Service request was modified concurrently")
        session.refresh(record)

        audit.record(
            actor_user_id=principal.id,
            entity_type=RESOURCE,
            entity_id=record.id,
            action="service_request.updated",
            before=before,
            after=after,
            correlation_id=principal.correlation_id,
        )
        events.publish(
            "service_request.updated",
            actor_user_id=principal.id,
            payload={"service_request_id": record.id, "changed_fields": sorted(after)},
            correlation_id=principal.correlation_id,
        )
        logger.info(
            "service_request.updated",
            extra={"service_request_id": record.id, "user_id": principal.id, "role": principal.role.value},
        )

        result = ServiceRequestRead.model_validate(record)
        self._dispatcher().dispatch(session, intents)
        return result

    def convert_to_job(
        self,
        session: Session,
        principal: Principal,
        service_request_id: str,
        dto: ConvertToJobRequest,
    ) -> ConversionResult:
        lifecycle = self._lifecycle()
        with tracer.start_as_current_span("service_request.convert_to_job") as span:
            span.set_attribute("service_request.id", service_request_id)
            span.set_attribute("user.id", principal.id)

            record = self._load_visible(session, principal, service_request_id, action="convert")
            previous_status = record.status
            try:
                seed = lifecycle.plan_conversion(record, principal, ConversionRequest(**dto.model_dump()))
            except ConflictError:
                observe_conversion("conflict")
                raise
            if seed.assigned_to_id and session.get(User, seed.assigned_to_id) is None:
                raise NotFoundError("Assigned user not found")

            try:
                if not self.repository.mark_converted(session, record.id, lifecycle.conversion_values(seed)):
                    raise ConflictError("Service request already converted to job")
                job = seed.build()
                session.add(job)
                session.commit()
            except IntegrityError:
                session.rollback()
                observe_conversion("conflict")
                span.set_attribute("conversion.result", "conflict")
                raise ConflictError("Service request already converted to job") from None
            except ConflictError:
                session.rollback()
                observe_conversion("conflict")
                span.set_attribute("conversion.result", "conflict")
                raise

            session.refresh(record)
            session.refresh(job)
            observe_conversion("converted")
            span.set_attribute("conversion.result", "converted")
            span.set_attribute("job.id", job.id)

        audit.record(
            actor_user_id=principal.id,
            entity_type=RESOURCE,
            entity_id=record.id,
            action="service_request.converted",
            before={"status": previous_status},
            after={"status": record.status, "job_id": job.id},
            correlation_id=principal.correlation_id,
        )
        events.publish(
            "service_request.converted",
            actor_user_id=principal.id,
            payload={"service_request_id": record.id, "job_id": job.id, "assigned_to_id": job.assigned_to_id},
            correlation_id=principal.correlation_id,
        )
        logger.info(
            "service_request.converted",
            extra={"service_request_id": record.id, "job_id": job.id, "user_id": principal.id},
        )

        result = ConversionResult(
            job=JobRead.model_validate(job),
            service_request=ServiceRequestRead.model_validate(record),
        )
        property_name = record.property.name if record.property is not None else ""
        self._dispatcher().dispatch(session, lifecycle.conversion_intents(record, job, property_name))
        return result

    def delete_service_request(self, session: Session, principal: Principal, service_request_id: str) -> DeleteAck:
        record = self._load_visible(session, principal, service_request_id, action="delete")
        self._lifecycle().check_deletion(
            record,
            principal,
            has_linked_job=self.repository.has_linked_job(session, record.id),
        )

        snapshot = self._snapshot(record)
        session.delete(record)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("Cannot delete service request that has been converted to a job", status_code=400)

        audit.record(
            actor_user_id=principal.id,
            entity_type=RESOURCE,
            entity_id=service_request_id,
            action="service_request.deleted",
            before=snapshot,
            after=None,
            correlation_id=principal.correlation_id,
        )
        events.publish(
            "service_request.deleted",
            actor_user_id=principal.id,
            payload={"service_request_id": service_request_id},
            correlation_id=principal.correlation_id,
        )
        logger.info("service_request.deleted", extra={"service_request_id": service_request_id, "user_id": principal.id})
        return DeleteAck(message="Service request deleted successfully")

    @staticmethod
    def _ensure_active_tenancy(session: Session, principal: Principal, property_: Property, unit_id: str) -> None:
        tenancy = session.scalar(
            select(UnitTenant)
            .join(Unit, Unit.id == UnitTenant.unit_id)
            .where(
                UnitTenant.unit_id == unit_id,
                UnitTenant.tenant_id == principal.id,
                UnitTenant.is_active.is_(True),
                Unit.property_id == property_.id,
            )
        )
        if tenancy is None:
            raise AuthorizationError("You do not have access to this unit")

    @staticmethod
    def _unit_property_id(session: Session, unit_id: str) -> str | None:
        unit = session.get(Unit, unit_id)
        return unit.property_id if unit is not None else None

    @staticmethod
    def _snapshot(record: ServiceRequest) -> dict[str, Any]:
        return {
            "title": record.title,
            "category": record.category,
            "priority": record.priority,
            "status": record.status,
            "property_id": record.property_id,
            "unit_id": record.unit_id,
            "requested_by_id": record.requested_by_id,
        }


service_request_service = ServiceRequestService()
