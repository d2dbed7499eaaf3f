from __future__ import annotations

from typing import Any

from sqlalchemy import case, exists, func, select, update
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.sql import Select

from proptrack.jobs.models import Job
from proptrack.platform.security.predicates import Equals, Predicate, all_of
from proptrack.platform.security.rls import apply_scope_filter
from proptrack.service_requests.models import PRIORITY_RANK, ServiceRequest, ServiceRequestStatus
from proptrack.service_requests.schemas import ServiceRequestFilters

# Summaries rendered alongside every request.
READ_OPTIONS = (
    selectinload(ServiceRequest.property),
    selectinload(ServiceRequest.unit),
    selectinload(ServiceRequest.requested_by),
    selectinload(ServiceRequest.jobs),
)


def filter_predicate(filters: ServiceRequestFilters) -> Predicate:
    clauses: list[Predicate] = []
    if filters.status is not None:
        clauses.append(Equals("status", filters.status.value))
    if filters.category is not None:
        clauses.append(Equals("category", filters.category.value))
    if filters.priority is not None:
        clauses.append(Equals("priority", filters.priority.value))
    if filters.property_id is not None:
        clauses.append(Equals("property_id", filters.property_id))
    return all_of(*clauses)


class ServiceRequestRepository:
    resource = "service_request"

    def apply_scope_query(self, query: Select[Any], predicate: Predicate) -> Select[Any]:
        return apply_scope_filter(query, ServiceRequest, predicate)

    def get(self, session: Session, service_request_id: str) -> ServiceRequest | None:
        stmt = select(ServiceRequest).where(ServiceRequest.id == service_request_id).options(*READ_OPTIONS)
        return session.scalar(stmt)

    def list(
        self,
        session: Session,
        predicate: Predicate,
        filters: ServiceRequestFilters,
        *,
        limit: int,
        offset: int,
    ) -> tuple[list[ServiceRequest], int]:
        stmt: Select[tuple[ServiceRequest]] = self.apply_scope_query(
            select(ServiceRequest),
            all_of(predicate, filter_predicate(filters)),
        )
        total = session.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0

        priority_rank = case(PRIORITY_RANK, value=ServiceRequest.priority, else_=-1)
        rows = session.scalars(
            stmt.options(*READ_OPTIONS)
            .order_by(priority_rank.desc(), ServiceRequest.created_at.desc(), ServiceRequest.id.asc())
            .limit(limit)
            .offset(offset)
        ).all()
        return list(rows), int(total)

    def has_linked_job(self, session: Session, service_request_id: str) -> bool:
        return bool(session.scalar(select(exists().where(Job.service_request_id == service_request_id))))

    def mark_converted(self, session: Session, service_request_id: str, values: dict[str, Any]) -> bool:
        """Compare-and-set the request into CONVERTED_TO_JOB.

        Returns False when another transaction converted it first.
        """

        result = session.execute(
            update(ServiceRequest)
            .where(
                ServiceRequest.id == service_request_id,
                ServiceRequest.status != ServiceRequestStatus.CONVERTED_TO_JOB.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
