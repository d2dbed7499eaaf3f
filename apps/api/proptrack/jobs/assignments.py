from __future__ import annotations

from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from proptrack.jobs.models import CLOSED_JOB_STATUSES, Job


class JobAssignments(Protocol):
    """Read-only view of which properties a technician currently works on."""

    def property_ids_for_technician(self, technician_id: str) -> frozenset[str]:
        ...


class SqlJobAssignments:
    def __init__(self, session: Session, *, include_closed_jobs: bool = True) -> None:
        self._session = session
        self._include_closed_jobs = include_closed_jobs

    def property_ids_for_technician(self, technician_id: str) -> frozenset[str]:
        stmt = select(Job.property_id).where(Job.assigned_to_id == technician_id).distinct()
        if not self._include_closed_jobs:
            stmt = stmt.where(Job.status.not_in([status.value for status in CLOSED_JOB_STATUSES]))
        return frozenset(property_id for property_id in self._session.scalars(stmt) if property_id)
