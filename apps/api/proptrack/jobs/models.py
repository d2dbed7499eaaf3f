from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from proptrack.core.database import Base, new_id, utcnow
from proptrack.properties.models import Property

if TYPE_CHECKING:
    from proptrack.service_requests.models import ServiceRequest


class JobStatus(StrEnum):
    OPEN = "OPEN"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


CLOSED_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.CANCELLED})


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=JobStatus.OPEN.value)
    priority: Mapped[str] = mapped_column(String(16), nullable=False)
    property_id: Mapped[str] = mapped_column(String(64), ForeignKey("properties.id"), nullable=False)
    unit_id: Mapped[str | None] = mapped_column(String(64), ForeignKey("units.id"), nullable=True)
    service_request_id: Mapped[str | None] = mapped_column(
        String(64),
        ForeignKey("service_requests.id"),
        nullable=True,
        unique=True,
    )
    assigned_to_id: Mapped[str | None] = mapped_column(String(64), ForeignKey("users.id"), nullable=True)
    scheduled_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    estimated_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    property: Mapped[Property] = relationship("Property")
    service_request: Mapped[ServiceRequest | None] = relationship("ServiceRequest", back_populates="jobs")

    __table_args__ = (Index("ix_jobs_assignee", "assigned_to_id", "status"),)
