from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from proptrack.accounts.models import User
from proptrack.core.database import Base, new_id, utcnow
from proptrack.jobs.models import Job
from proptrack.properties.models import Property, Unit


class ServiceRequestStatus(StrEnum):
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CONVERTED_TO_JOB = "CONVERTED_TO_JOB"
    COMPLETED = "COMPLETED"


class ServiceRequestPriority(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class ServiceRequestCategory(StrEnum):
    PLUMBING = "PLUMBING"
    ELECTRICAL = "ELECTRICAL"
    HVAC = "HVAC"
    APPLIANCE = "APPLIANCE"
    STRUCTURAL = "STRUCTURAL"
    PEST_CONTROL = "PEST_CONTROL"
    LANDSCAPING = "LANDSCAPING"
    GENERAL = "GENERAL"
    OTHER = "OTHER"


# Declaration order is the sort order: LOW ranks lowest.
PRIORITY_RANK = {priority.value: rank for rank, priority in enumerate(ServiceRequestPriority)}


class ServiceRequest(Base):
    __tablename__ = "service_requests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default=ServiceRequestPriority.MEDIUM.value)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=ServiceRequestStatus.SUBMITTED.value)
    photos: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    property_id: Mapped[str] = mapped_column(String(64), ForeignKey("properties.id"), nullable=False)
    unit_id: Mapped[str | None] = mapped_column(String(64), ForeignKey("units.id"), nullable=True)
    requested_by_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    property: Mapped[Property] = relationship("Property")
    unit: Mapped[Unit | None] = relationship("Unit")
    requested_by: Mapped[User] = relationship("User")
    jobs: Mapped[list[Job]] = relationship("Job", back_populates="service_request")

    __table_args__ = (
        Index("ix_service_requests_property_status", "property_id", "status"),
        Index("ix_service_requests_requester", "requested_by_id"),
    )
