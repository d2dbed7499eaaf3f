from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from proptrack.service_requests.models import (
    ServiceRequestCategory,
    ServiceRequestPriority,
    ServiceRequestStatus,
)


class ServiceRequestCreate(BaseModel):
    # Required-field and enum checks run in the service so that the role gate
    # is evaluated first and the messages stay stable.
    title: str | None = None
    description: str | None = None
    category: str | None = None
    priority: str | None = None
    property_id: str | None = None
    unit_id: str | None = None
    photos: list[str] | None = None


class ServiceRequestUpdate(BaseModel):
    # Keys outside the declared fields are kept so the field policy can deny
    # them (requested_by_id, property_id, ...) instead of the body parser.
    model_config = ConfigDict(extra="allow")

    title: str | None = None
    description: str | None = None
    priority: ServiceRequestPriority | None = None
    status: ServiceRequestStatus | None = None
    review_notes: str | None = None

    @field_validator("title", "description")
    @classmethod
    def _strip_text(cls, value: str | None, info: ValidationInfo) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        if not stripped:
            raise ValueError(f"{info.field_name} cannot be blank")
        return stripped

    @model_validator(mode="after")
    def _reject_null_required(self) -> "ServiceRequestUpdate":
        for name in ("title", "description", "priority", "status"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def requested_fields(self) -> list[str]:
        declared = [name for name in type(self).model_fields if name in self.model_fields_set]
        return [*declared, *(self.model_extra or {})]

    def changes(self) -> dict[str, object]:
        """Declared fields the caller actually sent; unknown keys are never applied."""

        declared = type(self).model_fields
        return {
            name: value
            for name, value in self.model_dump(mode="json", exclude_unset=True).items()
            if name in declared
        }


class ServiceRequestFilters(BaseModel):
    status: ServiceRequestStatus | None = None
    category: ServiceRequestCategory | None = None
    priority: ServiceRequestPriority | None = None
    property_id: str | None = None


class ConvertToJobRequest(BaseModel):
    assigned_to_id: str | None = None
    scheduled_date: datetime | None = None
    estimated_cost: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class JobSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    status: str
    assigned_to_id: str | None


class JobRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str | None
    status: str
    priority: str
    property_id: str
    unit_id: str | None
    service_request_id: str | None
    assigned_to_id: str | None
    scheduled_date: datetime | None
    estimated_cost: Decimal | None
    notes: str | None
    created_at: datetime


class PropertySummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    address: str | None


class UnitSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    unit_number: str


class RequesterSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    first_name: str
    last_name: str
    email: str


class ServiceRequestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str
    category: str
    priority: str
    status: str
    photos: list[str] | None
    property_id: str
    unit_id: str | None
    requested_by_id: str
    review_notes: str | None
    reviewed_at: datetime | None
    created_at: datetime
    updated_at: datetime
    property: PropertySummary | None = None
    unit: UnitSummary | None = None
    requested_by: RequesterSummary | None = None
    jobs: list[JobSummary] = Field(default_factory=list)


class ServiceRequestPage(BaseModel):
    items: list[ServiceRequestRead]
    total: int
    page: int
    has_more: bool


class ConversionResult(BaseModel):
    job: JobRead
    service_request: ServiceRequestRead


class DeleteAck(BaseModel):
    message: str
