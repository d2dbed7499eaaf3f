"""Who may see and who may write service requests.

Both gates branch exhaustively over :class:`Role`; a new role fails type
checking here until it is given a scope and a field grant.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import assert_never

from proptrack.jobs.assignments import JobAssignments
from proptrack.platform.security.context import Principal, Role
from proptrack.platform.security.errors import AuthorizationError
from proptrack.platform.security.fls import validate_field_write
from proptrack.platform.security.predicates import NOTHING, AnyOf, Equals, Predicate, one_of
from proptrack.properties.models import Property
from proptrack.service_requests.models import ServiceRequest, ServiceRequestStatus

RESOURCE = "service_request"

# Display order for permission messages.
WRITABLE_FIELDS = ("status", "priority", "title", "description", "review_notes")

MANAGER_FIELDS = frozenset(WRITABLE_FIELDS)
OWNER_FIELDS = frozenset({"status", "priority", "review_notes"})
TENANT_FIELDS = frozenset({"title", "description"})
NO_FIELDS: frozenset[str] = frozenset()


def manages_property(principal: Principal, property_: Property | None) -> bool:
    return principal.role is Role.PROPERTY_MANAGER and property_ is not None and property_.manager_id == principal.id


def owns_property(principal: Principal, property_: Property | None) -> bool:
    if principal.role is not Role.OWNER or property_ is None:
        return False
    return any(owner.owner_id == principal.id for owner in property_.owners)


def is_requester(principal: Principal, record: ServiceRequest) -> bool:
    return record.requested_by_id == principal.id


class AccessScopeResolver:
    def __init__(self, assignments: JobAssignments) -> None:
        self._assignments = assignments

    def scope_for(self, principal: Principal) -> Predicate:
        role = principal.role
        if role is None:
            return NOTHING
        if role is Role.PROPERTY_MANAGER:
            return Equals("property.manager_id", principal.id)
        if role is Role.OWNER:
            return AnyOf("property.owners", Equals("owner_id", principal.id))
        if role is Role.TENANT:
            return Equals("requested_by_id", principal.id)
        if role is Role.TECHNICIAN:
            return one_of("property_id", self._assignments.property_ids_for_technician(principal.id))
        assert_never(role)


@dataclass(frozen=True, slots=True)
class FieldGrant:
    fields: frozenset[str]
    denial_message: str = "You do not have access to update this service request"


class FieldPermissionPolicy:
    def grant_for(self, principal: Principal, record: ServiceRequest) -> FieldGrant:
        if record.status == ServiceRequestStatus.CONVERTED_TO_JOB:
            return FieldGrant(NO_FIELDS, "Service request has been converted to a job and can no longer be modified")

        role = principal.role
        if role is None:
            return FieldGrant(NO_FIELDS)
        if role is Role.PROPERTY_MANAGER:
            return FieldGrant(MANAGER_FIELDS if manages_property(principal, record.property) else NO_FIELDS)
        if role is Role.OWNER:
            return FieldGrant(OWNER_FIELDS if owns_property(principal, record.property) else NO_FIELDS)
        if role is Role.TENANT:
            if not is_requester(principal, record):
                return FieldGrant(NO_FIELDS)
            if record.status != ServiceRequestStatus.SUBMITTED:
                return FieldGrant(NO_FIELDS, "You can only update service requests that are still in submitted status")
            return FieldGrant(TENANT_FIELDS)
        if role is Role.TECHNICIAN:
            return FieldGrant(NO_FIELDS, "Technicians cannot update service requests directly")
        assert_never(role)

    def allowed_write_fields(self, principal: Principal, record: ServiceRequest) -> frozenset[str]:
        return self.grant_for(principal, record).fields

    def validate_write(self, principal: Principal, record: ServiceRequest, fields: Iterable[str]) -> None:
        grant = self.grant_for(principal, record)
        if not grant.fields:
            raise AuthorizationError(grant.denial_message)

        allowed_display = ", ".join(name for name in WRITABLE_FIELDS if name in grant.fields)
        validate_field_write(
            RESOURCE,
            fields,
            grant.fields,
            principal,
            record_id=record.id,
            message=f"You can only update the following fields: {allowed_display}",
        )
