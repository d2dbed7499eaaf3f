from __future__ import annotations

from collections.abc import Iterable

from proptrack import audit
from proptrack.metrics import observe_field_denials
from proptrack.platform.security.context import Principal
from proptrack.platform.security.errors import ForbiddenFieldError


def validate_field_write(
    resource: str,
    fields: Iterable[str],
    allowed: frozenset[str],
    principal: Principal,
    *,
    record_id: str,
    message: str | None = None,
) -> None:
    """Reject the whole write when any requested field is outside ``allowed``.

    Runs before a single field is applied, so a rejected payload never leaves
    a partially updated record behind.
    """

    requested = list(fields)
    denied_fields = [field_name for field_name in requested if field_name not in allowed]
    if not denied_fields:
        return

    role = principal.role.value if principal.role is not None else "unknown"
    observe_field_denials(resource=resource, role=role, denied_count=len(denied_fields))
    audit.record(
        actor_user_id=principal.id,
        entity_type="security.fls",
        entity_id=record_id,
        action="fls.write",
        before=None,
        after={
            "resource": resource,
            "role": role,
            "requested_fields": sorted(requested),
            "allowed_fields": sorted(allowed),
            "denied_fields": sorted(denied_fields),
        },
        correlation_id=principal.correlation_id,
    )
    raise ForbiddenFieldError(resource=resource, fields=denied_fields, allowed=allowed, message=message)
