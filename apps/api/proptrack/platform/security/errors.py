from __future__ import annotations

from proptrack.core.errors import ForbiddenError


class AuthorizationError(ForbiddenError):
    """Raised when a principal falls outside the scope of a record or operation."""


class ForbiddenFieldError(AuthorizationError):
    """Raised when a write payload contains fields the principal may not edit."""

    def __init__(self, resource: str, fields: list[str], allowed: frozenset[str], message: str | None = None) -> None:
        self.resource = resource
        self.fields = sorted(set(fields))
        self.allowed = allowed
        super().__init__(
            message or f"Forbidden fields for resource '{resource}': {', '.join(self.fields)}",
            details={"denied_fields": self.fields, "allowed_fields": sorted(allowed)},
        )
