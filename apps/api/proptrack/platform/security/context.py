from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class Role(StrEnum):
    PROPERTY_MANAGER = "PROPERTY_MANAGER"
    OWNER = "OWNER"
    TENANT = "TENANT"
    TECHNICIAN = "TECHNICIAN"

    @classmethod
    def parse(cls, value: str | None) -> Role | None:
        if value is None:
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated actor passed explicitly into every policy and lifecycle call.

    ``role`` is ``None`` when the identity provider issued a role this service
    does not recognise; every gate treats such a principal as having no access.
    """

    id: str
    role: Role | None
    correlation_id: str | None = None
