from proptrack.accounts.models import User
from proptrack.jobs.models import Job
from proptrack.notifications.models import Notification
from proptrack.properties.models import Property, PropertyOwner, Unit, UnitTenant
from proptrack.service_requests.models import ServiceRequest

__all__ = [
    "User",
    "Property",
    "PropertyOwner",
    "Unit",
    "UnitTenant",
    "Job",
    "ServiceRequest",
    "Notification",
]
