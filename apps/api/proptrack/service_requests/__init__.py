from proptrack.notifications.intents import NotificationIntent
from proptrack.service_requests.api import router
from proptrack.service_requests.lifecycle import RequestLifecycle
from proptrack.service_requests.models import (
    ServiceRequest,
    ServiceRequestCategory,
    ServiceRequestPriority,
    ServiceRequestStatus,
)
from proptrack.service_requests.policy import AccessScopeResolver, FieldPermissionPolicy
from proptrack.service_requests.service import ServiceRequestService, service_request_service

__all__ = [
    "router",
    "ServiceRequest",
    "ServiceRequestStatus",
    "ServiceRequestPriority",
    "ServiceRequestCategory",
    "AccessScopeResolver",
    "FieldPermissionPolicy",
    "RequestLifecycle",
    "NotificationIntent",
    "ServiceRequestService",
    "service_request_service",
]
