from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from proptrack.context import get_correlation_id
from proptrack.core.auth import AuthUser, get_current_user
from proptrack.core.database import get_db
from proptrack.platform.security.context import Principal, Role
from proptrack.service_requests.models import (
    ServiceRequestCategory,
    ServiceRequestPriority,
    ServiceRequestStatus,
)
from proptrack.service_requests.schemas import (
    ConversionResult,
    ConvertToJobRequest,
    DeleteAck,
    ServiceRequestCreate,
    ServiceRequestFilters,
    ServiceRequestRead,
    ServiceRequestUpdate,
)
from proptrack.service_requests.service import service_request_service


router = APIRouter(prefix="/api/service-requests", tags=["service-requests"])

TOTAL_COUNT_HEADER = "X-Total-Count"
PAGE_HEADER = "X-Page"
HAS_MORE_HEADER = "X-Has-More"


def get_principal(request: Request, auth_user: AuthUser = Depends(get_current_user)) -> Principal:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    return Principal(id=auth_user.sub, role=Role.parse(auth_user.role), correlation_id=correlation_id)


@router.get("", response_model=list[ServiceRequestRead])
def list_service_requests(
    response: Response,
    status_filter: ServiceRequestStatus | None = Query(default=None, alias="status"),
    category: ServiceRequestCategory | None = Query(default=None),
    priority: ServiceRequestPriority | None = Query(default=None),
    property_id: str | None = Query(default=None),
    limit: int | None = Query(default=None),
    offset: int = Query(default=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> list[ServiceRequestRead]:
    filters = ServiceRequestFilters(
        status=status_filter,
        category=category,
        priority=priority,
        property_id=property_id,
    )
    page = service_request_service.list_service_requests(db, principal, filters, limit=limit, offset=offset)
    response.headers[TOTAL_COUNT_HEADER] = str(page.total)
    response.headers[PAGE_HEADER] = str(page.page)
    response.headers[HAS_MORE_HEADER] = "true" if page.has_more else "false"
    return page.items


@router.get("/{service_request_id}", response_model=ServiceRequestRead)
def get_service_request(
    service_request_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> ServiceRequestRead:
    return service_request_service.get_service_request(db, principal, service_request_id)


@router.post("", response_model=ServiceRequestRead, status_code=status.HTTP_201_CREATED)
def create_service_request(
    payload: ServiceRequestCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> ServiceRequestRead:
    return service_request_service.create_service_request(db, principal, payload)


@router.patch("/{service_request_id}", response_model=ServiceRequestRead)
def update_service_request(
    service_request_id: str,
    payload: ServiceRequestUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> ServiceRequestRead:
    return service_request_service.update_service_request(db, principal, service_request_id, payload)


@router.post("/{service_request_id}/convert-to-job", response_model=ConversionResult)
def convert_to_job(
    service_request_id: str,
    payload: ConvertToJobRequest | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> ConversionResult:
    return service_request_service.convert_to_job(db, principal, service_request_id, payload or ConvertToJobRequest())


@router.delete("/{service_request_id}", response_model=DeleteAck)
def delete_service_request(
    service_request_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> DeleteAck:
    return service_request_service.delete_service_request(db, principal, service_request_id)
