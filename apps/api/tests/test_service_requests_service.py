from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from proptrack import audit, events
from proptrack.core.config import get_settings
from proptrack.core.database import Base
from proptrack.core.errors import ConflictError, NotFoundError, ValidationError
from proptrack.models import Job, Notification, Property, PropertyOwner, ServiceRequest, Unit, UnitTenant, User
from proptrack.notifications.dispatcher import NotificationDispatcher
from proptrack.platform.security.context import Principal, Role
from proptrack.platform.security.errors import AuthorizationError, ForbiddenFieldError
from proptrack.service_requests.lifecycle import RequestLifecycle
from proptrack.service_requests.schemas import (
    ConvertToJobRequest,
    ServiceRequestCreate,
    ServiceRequestFilters,
    ServiceRequestUpdate,
)
from proptrack.service_requests.service import ServiceRequestService

MANAGER = Principal(id="mgr-1", role=Role.PROPERTY_MANAGER, correlation_id="corr-svc-1")
OTHER_MANAGER = Principal(id="mgr-2", role=Role.PROPERTY_MANAGER)
OWNER = Principal(id="owner-1", role=Role.OWNER)
TENANT = Principal(id="tenant-1", role=Role.TENANT)
FORMER_TENANT = Principal(id="tenant-2", role=Role.TENANT)
TECHNICIAN = Principal(id="tech-1", role=Role.TECHNICIAN)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()


@pytest.fixture()
def service() -> ServiceRequestService:
    return ServiceRequestService(
        lifecycle=RequestLifecycle(strict_transitions=True),
        dispatcher=NotificationDispatcher(async_delivery=False),
    )


def _seed(session: Session) -> None:
    session.add_all(
        [
            User(id="mgr-1", email="mgr1@example.com", first_name="Mona", last_name="Manager", role="PROPERTY_MANAGER"),
            User(id="mgr-2", email="mgr2@example.com", role="PROPERTY_MANAGER"),
            User(id="owner-1", email="owner1@example.com", role="OWNER"),
            User(id="tenant-1", email="tenant1@example.com", first_name="Tina", last_name="Tenant", role="TENANT"),
            User(id="tenant-2", email="tenant2@example.com", role="TENANT"),
            User(id="tech-1", email="tech1@example.com", role="TECHNICIAN"),
        ]
    )
    session.add_all(
        [
            Property(id="prop-1", name="Maple Court", manager_id="mgr-1"),
            Property(id="prop-2", name="Birch House", manager_id="mgr-2"),
        ]
    )
    session.add(PropertyOwner(property_id="prop-1", owner_id="owner-1"))
    session.add_all(
        [
            Unit(id="unit-1", property_id="prop-1", unit_number="1A"),
            Unit(id="unit-2", property_id="prop-2", unit_number="2B"),
        ]
    )
    session.add_all(
        [
            UnitTenant(unit_id="unit-1", tenant_id="tenant-1", is_active=True),
            UnitTenant(unit_id="unit-1", tenant_id="tenant-2", is_active=False),
        ]
    )
    session.commit()


def _create(service: ServiceRequestService, session: Session, **overrides: object) -> str:
    payload = {
        "title": "Leaking tap",
        "description": "Bathroom tap drips all night",
        "category": "PLUMBING",
        "property_id": "prop-1",
        "unit_id": "unit-1",
    }
    payload.update(overrides)
    return service.create_service_request(session, TENANT, ServiceRequestCreate(**payload)).id


def _count(session: Session, model: type) -> int:
    return session.scalar(select(func.count()).select_from(model)) or 0


def test_tenant_create_requires_unit(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)

    with pytest.raises(ValidationError) as exc_info:
        service.create_service_request(
            db_session,
            TENANT,
            ServiceRequestCreate(title="Leak", description="Drip", category="PLUMBING", property_id="prop-1"),
        )

    assert exc_info.value.message == "Unit ID is required for tenants"
    assert exc_info.value.status_code == 400


def test_inactive_tenancy_cannot_create(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)

    with pytest.raises(AuthorizationError) as exc_info:
        service.create_service_request(
            db_session,
            FORMER_TENANT,
            ServiceRequestCreate(
                title="Leak",
                description="Drip",
                category="PLUMBING",
                property_id="prop-1",
                unit_id="unit-1",
            ),
        )

    assert exc_info.value.message == "You do not have access to this unit"
    assert _count(db_session, ServiceRequest) == 0


def test_tenant_unit_must_belong_to_property(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)

    with pytest.raises(AuthorizationError):
        _create(service, db_session, property_id="prop-2", unit_id="unit-1")


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"title": "Leak", "description": "Drip", "category": "PLUMBING", "property_id": "prop-1"},
        {"title": "x", "description": "y", "category": "NOT_A_CATEGORY", "property_id": "missing"},
    ],
)
def test_technician_cannot_create_regardless_of_payload(
    service: ServiceRequestService,
    db_session: Session,
    payload: dict[str, str],
) -> None:
    _seed(db_session)

    with pytest.raises(AuthorizationError) as exc_info:
        service.create_service_request(db_session, TECHNICIAN, ServiceRequestCreate(**payload))

    assert exc_info.value.message == "Technicians cannot create service requests"


def test_owner_cannot_create(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)

    with pytest.raises(AuthorizationError) as exc_info:
        service.create_service_request(db_session, OWNER, ServiceRequestCreate())

    assert exc_info.value.message == "Only tenants and managers can create service requests"


def test_create_validation_order(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)

    with pytest.raises(ValidationError) as missing:
        service.create_service_request(db_session, TENANT, ServiceRequestCreate(title="Leak", category="PLUMBING"))
    assert missing.value.message == "Missing required fields: title, description, category, property_id"
    assert missing.value.details == {"missing_fields": ["description", "property_id"]}

    with pytest.raises(ValidationError):
        _create(service, db_session, category="ROOFING")
    with pytest.raises(ValidationError):
        _create(service, db_session, priority="CRITICAL")

    with pytest.raises(NotFoundError) as not_found:
        _create(service, db_session, property_id="prop-404")
    assert not_found.value.message == "Property not found"


def test_tenant_create_defaults_and_notifies_manager(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)

    created = service.create_service_request(
        db_session,
        TENANT,
        ServiceRequestCreate(
            title="Leaking tap",
            description="Bathroom tap drips",
            category="plumbing",
            property_id="prop-1",
            unit_id="unit-1",
        ),
    )

    assert created.status == "SUBMITTED"
    assert created.priority == "MEDIUM"
    assert created.category == "PLUMBING"
    assert created.requested_by_id == "tenant-1"
    assert created.jobs == []

    notification = db_session.scalar(select(Notification).where(Notification.user_id == "mgr-1"))
    assert notification is not None
    assert notification.status == "Queued"
    assert notification.title == "New Service Request"
    assert notification.message == "Tina Tenant submitted a PLUMBING request at Maple Court"
    assert [event["event_type"] for event in events.published_events] == ["service_request.created"]


def test_manager_create_requires_managed_property(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)

    created = service.create_service_request(
        db_session,
        MANAGER,
        ServiceRequestCreate(title="Gutters", description="Clean", category="GENERAL", property_id="prop-1"),
    )
    assert created.unit_id is None
    assert _count(db_session, Notification) == 0

    with pytest.raises(AuthorizationError) as exc_info:
        service.create_service_request(
            db_session,
            MANAGER,
            ServiceRequestCreate(title="Gutters", description="Clean", category="GENERAL", property_id="prop-2"),
        )
    assert exc_info.value.message == "Access denied"


def test_tenant_updates_title_but_not_status(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)
    request_id = _create(service, db_session)

    updated = service.update_service_request(db_session, TENANT, request_id, ServiceRequestUpdate(title="x"))
    assert updated.title == "x"

    with pytest.raises(ForbiddenFieldError):
        service.update_service_request(db_session, TENANT, request_id, ServiceRequestUpdate(status="APPROVED"))

    db_session.expire_all()
    record = db_session.get(ServiceRequest, request_id)
    assert record is not None
    assert record.status == "SUBMITTED"
    assert record.title == "x"


def test_rejected_write_leaves_record_untouched(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)
    request_id = _create(service, db_session)

    with pytest.raises(ForbiddenFieldError):
        service.update_service_request(
            db_session,
            OWNER,
            request_id,
            ServiceRequestUpdate(priority="URGENT", title="Owner rename"),
        )

    db_session.expire_all()
    record = db_session.get(ServiceRequest, request_id)
    assert record is not None
    assert (record.priority, record.title) == ("MEDIUM", "Leaking tap")


def test_repeated_identical_update_is_idempotent(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)
    request_id = _create(service, db_session)
    payload = ServiceRequestUpdate(status="UNDER_REVIEW", priority="HIGH", review_notes="Plumber booked")

    first = service.update_service_request(db_session, MANAGER, request_id, payload)
    notifications_after_first = _count(db_session, Notification)
    second = service.update_service_request(db_session, MANAGER, request_id, payload)

    assert second == first
    assert second.status == "UNDER_REVIEW"
    assert second.reviewed_at is not None
    assert _count(db_session, Notification) == notifications_after_first
    updates = audit.entries_for("service_request", request_id)
    assert [entry["action"] for entry in updates] == ["service_request.created", "service_request.updated"]


def test_status_change_notifies_requester(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)
    request_id = _create(service, db_session)

    service.update_service_request(db_session, OWNER, request_id, ServiceRequestUpdate(status="APPROVED"))

    notification = db_session.scalar(select(Notification).where(Notification.user_id == "tenant-1"))
    assert notification is not None
    assert notification.type == "SERVICE_REQUEST_UPDATE"
    assert notification.message == 'Your service request has been approved and will be addressed soon: "Leaking tap"'
    assert (notification.entity_type, notification.entity_id) == ("service_request", request_id)


def test_invalid_transition_is_conflict(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)
    request_id = _create(service, db_session)
    service.update_service_request(db_session, MANAGER, request_id, ServiceRequestUpdate(status="REJECTED"))

    with pytest.raises(ConflictError) as exc_info:
        service.update_service_request(
            db_session,
            MANAGER,
            request_id,
            ServiceRequestUpdate(status="APPROVED", title="Reworded"),
        )

    assert exc_info.value.message == "Invalid status transition from REJECTED to APPROVED"
    db_session.expire_all()
    record = db_session.get(ServiceRequest, request_id)
    assert record is not None
    assert record.title == "Leaking tap"


def test_permissive_mode_allows_any_status(db_session: Session) -> None:
    _seed(db_session)
    service = ServiceRequestService(
        lifecycle=RequestLifecycle(strict_transitions=False),
        dispatcher=NotificationDispatcher(async_delivery=False),
    )
    request_id = _create(service, db_session)

    service.update_service_request(db_session, MANAGER, request_id, ServiceRequestUpdate(status="COMPLETED"))
    reopened = service.update_service_request(db_session, MANAGER, request_id, ServiceRequestUpdate(status="SUBMITTED"))

    assert reopened.status == "SUBMITTED"


def test_strict_mode_follows_settings(monkeypatch: pytest.MonkeyPatch, db_session: Session) -> None:
    monkeypatch.setenv("SERVICE_REQUEST_STRICT_TRANSITIONS", "false")
    get_settings.cache_clear()
    _seed(db_session)
    service = ServiceRequestService(dispatcher=NotificationDispatcher(async_delivery=False))
    request_id = _create(service, db_session)

    service.update_service_request(db_session, MANAGER, request_id, ServiceRequestUpdate(status="COMPLETED"))
    reopened = service.update_service_request(db_session, MANAGER, request_id, ServiceRequestUpdate(status="APPROVED"))

    assert reopened.status == "APPROVED"


def test_convert_to_job_creates_single_job(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)
    request_id = _create(service, db_session, priority="HIGH")

    result = service.convert_to_job(db_session, MANAGER, request_id, ConvertToJobRequest(assigned_to_id="tech-1"))

    assert result.job.status == "ASSIGNED"
    assert result.job.service_request_id == request_id
    assert result.job.priority == "HIGH"
    assert result.job.notes == f"Converted from service request #{request_id}"
    assert result.service_request.status == "CONVERTED_TO_JOB"
    assert result.service_request.review_notes == f"Converted to job #{result.job.id}"
    assert result.service_request.reviewed_at is not None
    assert [job.id for job in result.service_request.jobs] == [result.job.id]

    messages = {
        notification.user_id: notification
        for notification in db_session.scalars(select(Notification).where(Notification.entity_type == "job"))
    }
    assert messages["tenant-1"].title == "Service Request Converted to Job"
    assert messages["tech-1"].type == "JOB_ASSIGNED"
    assert messages["tech-1"].message == "You have been assigned to job: Leaking tap at Maple Court"


def test_convert_to_job_twice_keeps_one_job(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)
    request_id = _create(service, db_session)
    service.convert_to_job(db_session, MANAGER, request_id, ConvertToJobRequest())

    with pytest.raises(ConflictError) as exc_info:
        service.convert_to_job(db_session, MANAGER, request_id, ConvertToJobRequest())

    assert exc_info.value.status_code == 400
    assert exc_info.value.message == "Service request already converted to job"
    assert _count(db_session, Job) == 1


def test_concurrent_conversion_loses_compare_and_set(service: ServiceRequestService, tmp_path: Path) -> None:
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    try:
        with SessionLocal() as setup_session:
            _seed(setup_session)
            request_id = _create(service, setup_session)

        with SessionLocal() as first, SessionLocal() as second:
            stale = second.get(ServiceRequest, request_id)
            assert stale is not None and stale.status == "SUBMITTED"

            service.convert_to_job(first, MANAGER, request_id, ConvertToJobRequest())

            with pytest.raises(ConflictError) as exc_info:
                service.convert_to_job(second, MANAGER, request_id, ConvertToJobRequest())
            assert exc_info.value.status_code == 409

        with SessionLocal() as check:
            assert _count(check, Job) == 1
            record = check.get(ServiceRequest, request_id)
            assert record is not None and record.status == "CONVERTED_TO_JOB"
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def test_convert_to_job_checks(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)
    request_id = _create(service, db_session)

    with pytest.raises(AuthorizationError) as owner_error:
        service.convert_to_job(db_session, OWNER, request_id, ConvertToJobRequest())
    assert owner_error.value.message == "Only property managers can convert to jobs"

    with pytest.raises(AuthorizationError) as scope_error:
        service.convert_to_job(db_session, OTHER_MANAGER, request_id, ConvertToJobRequest())
    assert scope_error.value.message == "Access denied"

    with pytest.raises(NotFoundError) as assignee_error:
        service.convert_to_job(db_session, MANAGER, request_id, ConvertToJobRequest(assigned_to_id="ghost"))
    assert assignee_error.value.message == "Assigned user not found"
    assert _count(db_session, Job) == 0


def test_converted_request_is_frozen(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)
    request_id = _create(service, db_session)
    service.convert_to_job(db_session, MANAGER, request_id, ConvertToJobRequest())

    with pytest.raises(ConflictError):
        service.update_service_request(db_session, MANAGER, request_id, ServiceRequestUpdate(title="Renamed"))

    with pytest.raises(ConflictError) as exc_info:
        service.delete_service_request(db_session, MANAGER, request_id)
    assert exc_info.value.status_code == 400
    assert exc_info.value.message == "Cannot delete service request that has been converted to a job"
    assert _count(db_session, ServiceRequest) == 1


def test_delete_rules(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)
    withdrawn = _create(service, db_session)
    reviewed = _create(service, db_session, title="Broken window")
    service.update_service_request(db_session, MANAGER, reviewed, ServiceRequestUpdate(status="UNDER_REVIEW"))

    ack = service.delete_service_request(db_session, TENANT, withdrawn)
    assert ack.message == "Service request deleted successfully"

    with pytest.raises(AuthorizationError):
        service.delete_service_request(db_session, TENANT, reviewed)
    with pytest.raises(AuthorizationError):
        service.delete_service_request(db_session, OWNER, reviewed)

    service.delete_service_request(db_session, MANAGER, reviewed)
    assert _count(db_session, ServiceRequest) == 0
    assert [entry["action"] for entry in audit.entries_for("service_request", reviewed)][-1] == "service_request.deleted"


def test_get_is_scoped(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)
    request_id = _create(service, db_session)

    assert service.get_service_request(db_session, OWNER, request_id).id == request_id
    with pytest.raises(AuthorizationError):
        service.get_service_request(db_session, OTHER_MANAGER, request_id)
    with pytest.raises(AuthorizationError):
        service.get_service_request(db_session, TECHNICIAN, request_id)
    with pytest.raises(NotFoundError):
        service.get_service_request(db_session, MANAGER, "missing")


def test_technician_sees_requests_on_assigned_properties(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)
    first = _create(service, db_session)
    second = _create(service, db_session, title="Broken window")
    service.convert_to_job(db_session, MANAGER, first, ConvertToJobRequest(assigned_to_id="tech-1"))

    listing = service.list_service_requests(db_session, TECHNICIAN, ServiceRequestFilters())

    assert listing.total == 2
    assert {row.id for row in listing.items} == {first, second}
    assert service.get_service_request(db_session, TECHNICIAN, second).id == second


def test_list_orders_by_priority_then_newest(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)
    low = _create(service, db_session, title="Low", priority="LOW")
    urgent = _create(service, db_session, title="Urgent", priority="URGENT")
    medium_old = _create(service, db_session, title="Medium old")
    medium_new = _create(service, db_session, title="Medium new")
    high = _create(service, db_session, title="High", priority="HIGH")
    old = db_session.get(ServiceRequest, medium_old)
    assert old is not None
    new = db_session.get(ServiceRequest, medium_new)
    assert new is not None
    old.created_at = new.created_at.replace(year=new.created_at.year - 1)
    db_session.commit()

    listing = service.list_service_requests(db_session, MANAGER, ServiceRequestFilters())

    assert listing.total == 5
    assert [row.id for row in listing.items] == [urgent, high, medium_new, medium_old, low]
    assert listing.page == 1
    assert not listing.has_more

    second_page = service.list_service_requests(db_session, MANAGER, ServiceRequestFilters(), limit=2, offset=2)
    assert second_page.total == 5
    assert [row.id for row in second_page.items] == [medium_new, medium_old]
    assert second_page.page == 2
    assert second_page.has_more

    filtered = service.list_service_requests(
        db_session,
        MANAGER,
        ServiceRequestFilters(priority="URGENT"),
    )
    assert filtered.total == 1
    assert [row.id for row in filtered.items] == [urgent]


def test_list_clamps_page_size(service: ServiceRequestService, db_session: Session) -> None:
    _seed(db_session)
    for index in range(3):
        _create(service, db_session, title=f"Request {index}")

    listing = service.list_service_requests(db_session, TENANT, ServiceRequestFilters(), limit=0, offset=-5)
    assert listing.total == 3
    assert len(listing.items) == 1
    assert listing.page == 1
    assert listing.has_more

    listing = service.list_service_requests(db_session, TENANT, ServiceRequestFilters(), limit=1000)
    assert len(listing.items) == 3
    assert not listing.has_more


def test_notification_failure_does_not_fail_operation(db_session: Session) -> None:
    _seed(db_session)

    def broken_delivery(notification_id: str) -> None:
        raise RuntimeError("broker unavailable")

    service = ServiceRequestService(
        lifecycle=RequestLifecycle(strict_transitions=True),
        dispatcher=NotificationDispatcher(async_delivery=True, deliver=broken_delivery),
    )
    request_id = _create(service, db_session)

    updated = service.update_service_request(db_session, MANAGER, request_id, ServiceRequestUpdate(status="APPROVED"))

    assert updated.status == "APPROVED"
    db_session.expire_all()
    record = db_session.get(ServiceRequest, request_id)
    assert record is not None
    assert record.status == "APPROVED"
