from __future__ import annotations

import logging
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from proptrack.core.auth import issue_token
from proptrack.core.config import get_settings
from proptrack.core.database import Base, get_db
from proptrack.main import app
from proptrack.models import Property, Unit, UnitTenant, User


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
def clear_settings() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    db_session.add_all(
        [
            User(id="mgr-1", email="mgr1@example.com", role="PROPERTY_MANAGER"),
            User(id="tenant-1", email="tenant1@example.com", role="TENANT"),
            Property(id="prop-1", name="Maple Court", manager_id="mgr-1"),
            Unit(id="unit-1", property_id="prop-1", unit_number="1A"),
            UnitTenant(unit_id="unit-1", tenant_id="tenant-1", is_active=True),
        ]
    )
    db_session.commit()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


MANAGER = {"Authorization": f"Bearer {issue_token('mgr-1', 'PROPERTY_MANAGER')}"}
TENANT = {"Authorization": f"Bearer {issue_token('tenant-1', 'TENANT')}"}


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.get("/api/service-requests/sr-missing", headers={**MANAGER, "X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [
        record for record in caplog.records if record.name == "proptrack.request" and record.getMessage() == "http.request"
    ]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/service-requests/{id}"
        and getattr(record, "status_code", None) == 404
        and getattr(record, "user_id", None) == "mgr-1"
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_logs_include_transition_context(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    created = client.post(
        "/api/service-requests",
        json={
            "title": "No hot water",
            "description": "Boiler is off",
            "category": "HVAC",
            "property_id": "prop-1",
            "unit_id": "unit-1",
        },
        headers=TENANT,
    )
    assert created.status_code == 201
    service_request_id = created.json()["id"]

    response = client.patch(
        f"/api/service-requests/{service_request_id}",
        json={"status": "APPROVED"},
        headers={**MANAGER, "X-Correlation-Id": "log-transition-1"},
    )
    assert response.status_code == 200

    transitions = [record for record in caplog.records if record.getMessage() == "service_request.status_changed"]
    assert any(
        getattr(record, "service_request_id", None) == service_request_id
        and getattr(record, "from_status", None) == "SUBMITTED"
        and getattr(record, "to_status", None) == "APPROVED"
        and getattr(record, "correlation_id", None) == "log-transition-1"
        for record in transitions
    )

    notifications = [record for record in caplog.records if record.getMessage() == "notification.enqueued"]
    assert any(
        getattr(record, "user_id", None) == "tenant-1"
        and getattr(record, "notification_type", None) == "SERVICE_REQUEST_UPDATE"
        for record in notifications
    )
