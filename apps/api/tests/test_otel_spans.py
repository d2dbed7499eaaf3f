from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from proptrack.core.auth import issue_token
from proptrack.core.config import get_settings
from proptrack.core.database import Base, get_db
from proptrack.main import app
from proptrack.models import Property, Unit, UnitTenant, User
from proptrack.otel import setup_inmemory_otel


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
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("api")
    exporter.clear()
    return exporter


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


def _create(client: TestClient) -> dict:
    response = client.post(
        "/api/service-requests",
        json={
            "title": "Mould in bathroom",
            "description": "Black spots on ceiling",
            "category": "GENERAL",
            "property_id": "prop-1",
            "unit_id": "unit-1",
        },
        headers=TENANT,
    )
    assert response.status_code == 201
    return response.json()


def test_request_span_contains_correlation_id(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = client.get("/api/service-requests", headers={**MANAGER, "X-Correlation-Id": "otel-corr-1"})
    assert response.status_code == 200

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_conversion_span_records_result(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    created = _create(client)

    converted = client.post(f"/api/service-requests/{created['id']}/convert-to-job", json={}, headers=MANAGER)
    assert converted.status_code == 200
    repeated = client.post(f"/api/service-requests/{created['id']}/convert-to-job", json={}, headers=MANAGER)
    assert repeated.status_code == 400

    conversion_spans = [
        span for span in span_exporter.get_finished_spans() if span.name == "service_request.convert_to_job"
    ]
    assert len(conversion_spans) == 2
    assert any(
        span.attributes.get("service_request.id") == created["id"]
        and span.attributes.get("conversion.result") == "converted"
        and span.attributes.get("job.id") == converted.json()["job"]["id"]
        and span.attributes.get("user.id") == "mgr-1"
        for span in conversion_spans
    )
