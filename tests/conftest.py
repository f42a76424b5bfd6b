"""Pytest fixtures for the marketplace services and API."""

import uuid
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from bazaruto.api.dependencies import build_services
from bazaruto.api.main import create_app
from bazaruto.database.entities import Address, Claim, ClaimDocument, Customer, Policy, Product
from bazaruto.database.postgres import PostgresDB
from bazaruto.database.redis import RedisJobStore
from bazaruto.events.bus import EventBus
from bazaruto.integrations.mock_payments import MockPaymentsClient
from bazaruto.utils.config_loader import AppConfig
from bazaruto.utils.rules_manager import RulesManager
from bazaruto.utils.timeutil import make_number, utcnow


class Factory:
    """Creates persisted entities with sensible defaults; keyword arguments override fields."""

    def __init__(self, db: PostgresDB) -> None:
        self.db = db

    def customer(self, **overrides) -> Customer:
        data = dict(
            email=f"user-{uuid.uuid4().hex[:8]}@example.com",
            first_name="Amina",
            last_name="Njoroge",
            kyc_status="verified",
            aml_status="cleared",
            addresses=[Address(country="KE", city="Nairobi", is_primary=True)],
        )
        data.update(overrides)
        return self.db.customers.create(Customer(**data))

    def product(self, **overrides) -> Product:
        data = dict(name="Motor Comprehensive", category="auto", base_price=1500.0, coverage_amount=100_000.0)
        data.update(overrides)
        return self.db.products.create(Product(**data))

    def policy(self, customer: Customer, product: Product, **overrides) -> Policy:
        now = utcnow()
        data = dict(
            product_id=product.id,
            user_id=customer.id,
            policy_number=make_number("P"),
            premium=1200.0,
            coverage_amount=100_000.0,
            effective_date=now - timedelta(days=30),
            expiration_date=now + timedelta(days=335),
        )
        data.update(overrides)
        return self.db.policies.create(Policy(**data))

    def claim(self, customer: Customer, policy: Policy, **overrides) -> Claim:
        incident = utcnow() - timedelta(days=3)
        data = dict(
            policy_id=policy.id,
            user_id=customer.id,
            claim_number=make_number("C"),
            title="Rear bumper damage",
            description="Vehicle was hit from behind while parked outside the office building on Moi Avenue.",
            claim_amount=500.0,
            incident_date=incident,
            reported_date=incident + timedelta(days=1),
            documents=[
                ClaimDocument(name="incident_report.pdf", file_size=20_480, file_type="application/pdf"),
                ClaimDocument(name="photo.jpg", file_size=102_400, file_type="image/jpeg"),
            ],
        )
        data.update(overrides)
        return self.db.claims.create(Claim(**data))


@pytest.fixture
def db():
    """In-memory PostgresDB stub for tests."""
    return PostgresDB()


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def rules_manager(tmp_path):
    """Built-in default rules; updates stay in memory."""
    return RulesManager(tmp_path / "business_rules.yml", persist=False)


@pytest.fixture
def bus():
    return EventBus(close_timeout=1.0)


@pytest.fixture
def gateway():
    return MockPaymentsClient(delay_seconds=0)


@pytest.fixture
def services(db, rules_manager, gateway):
    return build_services(
        AppConfig(),
        db=db,
        job_store=RedisJobStore(),
        gateway=gateway,
        rules_manager=rules_manager,
    )


@pytest.fixture
def collect():
    """Subscribe a recording handler: ``received = collect(bus)``."""

    def _collect(event_bus: EventBus, *event_types: str):
        received = []
        event_bus.subscribe(f"collector-{uuid.uuid4().hex[:6]}", received.append, *event_types)
        return received

    return _collect


@pytest.fixture
def app(db, rules_manager, gateway):
    return create_app(
        config=AppConfig(),
        db=db,
        job_store=RedisJobStore(),
        gateway=gateway,
        rules_manager=rules_manager,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
