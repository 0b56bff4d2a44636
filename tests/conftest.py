"""Shared test fixtures."""
import os

# Keep the application's own engine off the filesystem
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fieldservice import roles
from fieldservice.api.deps import create_access_token
from fieldservice.database import Base, build_engine, get_db
from fieldservice.main import app
from fieldservice.models import Region, Customer, User, StockItem, ItemKind, UserStatus, WAREHOUSE
from fieldservice.reasons import Enumerated
from fieldservice.services.lifecycle import RequestLifecycle
from fieldservice.services.stock_ledger import StockLedger


class FakeClock:
    """Deterministic clock; each call advances by ``step``."""

    def __init__(self, start=datetime(2026, 3, 1, 9, 0, 0), step=timedelta(minutes=30)):
        self.now = start
        self.step = step

    def __call__(self):
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
def engine():
    """Provide a fresh in-memory database per test."""
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


def _user(db, name, role, region=None, status=UserStatus.ACTIVE):
    user = User(
        name=name,
        email=f"{name.lower().replace(' ', '.')}@example.com",
        role=role,
        region_id=region.id if region else None,
        status=status
    )
    db.add(user)
    db.flush()
    return user


@pytest.fixture
def seed(db):
    """Regions, one user per role, customers and warehouse stock."""
    north = Region(name="North")
    south = Region(name="South")
    db.add_all([north, south])
    db.flush()

    users = SimpleNamespace(
        super_admin=_user(db, "Super Admin User", roles.SUPER_ADMIN),
        service_admin=_user(db, "Service Admin User", roles.SERVICE_ADMIN),
        sales_admin=_user(db, "Sales Admin User", roles.SALES_ADMIN),
        service_manager=_user(db, "Service Manager User", roles.SERVICE_MANAGER, north),
        service_lead=_user(db, "Service Lead User", roles.SERVICE_TEAM_LEAD, north),
        salesman=_user(db, "Salesman User", roles.SALESMAN, north),
        tech_a=_user(db, "Tech A", roles.TECHNICIAN, north),
        tech_b=_user(db, "Tech B", roles.TECHNICIAN, north),
        tech_south=_user(db, "Tech South", roles.TECHNICIAN, south),
        tech_blocked=_user(db, "Tech Blocked", roles.TECHNICIAN, north, status=UserStatus.BLOCKED),
    )

    customer = Customer(name="Harbor Hotel", region_id=north.id)
    db.add(customer)

    filter_item = StockItem(kind=ItemKind.SPARE_PART, name="Sediment Filter", sku="SP-SED10", low_stock_threshold=5)
    membrane = StockItem(kind=ItemKind.SPARE_PART, name="RO Membrane", sku="SP-MEM75", low_stock_threshold=5)
    purifier = StockItem(kind=ItemKind.PRODUCT, name="Water Purifier", sku="PRD-RO500", low_stock_threshold=1)
    db.add_all([filter_item, membrane, purifier])
    db.flush()

    ledger = StockLedger(db, users.super_admin)
    ledger.adjust(filter_item.id, WAREHOUSE, 20, Enumerated("Added Stock"))
    ledger.adjust(membrane.id, WAREHOUSE, 3, Enumerated("Added Stock"))
    ledger.adjust(purifier.id, WAREHOUSE, 4, Enumerated("Added Stock"))
    db.commit()

    return SimpleNamespace(
        north=north,
        south=south,
        customer=customer,
        users=users,
        filter_item=filter_item,
        membrane=membrane,
        purifier=purifier,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_clock():
    """Build a FakeClock with a custom start or step."""
    return FakeClock


@pytest.fixture
def lifecycle(db, clock):
    """Build a RequestLifecycle for a given caller, sharing the test session and clock."""
    def _make(user, config=None):
        return RequestLifecycle(db, user, config=config, clock=clock)
    return _make


@pytest.fixture
def approved_request(seed, lifecycle):
    """A service-created request that has passed its single approval."""
    users = seed.users
    request = lifecycle(users.service_lead).submit(
        type="SERVICE", customer_id=seed.customer.id, region_id=seed.north.id, description="Leaking filter"
    )
    lifecycle(users.service_manager).approve(request.id)
    return request


@pytest.fixture
def assigned_request(seed, lifecycle, approved_request):
    lifecycle(seed.users.service_admin).assign(approved_request.id, technician_id=seed.users.tech_a.id)
    return approved_request


@pytest.fixture
def in_progress_request(seed, lifecycle, assigned_request):
    lifecycle(seed.users.tech_a).start_work(assigned_request.id)
    return assigned_request


@pytest.fixture
def client(session_factory):
    """FastAPI test client bound to the test database."""
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    """Bearer headers for a user."""
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token({'sub': user.email})}"}
    return _headers
