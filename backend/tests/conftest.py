import os

# In-memory database for anything that builds the default app
os.environ["DATABASE_URL"] = "sqlite://"

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from smarttrack import models  # noqa: F401  registers tables on Base
from smarttrack.catalog import RouteCatalog
from smarttrack.database import Base, make_engine, make_session_factory
from smarttrack.db_store import DatabaseStore
from smarttrack.live import ChangeHub
from smarttrack.matcher import RouteMatcher
from smarttrack.registry import BusRegistry
from smarttrack.trips import TripSessionEngine


class TickingClock:
    """Each reading is one second after the previous one."""

    def __init__(self, start=datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self):
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture
def store():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield DatabaseStore(make_session_factory(engine), ChangeHub(), clock=TickingClock())
    engine.dispose()


@pytest.fixture
def catalog(store):
    return RouteCatalog(store)


@pytest.fixture
def registry(store):
    return BusRegistry(store)


@pytest.fixture
def trips(store):
    return TripSessionEngine(store)


@pytest.fixture
def matcher(store):
    return RouteMatcher(store)


@pytest.fixture
def driver_id(store):
    return store.register_driver("asha@example.com", "secret123", "Asha").driver_id


@pytest.fixture
def other_driver_id(store):
    return store.register_driver("ravi@example.com", "secret123", "Ravi").driver_id


@pytest.fixture
def loop_route(catalog, driver_id):
    return catalog.create_route(driver_id, "Loop", ["Depot", "Market", "Station"])


@pytest.fixture
def bound_bus(registry, driver_id, loop_route):
    bus = registry.register_bus(driver_id, "B1", "Tata Starbus", 40)
    return registry.bind_route(bus.bus_id, loop_route.route_id)


@pytest.fixture
def client(store):
    from smarttrack.main import create_app

    return TestClient(create_app(store))


def _login(client, email, password="secret123"):
    response = client.post("/auth/driver/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def headers(client, driver_id):
    return _login(client, "asha@example.com")


@pytest.fixture
def other_headers(client, other_driver_id):
    return _login(client, "ravi@example.com")
