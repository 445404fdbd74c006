"""
Seed script to populate demo data.
Safe to re-run: existing records are reused.
"""
import logging

from smarttrack.catalog import RouteCatalog
from smarttrack.database import Base, SessionLocal, engine
from smarttrack.db_store import DatabaseStore
from smarttrack.errors import DuplicateError
from smarttrack.models import Bus, Driver
from smarttrack.registry import BusRegistry

logger = logging.getLogger(__name__)

DEMO_EMAIL = "driver@example.com"
DEMO_PASSWORD = "password123"
DEMO_ROUTE = ("Loop", ["Depot", "Market", "Station"])
DEMO_BUS = ("B1", "Tata Starbus", 40)


def seed_database(store: DatabaseStore) -> dict:
    """Create the demo driver, the Loop route and bus B1 bound to it"""
    try:
        driver = store.register_driver(DEMO_EMAIL, DEMO_PASSWORD, "Demo Driver")
        driver_id = driver.driver_id
    except DuplicateError:
        with store.reading() as db:
            driver_id = db.query(Driver).filter(Driver.email == DEMO_EMAIL).one().driver_id

    catalog = RouteCatalog(store)
    name, stops = DEMO_ROUTE
    route = next((r for r in catalog.routes_by_owner(driver_id) if r.name == name), None)
    if route is None:
        route = catalog.create_route(driver_id, name, stops)

    registry = BusRegistry(store)
    number, model, capacity = DEMO_BUS
    try:
        bus = registry.register_bus(driver_id, number, model, capacity)
    except DuplicateError:
        with store.reading() as db:
            bus_id = db.query(Bus).filter(Bus.number == number).one().bus_id
        bus = registry.get_bus(bus_id)
    bus = registry.bind_route(bus.bus_id, route.route_id)

    logger.info("Seeded driver %s, route %s, bus %s", DEMO_EMAIL, route.name, bus.number)
    return {"driver_id": driver_id, "route_id": route.route_id, "bus_id": bus.bus_id}


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    Base.metadata.create_all(bind=engine)
    seeded = seed_database(DatabaseStore(SessionLocal))
    print("Database seeded successfully!")
    print(f"   - Driver: {DEMO_EMAIL} / {DEMO_PASSWORD}")
    print(f"   - Route: {DEMO_ROUTE[0]} ({' -> '.join(DEMO_ROUTE[1])})")
    print(f"   - Bus: {DEMO_BUS[0]} ({seeded['bus_id']})")
