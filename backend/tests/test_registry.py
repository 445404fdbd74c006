import pytest
from sqlalchemy.exc import OperationalError

from smarttrack.db_store import DatabaseStore
from smarttrack.errors import DuplicateError, NotFoundError, ValidationError
from smarttrack.registry import BusRegistry


def test_register_bus(registry, driver_id):
    bus = registry.register_bus(driver_id, " B1 ", " Tata Starbus ", 40)

    assert bus.number == "B1"
    assert bus.model == "Tata Starbus"
    assert bus.capacity == 40
    assert bus.owner_id == driver_id
    assert bus.bound_route_id is None
    assert bus.current_stop_name is None
    assert registry.bus_for_owner(driver_id) == bus


def test_bus_number_is_unique_system_wide(registry, driver_id, other_driver_id):
    registry.register_bus(driver_id, "B1", "Tata", 40)

    with pytest.raises(DuplicateError):
        registry.register_bus(other_driver_id, "B1", "Volvo", 50)


def test_bus_number_match_is_case_sensitive(registry, driver_id, other_driver_id):
    registry.register_bus(driver_id, "B1", "Tata", 40)
    other = registry.register_bus(other_driver_id, "b1", "Volvo", 50)
    assert other.number == "b1"


@pytest.mark.parametrize("number, model, capacity", [("", "Tata", 40), ("B1", " ", 40), ("B1", "Tata", 0)])
def test_register_bus_validation(registry, driver_id, number, model, capacity):
    with pytest.raises(ValidationError):
        registry.register_bus(driver_id, number, model, capacity)


def test_bind_route(registry, driver_id, loop_route):
    bus = registry.register_bus(driver_id, "B1", "Tata", 40)

    bound = registry.bind_route(bus.bus_id, loop_route.route_id)

    assert bound.bound_route_id == loop_route.route_id
    assert bound.current_stop_name is None


def test_bind_unknown_bus_or_route(registry, driver_id, loop_route):
    bus = registry.register_bus(driver_id, "B1", "Tata", 40)
    with pytest.raises(NotFoundError):
        registry.bind_route("nope", loop_route.route_id)
    with pytest.raises(NotFoundError):
        registry.bind_route(bus.bus_id, "nope")


def test_rebinding_same_route_keeps_running_trip(registry, trips, bound_bus, loop_route):
    trips.start_session(bound_bus.bus_id, loop_route.route_id)

    bus = registry.bind_route(bound_bus.bus_id, loop_route.route_id)

    assert bus.current_stop_name == "Depot"
    assert trips.active_session_for(bound_bus.bus_id).current() is not None


def test_rebinding_other_route_clears_progress(registry, catalog, trips, driver_id, bound_bus, loop_route):
    trips.start_session(bound_bus.bus_id, loop_route.route_id)
    express = catalog.create_route(driver_id, "Express", ["Depot", "Station"])

    bus = registry.bind_route(bound_bus.bus_id, express.route_id)

    assert bus.bound_route_id == express.route_id
    assert bus.current_stop_name is None
    assert bus.session_id is None
    assert trips.active_session_for(bound_bus.bus_id).current() is None
    assert trips.get_session(bound_bus.bus_id).state == "cancelled"


def test_update_location(registry, driver_id):
    bus = registry.register_bus(driver_id, "B1", "Tata", 40)

    assert registry.update_location(bus.bus_id, 19.07, 72.87) is True

    stored = registry.get_bus(bus.bus_id)
    assert (stored.latitude, stored.longitude) == (19.07, 72.87)
    assert stored.is_moving is True
    assert stored.last_location_update is not None


def test_update_location_is_best_effort(registry, store, driver_id):
    assert registry.update_location("nope", 1.0, 2.0) is False

    class BrokenSession:
        def get(self, *args):
            raise OperationalError("SELECT", {}, Exception("connection refused"))

        def rollback(self):
            pass

        def close(self):
            pass

    broken = BusRegistry(DatabaseStore(BrokenSession, store.hub))
    assert broken.update_location("any", 1.0, 2.0) is False


def test_watch_bus_pushes_changes(registry, driver_id, loop_route):
    bus = registry.register_bus(driver_id, "B1", "Tata", 40)
    seen = []
    with registry.watch_bus(bus.bus_id).subscribe(seen.append):
        registry.bind_route(bus.bus_id, loop_route.route_id)

    assert [s.bound_route_id for s in seen] == [None, loop_route.route_id]
