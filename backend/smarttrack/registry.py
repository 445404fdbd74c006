import logging
from typing import Optional

from . import schemas
from .db_store import DatabaseStore, new_id
from .errors import DuplicateError, NotFoundError, TransitError, ValidationError
from .live import BUSES, SESSIONS, LiveQuery
from .models import Bus, Route, TripSession

logger = logging.getLogger(__name__)


class BusRegistry:
    """Bus records owned by driver accounts and their route binding."""

    def __init__(self, store: DatabaseStore):
        self.store = store

    def register_bus(self, owner_id: str, number: str, model: str, capacity: int) -> schemas.BusOut:
        number = (number or "").strip()
        model = (model or "").strip()
        if not number or not model:
            raise ValidationError("Please fill in all bus details")
        if capacity is None or int(capacity) <= 0:
            raise ValidationError("Capacity must be a positive number")

        with self.store.transaction(BUSES) as db:
            # Bus numbers are unique system-wide, case-sensitive
            if db.query(Bus).filter(Bus.number == number).first():
                raise DuplicateError("Bus number already exists. Please choose a different number.")
            now = self.store.now()
            bus = Bus(
                bus_id=new_id(),
                number=number,
                model=model,
                capacity=int(capacity),
                owner_id=owner_id,
                is_moving=False,
                created_at=now,
                last_updated=now,
            )
            db.add(bus)
            db.flush()
            result = schemas.BusOut.model_validate(bus)
        logger.info("Bus registered: %s (%s)", result.bus_id, number)
        return result

    def get_bus(self, bus_id: str) -> schemas.BusOut:
        with self.store.reading() as db:
            bus = db.get(Bus, bus_id)
            if not bus:
                raise NotFoundError("Bus not found")
            return schemas.BusOut.model_validate(bus)

    def find_bus(self, bus_id: str) -> Optional[schemas.BusOut]:
        with self.store.reading() as db:
            bus = db.get(Bus, bus_id)
            return schemas.BusOut.model_validate(bus) if bus else None

    def bus_for_owner(self, owner_id: str) -> Optional[schemas.BusOut]:
        """The driver's bus. One per owner is the intended usage."""
        with self.store.reading() as db:
            bus = db.query(Bus).filter(Bus.owner_id == owner_id).order_by(Bus.created_at).first()
            return schemas.BusOut.model_validate(bus) if bus else None

    def watch_bus(self, bus_id: str) -> LiveQuery[Optional[schemas.BusOut]]:
        return LiveQuery(self.store.hub, (BUSES,), lambda: self.find_bus(bus_id), name=f"bus:{bus_id}")

    def bind_route(self, bus_id: str, route_id: str) -> schemas.BusOut:
        """
        Bind a bus to a route. Rebinding to the same route changes nothing;
        a different route clears the current-stop mirror and cancels a running trip.
        """
        with self.store.transaction(BUSES, SESSIONS) as db:
            bus = db.get(Bus, bus_id)
            if not bus:
                raise NotFoundError("Bus not found")
            if not db.get(Route, route_id):
                raise NotFoundError("Route not found")

            if bus.bound_route_id != route_id:
                now = self.store.now()
                running = db.query(TripSession).filter(
                    TripSession.bus_id == bus_id,
                    TripSession.is_active == True,
                ).first()
                if running:
                    running.is_active = False
                    running.cancelled_at = now
                    logger.info("Trip %s cancelled: bus %s rebound", running.session_id, bus_id)
                bus.bound_route_id = route_id
                bus.current_stop_name = None
                bus.session_id = None
                bus.last_updated = now
                logger.info("Bus %s bound to route %s", bus_id, route_id)
            db.flush()
            return schemas.BusOut.model_validate(bus)

    def update_location(self, bus_id: str, latitude: float, longitude: float) -> bool:
        """Best-effort telemetry: failures are logged and reported as False."""
        try:
            with self.store.transaction(BUSES) as db:
                bus = db.get(Bus, bus_id)
                if not bus:
                    raise NotFoundError("Bus not found")
                now = self.store.now()
                bus.latitude = float(latitude)
                bus.longitude = float(longitude)
                bus.is_moving = True
                bus.last_location_update = now
                bus.last_updated = now
        except TransitError as exc:
            logger.warning("Location update for bus %s dropped: %s", bus_id, exc.message)
            return False
        return True
