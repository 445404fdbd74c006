import logging
from typing import Dict, List, Optional, Sequence, Tuple

from . import schemas
from .catalog import RouteCatalog
from .config import settings
from .db_store import DatabaseStore
from .errors import ValidationError
from .live import ALL_TOPICS, LiveQuery
from .models import Bus, TripSession
from .trips import session_state, session_view

logger = logging.getLogger(__name__)

SessionKey = Tuple[str, str]  # (route_id, driver_id)


def normalize_stop(name: str) -> str:
    return (name or "").strip().casefold()


def stop_positions(stops: Sequence[str], origin: str, destination: str) -> Optional[Tuple[int, int]]:
    """
    Indices of origin and destination in ``stops`` if the route serves that
    direction of travel, else None. Inputs must already be normalised; the first
    occurrence of each name counts.
    """
    normalized = [normalize_stop(s) for s in stops]
    try:
        origin_index = normalized.index(origin)
        destination_index = normalized.index(destination)
    except ValueError:
        return None
    if origin_index < destination_index:
        return origin_index, destination_index
    return None


def tracking_url(session_id: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/bus/{session_id}"


class RouteMatcher:
    """Joins passenger origin/destination searches to routes and their live trips."""

    def __init__(self, store: DatabaseStore, catalog: Optional[RouteCatalog] = None):
        self.store = store
        self.catalog = catalog or RouteCatalog(store)

    def find_routes(self, origin_stop: str, destination_stop: str) -> List[schemas.MatchedRoute]:
        origin = normalize_stop(origin_stop)
        destination = normalize_stop(destination_stop)
        if not origin or not destination:
            raise ValidationError("Please enter both source and destination.")

        matches = []
        for route in self.catalog.all_routes():
            positions = stop_positions(route.stops, origin, destination)
            if positions is None:
                continue
            matches.append(schemas.MatchedRoute(
                route=route,
                origin_index=positions[0],
                destination_index=positions[1],
            ))
        logger.debug("Search %r -> %r matched %d routes", origin, destination, len(matches))
        return matches

    def _live_sessions(self) -> Dict[SessionKey, schemas.LiveStatus]:
        """All running trips keyed by (route_id, driver_id), with their bus details."""
        lookup: Dict[SessionKey, schemas.LiveStatus] = {}
        with self.store.reading() as db:
            rows = (
                db.query(TripSession, Bus)
                .outerjoin(Bus, Bus.bus_id == TripSession.bus_id)
                .filter(TripSession.is_active == True)
                .order_by(TripSession.start_time)
                .all()
            )
            for session, bus in rows:
                view = session_view(session)
                lookup[(session.route_id, session.driver_id)] = schemas.LiveStatus(
                    session_id=session.session_id,
                    bus_id=session.bus_id,
                    bus_number=bus.number if bus else None,
                    bus_model=bus.model if bus else None,
                    current_stop_name=view.current_stop_name,
                    start_time=view.start_time,
                    state=session_state(session),
                    tracking_url=tracking_url(session.session_id),
                )
        return lookup

    def attach_live_status(self, matched: Sequence[schemas.MatchedRoute]) -> List[schemas.MatchedRoute]:
        lookup = self._live_sessions()
        return [
            m.model_copy(update={"live": lookup.get((m.route.route_id, m.route.owner_id))})
            for m in matched
        ]

    def search(self, origin_stop: str, destination_stop: str) -> List[schemas.MatchedRoute]:
        return self.attach_live_status(self.find_routes(origin_stop, destination_stop))

    def live_search(self, origin_stop: str, destination_stop: str) -> LiveQuery[List[schemas.MatchedRoute]]:
        # Validate up front so a bad query fails at the call, not on first emission
        if not normalize_stop(origin_stop) or not normalize_stop(destination_stop):
            raise ValidationError("Please enter both source and destination.")
        return LiveQuery(
            self.store.hub,
            ALL_TOPICS,
            lambda: self.search(origin_stop, destination_stop),
            name=f"search:{origin_stop}->{destination_stop}",
        )
