import logging
from typing import List, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import schemas
from .db_store import DatabaseStore, new_id
from .errors import NotFoundError, ValidationError
from .live import BUSES, ROUTES, SESSIONS, LiveQuery
from .models import Bus, Route, TripSession

logger = logging.getLogger(__name__)


def clean_stops(stops: Sequence[str]) -> List[str]:
    """Trim stop names; any blank entry makes the whole list invalid."""
    if not stops:
        raise ValidationError("A route needs at least one stop")
    cleaned = []
    for idx, stop in enumerate(stops):
        name = (stop or "").strip()
        if not name:
            raise ValidationError(f"Stop {idx + 1} is blank")
        cleaned.append(name)
    return cleaned


class RouteCatalog:
    """Named, ordered stop lists owned by driver accounts."""

    def __init__(self, store: DatabaseStore):
        self.store = store

    def create_route(self, owner_id: str, name: str, stops: Sequence[str]) -> schemas.RouteOut:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Route name is required")
        cleaned = clean_stops(stops)

        with self.store.transaction(ROUTES) as db:
            route = Route(
                route_id=new_id(),
                name=name,
                stops=cleaned,
                owner_id=owner_id,
                created_at=self.store.now(),
            )
            db.add(route)
            db.flush()
            result = schemas.RouteOut.model_validate(route)
        logger.info("Route created: %s (%s, %d stops)", result.route_id, name, len(cleaned))
        return result

    def get_route(self, route_id: str) -> schemas.RouteOut:
        with self.store.reading() as db:
            route = db.get(Route, route_id)
            if not route:
                raise NotFoundError("Route not found")
            return schemas.RouteOut.model_validate(route)

    def all_routes(self) -> List[schemas.RouteOut]:
        """Every route, oldest first."""
        with self.store.reading() as db:
            rows = db.query(Route).order_by(Route.created_at, Route.route_id).all()
            return [schemas.RouteOut.model_validate(r) for r in rows]

    def all_stop_names(self) -> List[str]:
        """Unique stop names across all routes, for search suggestions."""
        names = {}
        for route in self.all_routes():
            for stop in route.stops:
                names.setdefault(stop.casefold(), stop)
        return sorted(names.values(), key=str.casefold)

    def _ordered_routes(self, db: Session, owner_id: str) -> List[Route]:
        return db.query(Route).filter(Route.owner_id == owner_id).order_by(Route.created_at.desc()).all()

    def _unordered_routes(self, db: Session, owner_id: str) -> List[Route]:
        return db.query(Route).filter(Route.owner_id == owner_id).all()

    def routes_by_owner(self, owner_id: str) -> List[schemas.RouteOut]:
        with self.store.reading() as db:
            try:
                rows = self._ordered_routes(db, owner_id)
            except SQLAlchemyError as exc:
                # e.g. the created_at index is missing on an older database
                logger.warning("Ordered route listing failed (%s); using unordered listing", exc)
                db.rollback()
                rows = self._unordered_routes(db, owner_id)
            return [schemas.RouteOut.model_validate(r) for r in rows]

    def list_routes_by_owner(self, owner_id: str) -> LiveQuery[List[schemas.RouteOut]]:
        """Live listing of an owner's routes, newest first."""
        return LiveQuery(
            self.store.hub,
            (ROUTES,),
            lambda: self.routes_by_owner(owner_id),
            name=f"routes:{owner_id}",
        )

    def delete_route(self, route_id: str) -> None:
        """
        Remove a route. Buses bound to it are unbound and any trip running on it is
        cancelled in the same transaction, so no observer sees a dangling reference.
        """
        with self.store.transaction(ROUTES, BUSES, SESSIONS) as db:
            route = db.get(Route, route_id)
            if not route:
                raise NotFoundError("Route not found")
            now = self.store.now()

            running = db.query(TripSession).filter(
                TripSession.route_id == route_id,
                TripSession.is_active == True,
            ).all()
            for session in running:
                session.is_active = False
                session.cancelled_at = now
                logger.info("Trip %s cancelled: route %s deleted", session.session_id, route_id)

            bound = db.query(Bus).filter(Bus.bound_route_id == route_id).all()
            for bus in bound:
                bus.bound_route_id = None
                bus.current_stop_name = None
                bus.session_id = None
                bus.last_updated = now

            db.delete(route)
        logger.info("Route deleted: %s (unbound %d buses)", route_id, len(bound))
