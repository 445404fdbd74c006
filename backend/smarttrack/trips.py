"""
Trip session lifecycle.

A session is keyed by its bus id, so a bus can never have two live runs. States:

    (no row) -> RUNNING -> COMPLETED   (mark_arrival at the last stop)
                        -> CANCELLED   (end_session, route deleted, bus rebound)

Terminal sessions accept no further mutation. All precondition checks happen
before the first write, inside the same transaction as the writes.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import schemas
from .db_store import DatabaseStore, as_utc
from .errors import DuplicateError, InvalidStateError, NotFoundError, PreconditionError, ValidationError
from .live import BUSES, SESSIONS, LiveQuery
from .models import Bus, Route, StopProgress, TripSession

logger = logging.getLogger(__name__)

RUNNING = "running"
COMPLETED = "completed"
CANCELLED = "cancelled"

STOP_STARTED = "started"
STOP_CURRENT = "current"
STOP_COMPLETED = "completed"


def session_state(session: TripSession) -> str:
    if session.is_active:
        return RUNNING
    if session.completed_at is not None:
        return COMPLETED
    return CANCELLED


def session_view(session: TripSession) -> schemas.TripSessionOut:
    progress = {
        p.stop_index: schemas.StopProgressOut(
            stop_name=p.stop_name,
            status=p.status,
            started_at=as_utc(p.started_at),
            arrived_at=as_utc(p.arrived_at),
        )
        for p in session.progress
    }
    return schemas.TripSessionOut(
        session_id=session.session_id,
        bus_id=session.bus_id,
        route_id=session.route_id,
        route_name=session.route_name,
        driver_id=session.driver_id,
        stops=list(session.stops),
        current_stop_index=session.current_stop_index,
        progress=progress,
        is_active=bool(session.is_active),
        state=session_state(session),
        start_time=as_utc(session.start_time),
        completed_at=as_utc(session.completed_at),
        cancelled_at=as_utc(session.cancelled_at),
    )


class TripSessionEngine:

    def __init__(self, store: DatabaseStore):
        self.store = store

    def _live_session(self, db: Session, session_id: str) -> TripSession:
        session = db.get(TripSession, session_id)
        if not session:
            raise NotFoundError("Trip session not found")
        if not session.is_active:
            raise InvalidStateError(f"Trip session is already {session_state(session)}")
        return session

    def _clear_bus_mirror(self, db: Session, bus_id: str) -> None:
        bus = db.get(Bus, bus_id)
        if bus:
            bus.current_stop_name = None
            bus.session_id = None
            bus.last_updated = self.store.now()

    def start_session(self, bus_id: str, route_id: str) -> schemas.TripSessionOut:
        try:
            with self.store.transaction(SESSIONS, BUSES) as db:
                bus = db.get(Bus, bus_id)
                if not bus:
                    raise PreconditionError("Bus not found")
                if bus.bound_route_id is None:
                    raise PreconditionError("Bus has no route assigned")
                if bus.bound_route_id != route_id:
                    raise PreconditionError("Bus is not bound to this route")
                route = db.get(Route, route_id)
                if not route:
                    raise PreconditionError("Route not found")
                if not route.stops:
                    raise PreconditionError("Route has no stops")

                # Session identity is the bus identity
                session = db.get(TripSession, bus_id)
                if session is not None and session.is_active:
                    raise PreconditionError("Bus already has an active trip")

                now = self.store.now()
                if session is None:
                    session = TripSession(session_id=bus_id, bus_id=bus_id)
                    db.add(session)
                else:
                    # Overwrite the finished run
                    session.progress.clear()
                    db.flush()
                session.route_id = route.route_id
                session.route_name = route.name
                session.driver_id = bus.owner_id
                session.stops = list(route.stops)
                session.current_stop_index = 0
                session.is_active = True
                session.start_time = now
                session.completed_at = None
                session.cancelled_at = None
                session.progress.append(StopProgress(
                    stop_index=0,
                    stop_name=route.stops[0],
                    status=STOP_STARTED,
                    started_at=now,
                ))

                bus.current_stop_name = route.stops[0]
                bus.session_id = session.session_id
                bus.last_updated = now
                db.flush()
                result = session_view(session)
        except DuplicateError as exc:
            # A concurrent start inserted this bus's session first
            raise PreconditionError("Bus already has an active trip") from exc
        logger.info("Trip started: bus=%s route=%s (%s)", bus_id, route_id, result.route_name)
        return result

    def mark_arrival(self, session_id: str) -> schemas.TripSessionOut:
        """Record arrival at the current stop; arriving at the last stop completes the trip."""
        with self.store.transaction(SESSIONS, BUSES) as db:
            session = self._live_session(db, session_id)
            now = self.store.now()
            index = session.current_stop_index

            current = next((p for p in session.progress if p.stop_index == index), None)
            if current is None:
                current = StopProgress(stop_index=index, stop_name=session.stops[index], started_at=now)
                session.progress.append(current)
            current.status = STOP_COMPLETED
            current.arrived_at = now

            bus = db.get(Bus, session.bus_id)
            next_index = index + 1
            if next_index < len(session.stops):
                session.current_stop_index = next_index
                session.progress.append(StopProgress(
                    stop_index=next_index,
                    stop_name=session.stops[next_index],
                    status=STOP_CURRENT,
                    started_at=now,
                ))
                if bus:
                    bus.current_stop_name = session.stops[next_index]
                    bus.arrived_at = now
                    bus.last_updated = now
                logger.info("Trip %s arrived at %s, next %s", session_id, current.stop_name, session.stops[next_index])
            else:
                session.is_active = False
                session.completed_at = now
                if bus:
                    bus.arrived_at = now
                self._clear_bus_mirror(db, session.bus_id)
                logger.info("Trip %s completed at %s", session_id, current.stop_name)
            db.flush()
            return session_view(session)

    def end_session(self, session_id: str, confirm: bool = False) -> schemas.TripSessionOut:
        """Cancel a running trip early. The caller must acknowledge the intent."""
        if not confirm:
            raise ValidationError("Ending a trip must be confirmed")
        with self.store.transaction(SESSIONS, BUSES) as db:
            session = self._live_session(db, session_id)
            session.is_active = False
            session.cancelled_at = self.store.now()
            self._clear_bus_mirror(db, session.bus_id)
            db.flush()
            result = session_view(session)
        logger.info("Trip %s ended by driver at stop %d", session_id, result.current_stop_index)
        return result

    def get_session(self, session_id: str) -> schemas.TripSessionOut:
        with self.store.reading() as db:
            session = db.get(TripSession, session_id)
            if not session:
                raise NotFoundError("Trip session not found")
            return session_view(session)

    def find_session(self, session_id: str) -> Optional[schemas.TripSessionOut]:
        with self.store.reading() as db:
            session = db.get(TripSession, session_id)
            return session_view(session) if session else None

    def find_active_session(self, bus_id: str) -> Optional[schemas.TripSessionOut]:
        with self.store.reading() as db:
            session = db.query(TripSession).filter(
                TripSession.bus_id == bus_id,
                TripSession.is_active == True,
            ).first()
            return session_view(session) if session else None

    def active_session_for(self, bus_id: str) -> LiveQuery[Optional[schemas.TripSessionOut]]:
        return LiveQuery(
            self.store.hub,
            (SESSIONS,),
            lambda: self.find_active_session(bus_id),
            name=f"active-session:{bus_id}",
        )

    def watch_session(self, session_id: str) -> LiveQuery[Optional[schemas.TripSessionOut]]:
        """Latest state of a session, terminal or not; None once it no longer exists."""
        return LiveQuery(
            self.store.hub,
            (SESSIONS,),
            lambda: self.find_session(session_id),
            name=f"session:{session_id}",
        )
