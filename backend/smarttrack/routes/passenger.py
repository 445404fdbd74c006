from typing import List

from fastapi import APIRouter, Depends, Query, WebSocket, status

from .. import schemas
from ..catalog import RouteCatalog
from ..db_store import DatabaseStore
from ..deps import get_catalog, get_engine, get_matcher, get_registry
from ..errors import TransitError
from ..matcher import RouteMatcher
from ..registry import BusRegistry
from ..trips import TripSessionEngine
from ..websocket_manager import websocket_manager

router = APIRouter(prefix="/passenger", tags=["passenger"])


@router.get("/stops", response_model=List[str])
def stop_suggestions(q: str = "", catalog: RouteCatalog = Depends(get_catalog)):
    """Stop names for the search box; filtered by a case-insensitive prefix"""
    names = catalog.all_stop_names()
    prefix = q.strip().casefold()
    if prefix:
        names = [n for n in names if n.casefold().startswith(prefix)]
    return names


@router.get("/search", response_model=List[schemas.MatchedRoute])
def search_routes(
    origin: str = Query(...),
    destination: str = Query(...),
    matcher: RouteMatcher = Depends(get_matcher),
):
    """Routes serving origin -> destination, each with its running trip if any"""
    return matcher.search(origin, destination)


@router.get("/sessions/{session_id}", response_model=schemas.SessionDetails)
def session_details(
    session_id: str,
    registry: BusRegistry = Depends(get_registry),
    engine: TripSessionEngine = Depends(get_engine),
):
    # Session ids are bus ids
    bus = registry.get_bus(session_id)
    return schemas.SessionDetails(bus=bus, session=engine.find_session(session_id))


@router.websocket("/ws/search")
async def search_feed(websocket: WebSocket, origin: str = "", destination: str = ""):
    store: DatabaseStore = websocket.app.state.store
    try:
        query = RouteMatcher(store).live_search(origin, destination)
    except TransitError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await websocket_manager.stream(websocket, f"search:{origin.strip().casefold()}:{destination.strip().casefold()}", query)


@router.websocket("/ws/sessions/{session_id}")
async def session_feed(websocket: WebSocket, session_id: str):
    """Live status page for one trip; pushes null once the session is gone"""
    store: DatabaseStore = websocket.app.state.store
    query = TripSessionEngine(store).watch_session(session_id)
    await websocket_manager.stream(websocket, f"session:{session_id}", query)
