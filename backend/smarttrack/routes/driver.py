import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, WebSocket, status
from starlette.concurrency import run_in_threadpool

from .. import schemas
from ..catalog import RouteCatalog
from ..db_store import DatabaseStore
from ..deps import get_catalog, get_current_driver, get_engine, get_registry
from ..errors import ForbiddenError, PreconditionError
from ..registry import BusRegistry
from ..trips import TripSessionEngine
from ..websocket_manager import websocket_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/driver", tags=["driver"])


def _own_bus(registry: BusRegistry, driver_id: str) -> schemas.BusOut:
    bus = registry.bus_for_owner(driver_id)
    if not bus:
        raise PreconditionError("Register a bus first")
    return bus


def _own_route(catalog: RouteCatalog, driver_id: str, route_id: str) -> schemas.RouteOut:
    route = catalog.get_route(route_id)
    if route.owner_id != driver_id:
        raise ForbiddenError("This route belongs to another driver")
    return route


# Bus

@router.get("/bus", response_model=Optional[schemas.BusOut])
def my_bus(driver_id: str = Depends(get_current_driver), registry: BusRegistry = Depends(get_registry)):
    return registry.bus_for_owner(driver_id)


@router.post("/bus", response_model=schemas.BusOut, status_code=status.HTTP_201_CREATED)
def register_bus(
    payload: schemas.BusCreate,
    driver_id: str = Depends(get_current_driver),
    registry: BusRegistry = Depends(get_registry),
):
    return registry.register_bus(driver_id, payload.number, payload.model, payload.capacity)


@router.put("/bus/route", response_model=schemas.BusOut)
def assign_route(
    payload: schemas.BindRouteRequest,
    driver_id: str = Depends(get_current_driver),
    registry: BusRegistry = Depends(get_registry),
    catalog: RouteCatalog = Depends(get_catalog),
):
    bus = _own_bus(registry, driver_id)
    _own_route(catalog, driver_id, payload.route_id)
    return registry.bind_route(bus.bus_id, payload.route_id)


@router.post("/bus/location")
def update_location(
    payload: schemas.LocationUpdate,
    driver_id: str = Depends(get_current_driver),
    registry: BusRegistry = Depends(get_registry),
):
    bus = _own_bus(registry, driver_id)
    logger.info("Location received: bus=%s lat=%.6f lon=%.6f", bus.number, payload.latitude, payload.longitude)
    ok = registry.update_location(bus.bus_id, payload.latitude, payload.longitude)
    return {"ok": ok, "latitude": payload.latitude, "longitude": payload.longitude}


# Routes

@router.get("/routes", response_model=List[schemas.RouteOut])
def list_routes(driver_id: str = Depends(get_current_driver), catalog: RouteCatalog = Depends(get_catalog)):
    return catalog.list_routes_by_owner(driver_id).current()


@router.post("/routes", response_model=schemas.RouteOut, status_code=status.HTTP_201_CREATED)
def create_route(
    payload: schemas.RouteCreate,
    driver_id: str = Depends(get_current_driver),
    catalog: RouteCatalog = Depends(get_catalog),
):
    return catalog.create_route(driver_id, payload.name, payload.stops)


@router.delete("/routes/{route_id}")
def delete_route(
    route_id: str,
    driver_id: str = Depends(get_current_driver),
    catalog: RouteCatalog = Depends(get_catalog),
):
    _own_route(catalog, driver_id, route_id)
    catalog.delete_route(route_id)
    return {"ok": True, "route_id": route_id}


@router.websocket("/ws/routes")
async def routes_feed(websocket: WebSocket, token: str = ""):
    """Live list of the driver's routes, newest first"""
    store: DatabaseStore = websocket.app.state.store
    driver_id = await run_in_threadpool(store.get_token_driver, token) if token else None
    if not driver_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    query = RouteCatalog(store).list_routes_by_owner(driver_id)
    await websocket_manager.stream(websocket, f"routes:{driver_id}", query)


# Trip

@router.get("/trip", response_model=Optional[schemas.TripSessionOut])
def current_trip(
    driver_id: str = Depends(get_current_driver),
    registry: BusRegistry = Depends(get_registry),
    engine: TripSessionEngine = Depends(get_engine),
):
    bus = _own_bus(registry, driver_id)
    return engine.active_session_for(bus.bus_id).current()


@router.post("/trip/start", response_model=schemas.TripSessionOut, status_code=status.HTTP_201_CREATED)
def start_trip(
    driver_id: str = Depends(get_current_driver),
    registry: BusRegistry = Depends(get_registry),
    engine: TripSessionEngine = Depends(get_engine),
):
    bus = _own_bus(registry, driver_id)
    return engine.start_session(bus.bus_id, bus.bound_route_id)


@router.post("/trip/arrival", response_model=schemas.TripSessionOut)
def mark_arrival(
    driver_id: str = Depends(get_current_driver),
    registry: BusRegistry = Depends(get_registry),
    engine: TripSessionEngine = Depends(get_engine),
):
    bus = _own_bus(registry, driver_id)
    return engine.mark_arrival(bus.bus_id)


@router.post("/trip/end", response_model=schemas.TripSessionOut)
def end_trip(
    payload: schemas.EndSessionRequest,
    driver_id: str = Depends(get_current_driver),
    registry: BusRegistry = Depends(get_registry),
    engine: TripSessionEngine = Depends(get_engine),
):
    bus = _own_bus(registry, driver_id)
    return engine.end_session(bus.bus_id, confirm=payload.confirm)
