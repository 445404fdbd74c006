from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from .catalog import RouteCatalog
from .db_store import DatabaseStore
from .matcher import RouteMatcher
from .registry import BusRegistry
from .trips import TripSessionEngine


def get_store(request: Request) -> DatabaseStore:
    """Store capability attached to the app at startup"""
    return request.app.state.store


def get_catalog(store: DatabaseStore = Depends(get_store)) -> RouteCatalog:
    return RouteCatalog(store)


def get_registry(store: DatabaseStore = Depends(get_store)) -> BusRegistry:
    return BusRegistry(store)


def get_engine(store: DatabaseStore = Depends(get_store)) -> TripSessionEngine:
    return TripSessionEngine(store)


def get_matcher(store: DatabaseStore = Depends(get_store)) -> RouteMatcher:
    return RouteMatcher(store)


def bearer_token(authorization: Optional[str] = Header(None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No token provided")
    return authorization.split(" ", 1)[1].strip()


def get_current_driver(
    token: str = Depends(bearer_token),
    store: DatabaseStore = Depends(get_store),
) -> str:
    driver_id = store.get_token_driver(token)
    if not driver_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    return driver_id
