from fastapi import APIRouter, Depends, HTTPException, status

from .. import schemas
from ..db_store import DatabaseStore
from ..deps import get_current_driver, get_registry, get_store
from ..registry import BusRegistry

router = APIRouter(prefix="/api/drivers", tags=["api"])


@router.get("/profile", response_model=schemas.DriverProfile)
def driver_profile(
    driver_id: str = Depends(get_current_driver),
    store: DatabaseStore = Depends(get_store),
    registry: BusRegistry = Depends(get_registry),
):
    driver = store.get_driver(driver_id)
    if not driver:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Driver not found")
    return schemas.DriverProfile(driver=driver, bus=registry.bus_for_owner(driver_id))


@router.post("/location")
def driver_location(
    payload: schemas.LocationUpdate,
    driver_id: str = Depends(get_current_driver),
    registry: BusRegistry = Depends(get_registry),
):
    bus = registry.bus_for_owner(driver_id)
    stored = bool(bus) and registry.update_location(bus.bus_id, payload.latitude, payload.longitude)
    return {
        "message": "Location updated successfully" if stored else "Location not stored",
        "location": {"latitude": payload.latitude, "longitude": payload.longitude},
    }
