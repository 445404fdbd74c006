from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class DriverRegisterRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=6)
    display_name: Optional[str] = None


class DriverLoginRequest(BaseModel):
    email: str
    password: str


class DriverLoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime


class DriverOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    driver_id: str
    email: str
    display_name: Optional[str] = None
    created_at: Optional[datetime] = None


class RouteCreate(BaseModel):
    name: str
    stops: List[str]


class RouteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    route_id: str
    name: str
    stops: List[str]
    owner_id: str
    created_at: Optional[datetime] = None


class BusCreate(BaseModel):
    number: str
    model: str
    capacity: int


class BindRouteRequest(BaseModel):
    route_id: str


class LocationUpdate(BaseModel):
    latitude: float
    longitude: float


class BusOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    bus_id: str
    number: str
    model: str
    capacity: int
    owner_id: str
    bound_route_id: Optional[str] = None
    current_stop_name: Optional[str] = None
    session_id: Optional[str] = None
    arrived_at: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_moving: bool = False
    last_location_update: Optional[datetime] = None


class StopProgressOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    stop_name: str
    status: str  # started / current / completed
    started_at: datetime
    arrived_at: Optional[datetime] = None


class TripSessionOut(BaseModel):
    session_id: str
    bus_id: str
    route_id: str
    route_name: str
    driver_id: str
    stops: List[str]
    current_stop_index: int
    progress: Dict[int, StopProgressOut]
    is_active: bool
    state: str  # running / completed / cancelled
    start_time: datetime
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @property
    def current_stop_name(self) -> str:
        return self.stops[self.current_stop_index]


class EndSessionRequest(BaseModel):
    confirm: bool = False


class SessionDetails(BaseModel):
    """Passenger bus-details page: the bus and the latest state of its run."""
    bus: BusOut
    session: Optional[TripSessionOut] = None


class LiveStatus(BaseModel):
    session_id: str
    bus_id: str
    bus_number: Optional[str] = None
    bus_model: Optional[str] = None
    current_stop_name: Optional[str] = None
    start_time: datetime
    state: str
    tracking_url: str


class MatchedRoute(BaseModel):
    route: RouteOut
    origin_index: int
    destination_index: int
    live: Optional[LiveStatus] = None


class DriverProfile(BaseModel):
    driver: DriverOut
    bus: Optional[BusOut] = None
