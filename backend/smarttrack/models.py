from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Boolean, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Driver(Base):
    __tablename__ = "drivers"

    driver_id = Column(String, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    display_name = Column(String, nullable=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    tokens = relationship("AuthToken", back_populates="driver", cascade="all, delete-orphan")


class AuthToken(Base):
    __tablename__ = "auth_tokens"

    token = Column(String, primary_key=True, index=True)
    driver_id = Column(String, ForeignKey("drivers.driver_id"), nullable=False, index=True)
    issued_at = Column(DateTime, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
    is_active = Column(Boolean, default=True)

    driver = relationship("Driver", back_populates="tokens")


class Route(Base):
    __tablename__ = "routes"

    route_id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    stops = Column(JSON, nullable=False)  # Ordered stop names, direction of travel
    owner_id = Column(String, ForeignKey("drivers.driver_id"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, index=True)


class Bus(Base):
    __tablename__ = "buses"

    bus_id = Column(String, primary_key=True, index=True)
    number = Column(String, nullable=False, unique=True, index=True)
    model = Column(String, nullable=False)
    capacity = Column(Integer, nullable=False)
    owner_id = Column(String, ForeignKey("drivers.driver_id"), nullable=False, index=True)
    bound_route_id = Column(String, ForeignKey("routes.route_id", ondelete="SET NULL"), nullable=True)

    # Mirrors of the running trip, for quick display
    current_stop_name = Column(String, nullable=True)
    session_id = Column(String, nullable=True)
    arrived_at = Column(DateTime, nullable=True)

    # Best-effort telemetry
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    is_moving = Column(Boolean, default=False)
    last_location_update = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    last_updated = Column(DateTime, default=utcnow, onupdate=utcnow)

    bound_route = relationship("Route")


class TripSession(Base):
    """One run of a bus along its bound route. Keyed by the bus id."""
    __tablename__ = "bus_route_sessions"

    session_id = Column(String, primary_key=True, index=True)
    bus_id = Column(String, ForeignKey("buses.bus_id"), nullable=False, unique=True)
    route_id = Column(String, nullable=False, index=True)  # No FK: the stop list is snapshotted
    route_name = Column(String, nullable=False)
    driver_id = Column(String, nullable=False, index=True)
    stops = Column(JSON, nullable=False)
    current_stop_index = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, index=True)
    start_time = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    # Relationships
    progress = relationship(
        "StopProgress",
        back_populates="session",
        order_by="StopProgress.stop_index",
        cascade="all, delete-orphan",
    )


class StopProgress(Base):
    __tablename__ = "stop_progress"
    __table_args__ = (UniqueConstraint("session_id", "stop_index"),)

    progress_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    session_id = Column(String, ForeignKey("bus_route_sessions.session_id"), nullable=False, index=True)
    stop_index = Column(Integer, nullable=False)
    stop_name = Column(String, nullable=False)
    status = Column(String, nullable=False)  # started / current / completed
    started_at = Column(DateTime, nullable=False)
    arrived_at = Column(DateTime, nullable=True)

    session = relationship("TripSession", back_populates="progress")
