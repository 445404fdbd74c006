import logging
import secrets
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import bcrypt
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from .config import settings
from .errors import ConnectivityError, DuplicateError, ValidationError
from .live import ChangeHub
from .models import AuthToken, Driver, utcnow
from . import schemas

logger = logging.getLogger(__name__)


def new_id() -> str:
    return uuid.uuid4().hex


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands datetimes back naive; they are always stored as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def hash_password(password: str) -> str:
    """Hash password using bcrypt directly"""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password using bcrypt directly"""
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


class DatabaseStore:
    """
    The store capability handed to every component.

    Wraps a session factory and the change hub: writes go through
    ``transaction()``, which commits, translates driver failures into
    ``ConnectivityError`` and constraint violations into ``DuplicateError`` and,
    once committed, publishes the touched topics.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        hub: Optional[ChangeHub] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_factory = session_factory
        self.hub = hub or ChangeHub()
        self.clock = clock or utcnow

    def now(self) -> datetime:
        return self.clock()

    @contextmanager
    def transaction(self, *topics: str):
        """Unit of work. Observers only hear about it after the commit."""
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            logger.warning("Store write rejected by a constraint: %s", exc.orig)
            raise DuplicateError("A conflicting record already exists") from exc
        except DBAPIError as exc:
            db.rollback()
            logger.error("Store write failed: %s", exc)
            raise ConnectivityError("Data store is unavailable, please try again") from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        if topics:
            self.hub.publish(topics)

    @contextmanager
    def reading(self):
        db = self.session_factory()
        try:
            yield db
        except DBAPIError as exc:
            logger.error("Store read failed: %s", exc)
            raise ConnectivityError("Data store is unavailable, please try again") from exc
        finally:
            db.close()

    # Driver accounts

    def register_driver(self, email: str, password: str, display_name: Optional[str] = None) -> schemas.DriverOut:
        email = (email or "").strip().lower()
        if not email or "@" not in email:
            raise ValidationError("A valid email address is required")
        if not password:
            raise ValidationError("Password is required")
        with self.transaction() as db:
            if db.query(Driver).filter(Driver.email == email).first():
                raise DuplicateError("An account with this email already exists")
            driver = Driver(
                driver_id=new_id(),
                email=email,
                display_name=(display_name or "").strip() or None,
                password_hash=hash_password(password),
                created_at=self.now(),
            )
            db.add(driver)
            db.flush()
            result = schemas.DriverOut.model_validate(driver)
        logger.info("Driver registered: %s", result.driver_id)
        return result

    def get_driver(self, driver_id: str) -> Optional[schemas.DriverOut]:
        with self.reading() as db:
            driver = db.get(Driver, driver_id)
            return schemas.DriverOut.model_validate(driver) if driver else None

    def login(self, email: str, password: str) -> Optional[Dict]:
        """Authenticate driver and issue a bearer token"""
        email = (email or "").strip().lower()
        with self.transaction() as db:
            driver = db.query(Driver).filter(Driver.email == email).first()
            if not driver or not verify_password(password, driver.password_hash):
                return None

            token = secrets.token_urlsafe(24)
            now = self.now()
            expires = now + timedelta(minutes=settings.access_token_expire_minutes)
            db.add(AuthToken(
                token=token,
                driver_id=driver.driver_id,
                issued_at=now,
                expires_at=expires,
                is_active=True,
            ))
        return {"token": token, "expires": expires}

    def get_token_driver(self, token: str) -> Optional[str]:
        """Get driver_id from bearer token"""
        with self.reading() as db:
            row = db.query(AuthToken).filter(
                AuthToken.token == token,
                AuthToken.is_active == True,
            ).first()
            if not row or as_utc(row.expires_at) <= as_utc(self.now()):
                return None
            return row.driver_id

    def logout(self, token: str) -> None:
        with self.transaction() as db:
            row = db.get(AuthToken, token)
            if row:
                row.is_active = False
