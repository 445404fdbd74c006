from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import settings

Base = declarative_base()


def make_engine(database_url: str):
    connect_args = {}
    kwargs = {}
    # SQLite needs check_same_thread=False for FastAPI
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        # In-memory databases live inside a single connection
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, echo=False, connect_args=connect_args, **kwargs)


def make_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


engine = make_engine(settings.database_url)
SessionLocal = make_session_factory(engine)
