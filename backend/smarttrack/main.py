import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .config import settings
from .database import Base, SessionLocal, engine
from . import models  # Ensure all models are loaded before create_all
from .db_store import DatabaseStore
from .errors import TransitError
from .routes import api, auth, driver, passenger

logger = logging.getLogger(__name__)


async def transit_error_handler(request: Request, exc: TransitError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


def create_app(store: Optional[DatabaseStore] = None) -> FastAPI:
    if store is None:
        # Create database tables
        Base.metadata.create_all(bind=engine)
        store = DatabaseStore(SessionLocal)

    app = FastAPI(title=settings.app_name)
    app.state.store = store

    # allow_credentials=False allows allow_origins=["*"] (required for wildcard)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(TransitError, transit_error_handler)

    app.include_router(auth.router)
    app.include_router(api.router)
    app.include_router(driver.router)
    app.include_router(passenger.router)

    # Serve the web UI from the same server when it is present
    docs_path = Path(__file__).resolve().parent.parent.parent / "docs"
    if docs_path.exists():
        app.mount("/ui", StaticFiles(directory=str(docs_path), html=True), name="ui")

    @app.get("/")
    def health():
        return {
            "status": "ok",
            "message": settings.app_name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app


logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()
