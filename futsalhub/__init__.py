import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from . import attendance, auth, boards, feedback, matches, pages, photos, schedules, teams, users
from .database import init_db
from .errors import ActionError, action_error_handler

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()
    logging.getLogger(__name__).info("FutsalHub ready")
    yield


def create_app() -> FastAPI:
    """Application factory for the futsal community site."""
    base_dir = Path(__file__).resolve().parent
    app = FastAPI(title="FutsalHub", lifespan=lifespan)
    app.add_exception_handler(ActionError, action_error_handler)
    for module in (auth, users, teams, schedules, attendance, matches, photos, boards, feedback, pages):
        app.include_router(module.router)
    static_dir = base_dir / "static"
    app.mount("/static", StaticFiles(directory=static_dir), name="static")
    return app


app = create_app()
