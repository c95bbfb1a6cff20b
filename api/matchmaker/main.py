import logging
import os
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from .database import Base, SessionLocal, engine
from .errors import Conflict, MatchmakingError, NotFound, TransientStoreFailure, ValidationError
from .routes import include_modular_routers
from .wiring import build_services

logger = logging.getLogger(__name__)

RUN_SCHEDULER = os.getenv("RUN_SCHEDULER", "false").lower() == "true"

app = FastAPI(title="Matchmaker API")
include_modular_routers(app)


def status_for(exc: MatchmakingError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, Conflict):
        return 409
    if isinstance(exc, TransientStoreFailure):
        return 503
    return 500


@app.exception_handler(MatchmakingError)
async def handle_matchmaking_error(request: Request, exc: MatchmakingError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.warning("[API] %s %s -> %s (%s)", request.method, request.url.path, status_code, exc.kind)
    headers = {"Retry-After": "5"} if isinstance(exc, TransientStoreFailure) else None
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


def wait_for_db(max_attempts: int = 20, delay_seconds: float = 1.5) -> None:
    last_err: Exception | None = None
    for _ in range(max_attempts):
        try:
            with SessionLocal() as db:
                db.execute(text("SELECT 1"))
                db.commit()
            return
        except OperationalError as exc:
            last_err = exc
            time.sleep(delay_seconds)
    if last_err:
        raise last_err


@app.on_event("startup")
def on_startup() -> None:
    wait_for_db()
    Base.metadata.create_all(bind=engine)
    app.state.services = build_services(SessionLocal)
    if RUN_SCHEDULER:
        app.state.services.scheduler.start()


@app.on_event("shutdown")
def on_shutdown() -> None:
    services = getattr(app.state, "services", None)
    if services is not None:
        services.scheduler.stop()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
