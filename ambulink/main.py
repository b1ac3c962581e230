from __future__ import annotations

import logging
import os

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from ambulink.api.routers import (
    auth,
    organizations,
    partnerships,
    patients,
    trips,
    users,
    vehicles,
)
from ambulink.infra import redis_state
from ambulink.infra.audit import AuditMiddleware
from ambulink.infra.db import check_db_ready
from ambulink.infra.events import event_bus
from ambulink.infra.redis_state import check_redis_ready, publish_realtime

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="ambulink",
    description="Cross-organization ambulance trip lifecycle and access control.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

if redis_state.EVENT_FANOUT_REDIS:
    event_bus.subscribe("*", publish_realtime)

app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(organizations.router, prefix="/api/organizations", tags=["organizations"])
app.include_router(users.router, prefix="/api/users", tags=["users"])
app.include_router(partnerships.router, prefix="/api/partnerships", tags=["partnerships"])
app.include_router(vehicles.router, prefix="/api/vehicles", tags=["vehicles"])
app.include_router(patients.router, prefix="/api/patients", tags=["patients"])
app.include_router(trips.router, prefix="/api/trips", tags=["trips"])


@app.exception_handler(SQLAlchemyError)
def handle_storage_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("storage failure on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "internal error"})


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail", "redis": "skipped"}
    ready = db_ok
    if redis_state.EVENT_FANOUT_REDIS:
        redis_ok = check_redis_ready()
        checks["redis"] = "ok" if redis_ok else "fail"
        ready = ready and redis_ok
    if not ready:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
