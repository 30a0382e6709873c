"""
Health and diagnostics API for the Party Planner backend.

Provides lightweight endpoints for operational monitoring without exposing secrets.
"""

import logging
import time
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from partyplanner.core.database import check_connection, get_engine
from partyplanner.core.logging import get_request_id, latency_bucket_ms

logger = logging.getLogger("partyplanner")

router = APIRouter(prefix="/api/health", tags=["health"])
root_router = APIRouter(tags=["health"])

REQUIRED_TABLES = [
    "app_users",
    "plans",
    "subscriptions",
    "top_ups",
    "events",
    "permissions",
    "collaborators",
]


class DBHealth(BaseModel):
    """Database health status."""
    connected: bool
    latency_ms: Optional[float] = None  # None when a fixed `now` is given
    tables_present: List[str] = []


class HealthResponse(BaseModel):
    ok: bool
    db: DBHealth
    computed_at: str  # UTC ISO format


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + required tables."""
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        inspector = inspect(engine)
        missing = [t for t in REQUIRED_TABLES if not inspector.has_table(t)]
    except SQLAlchemyError as e:
        logger.error("[readyz] readiness check failed", extra={"error": str(e)})
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    if missing:
        detail = f"missing tables: {', '.join(missing)}"
        logger.warning(f"[readyz] {detail}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": detail})
    return {"status": "ok"}


@router.get("/db", response_model=HealthResponse)
async def health_db(now: Optional[str] = Query(None)):
    """
    Check database health and connectivity.

    Args:
        now: Optional ISO timestamp for deterministic testing (overrides system time)
    """
    start = time.perf_counter()
    is_connected = check_connection()
    latency_ms = (time.perf_counter() - start) * 1000

    db_health = DBHealth(connected=is_connected, latency_ms=None if now else latency_ms)
    if is_connected:
        db_health.tables_present = sorted(inspect(get_engine()).get_table_names())

    logger.info(
        "health.db",
        extra={
            "request_id": get_request_id(),
            "ok": is_connected,
            "latency_bucket": latency_bucket_ms(latency_ms if now is None else None),
        },
    )
    return HealthResponse(
        ok=is_connected,
        db=db_health,
        computed_at=now or datetime.now(timezone.utc).isoformat(),
    )
