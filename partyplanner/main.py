import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load env before settings are read
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from partyplanner.core.config import settings, validate_config
from partyplanner.core.logging import configure_logging
from partyplanner.core.middleware.request_id import RequestIdMiddleware
from partyplanner.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from partyplanner.core.database import create_all_tables
from partyplanner.features.plans.service import seed_plans
from partyplanner.features.permissions.service import seed_permissions
from partyplanner.api import (
    collaborators,
    entitlements,
    events,
    health,
    permissions,
    plans,
    subscriptions,
)

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("partyplanner")
    logger.info("Starting Party Planner backend...")
    app.state.startup_time = time.time()
    create_all_tables()
    seed_plans()
    seed_permissions()
    try:
        yield
    finally:
        logging.getLogger("partyplanner").info("Stopping Party Planner backend...")


app = FastAPI(title="Party Planner - Entitlements", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(entitlements.router)
app.include_router(plans.router)
app.include_router(subscriptions.router)
app.include_router(events.router)
app.include_router(permissions.router)
app.include_router(collaborators.router)
app.include_router(health.router)
app.include_router(health.root_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("partyplanner.main:app", host="0.0.0.0", port=8000, reload=settings.ENV == "development")
