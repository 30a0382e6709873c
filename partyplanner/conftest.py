# partyplanner/conftest.py
import os
from datetime import datetime, timezone
from typing import Dict, Optional
from uuid import uuid4

import pytest

# In-memory SQLite unless a test database is configured
os.environ.setdefault("TEST_DATABASE_URL", "sqlite://")

from sqlalchemy import insert  # noqa: E402

from partyplanner.core.config import settings  # noqa: E402
from partyplanner.core.database import (  # noqa: E402
    get_db_session,
    init_engine,
    plans,
    reset_database,
    truncate_all_tables,
)


@pytest.fixture(scope="session", autouse=True)
def engine():
    """Bind the engine once per session and start from a fresh schema."""
    engine = init_engine(os.environ["TEST_DATABASE_URL"])
    reset_database()
    yield engine


@pytest.fixture(scope="function", autouse=True)
def clean_db(engine):
    """Empty every table and re-seed the catalogs before each test."""
    from partyplanner.features.permissions.service import seed_permissions
    from partyplanner.features.plans.service import seed_plans

    truncate_all_tables()
    seed_plans()
    seed_permissions()
    yield
    truncate_all_tables()


@pytest.fixture
def new_user(monkeypatch):
    """Create a user; the signup trial is only started when trial=True."""
    from partyplanner.features.users.service import get_or_create_user

    def _new_user(trial: bool = False) -> str:
        monkeypatch.setattr(settings, "AUTO_ASSIGN_TRIAL", trial)
        return get_or_create_user(f"user-{uuid4().hex[:12]}").user_id

    return _new_user


@pytest.fixture
def make_plan():
    """Insert an ad-hoc plan (e.g. a 50-guest "starter")."""

    def _make_plan(
        plan_id: str,
        *,
        limits: Dict[str, int],
        features: Optional[Dict[str, bool]] = None,
        price: int = 5000,
        duration_days: int = 30,
        is_trial: bool = False,
        is_one_time_use: bool = False,
        sort_order: int = 10,
    ) -> str:
        with get_db_session() as session:
            session.execute(
                insert(plans).values(
                    plan_id=plan_id,
                    name=plan_id.title(),
                    price=price,
                    duration_days=duration_days,
                    is_trial=is_trial,
                    is_one_time_use=is_one_time_use,
                    is_active=True,
                    sort_order=sort_order,
                    limits=limits,
                    features=features or {},
                    created_at=datetime.now(timezone.utc),
                )
            )
        return plan_id

    return _make_plan
