"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults (StaticPool for SQLite)
- Table definitions for plans, subscriptions, events and collaboration
"""
from datetime import datetime, timezone
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, JSON, Text, Index, ForeignKey, UniqueConstraint, select
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from partyplanner.core.config import settings


logger = logging.getLogger("partyplanner.database")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if url.startswith("sqlite"):
        # Single shared connection: in-memory databases vanish with their connection
        _engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            echo=False,  # Set to True for SQL query logging
        )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    The whole block is one transaction: committed on exit, rolled back
    if anything raises.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def reset_database():
    """
    Reset the database by dropping and recreating all tables.

    WARNING: This is destructive! Only use in tests.
    """
    drop_all_tables()
    create_all_tables()


def truncate_all_tables():
    """Delete every row, children first. Keeps the schema."""
    engine = get_engine()
    with engine.begin() as conn:
        for table in reversed(metadata.sorted_tables):
            conn.execute(table.delete())


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite returns naive datetimes; stored values are always UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(select(1))
        return True
    except Exception as e:
        logger.warning("Database connection check failed", extra={"error": str(e)})
        return False


# Users table
users = Table(
    'app_users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('display_name', Text, nullable=True),
    Column('role', String(20), nullable=False, server_default='user'),  # 'user' | 'admin'
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_users_created_at', 'created_at'),
)

# Plans table: plan_id is the public slug ("essai-gratuit", "pro", "agence")
plans = Table(
    'plans',
    metadata,
    Column('plan_id', String(50), primary_key=True),
    Column('name', String(200), nullable=False),
    Column('description', Text, nullable=True),
    Column('price', Integer, nullable=False, server_default='0'),
    Column('duration_days', Integer, nullable=False, server_default='30'),
    Column('is_trial', Boolean, nullable=False, server_default='0'),
    Column('is_one_time_use', Boolean, nullable=False, server_default='0'),
    Column('is_active', Boolean, nullable=False, server_default='1'),
    Column('sort_order', Integer, nullable=False, server_default='0'),
    Column('limits', JSON, nullable=False),    # limit_key -> int, -1 = unlimited
    Column('features', JSON, nullable=False),  # feature_key -> bool
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_plans_active_trial', 'is_active', 'is_trial'),
)

# Subscriptions: account-level when event_id is NULL
subscriptions = Table(
    'subscriptions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), ForeignKey('app_users.user_id'), nullable=False),
    Column('event_id', String(100), ForeignKey('events.event_id'), nullable=True),
    Column('plan_id', String(50), ForeignKey('plans.plan_id'), nullable=False),
    Column('status', String(20), nullable=False),  # trial, active, cancelled, expired
    Column('payment_status', String(20), nullable=False, server_default='pending'),  # pending, paid
    Column('price', Integer, nullable=False, server_default='0'),
    Column('creations_used', Integer, nullable=False, server_default='0'),
    Column('starts_at', DateTime(timezone=True), nullable=True),
    Column('expires_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    # Active-subscription lookup: (user_id, event_id, status)
    Index('idx_subscriptions_user_event_status', 'user_id', 'event_id', 'status'),
    # Expire sweep
    Index('idx_subscriptions_status_expires', 'status', 'expires_at'),
    Index('idx_subscriptions_plan_id', 'plan_id'),
)

# Top-up credits purchased outside the plan
top_ups = Table(
    'top_ups',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), ForeignKey('app_users.user_id'), nullable=False),
    Column('subscription_id', Integer, ForeignKey('subscriptions.id'), nullable=True),
    Column('credits', Integer, nullable=False),
    Column('price', Integer, nullable=False, server_default='0'),
    Column('purchased_at', DateTime(timezone=True), nullable=False),
    Column('expires_at', DateTime(timezone=True), nullable=True),
    Index('idx_top_ups_user_subscription', 'user_id', 'subscription_id'),
)

# Events with their frozen entitlement snapshot
events = Table(
    'events',
    metadata,
    Column('event_id', String(100), primary_key=True),
    Column('user_id', String(100), ForeignKey('app_users.user_id'), nullable=False),
    Column('title', Text, nullable=False),
    Column('max_guests_allowed', Integer, nullable=True),
    Column('max_collaborators_allowed', Integer, nullable=True),
    Column('max_photos_allowed', Integer, nullable=True),
    Column('features_enabled', JSON(none_as_null=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_events_user_created', 'user_id', 'created_at'),
)

# Permission catalog ("<module>.<action>")
permissions = Table(
    'permissions',
    metadata,
    Column('name', String(100), primary_key=True),
    Column('module', String(50), nullable=False),
    Column('action', String(50), nullable=False),
    Column('display_name', String(200), nullable=True),
    Index('idx_permissions_module', 'module'),
)

# Custom roles, scoped to one event
custom_roles = Table(
    'custom_roles',
    metadata,
    Column('role_id', String(36), primary_key=True),
    Column('event_id', String(100), ForeignKey('events.event_id'), nullable=False),
    Column('name', String(100), nullable=False),
    Column('description', Text, nullable=True),
    Column('color', String(20), nullable=False, server_default='gray'),
    Column('is_system', Boolean, nullable=False, server_default='0'),
    Column('created_by', String(100), ForeignKey('app_users.user_id'), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    UniqueConstraint('event_id', 'name', name='uq_custom_roles_event_name'),
)

custom_role_permissions = Table(
    'custom_role_permissions',
    metadata,
    Column('role_id', String(36), ForeignKey('custom_roles.role_id'), nullable=False),
    Column('permission_name', String(100), ForeignKey('permissions.name'), nullable=False),
    UniqueConstraint('role_id', 'permission_name', name='uq_custom_role_permissions'),
    Index('idx_custom_role_permissions_role', 'role_id'),
)

# Event collaborators: pending while accepted_at is NULL
collaborators = Table(
    'collaborators',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('event_id', String(100), ForeignKey('events.event_id'), nullable=False),
    Column('user_id', String(100), ForeignKey('app_users.user_id'), nullable=False),
    Column('custom_role_id', String(36), ForeignKey('custom_roles.role_id'), nullable=True),
    Column('invited_by', String(100), nullable=True),
    Column('invited_at', DateTime(timezone=True), nullable=True),
    Column('accepted_at', DateTime(timezone=True), nullable=True),
    UniqueConstraint('event_id', 'user_id', name='uq_collaborators_event_user'),
    Index('idx_collaborators_event', 'event_id'),
)

# System roles held by a collaborator (several allowed)
collaborator_roles = Table(
    'collaborator_roles',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('collaborator_id', Integer, ForeignKey('collaborators.id'), nullable=False),
    Column('role', String(50), nullable=False),
    UniqueConstraint('collaborator_id', 'role', name='uq_collaborator_roles'),
    Index('idx_collaborator_roles_collaborator', 'collaborator_id'),
)
