"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- In-memory SQLite support for tests
- Table definitions for the marketplace resources
"""
from typing import Optional
from contextlib import contextmanager
import logging

from sqlalchemy import (
    create_engine,
    MetaData,
    Table,
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    Numeric,
    Text,
    Index,
    ForeignKey,
    UniqueConstraint,
    text,
    false,
)
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func

from flashdeck.core.config import settings

logger = logging.getLogger(__name__)

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
    """TEST_DATABASE_URL wins over DATABASE_URL when set."""
    return settings.TEST_DATABASE_URL or settings.DATABASE_URL


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
        # One shared connection so in-memory databases survive across sessions
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

    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def dispose_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


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


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


ROLE_MEMBER = 1
ROLE_ADMIN = 2

# Largest value a signed 64-bit INTEGER column holds
MAX_INTEGER = 2 ** 63 - 1

users = Table(
    'users',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('name', String(120), nullable=False),
    Column('email', String(255), nullable=False, unique=True),
    Column('password_hash', String(255), nullable=True),
    Column('role_id', Integer, nullable=False, server_default=text(str(ROLE_MEMBER))),
    Column('image', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

categories = Table(
    'categories',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('name', String(100), nullable=False, unique=True),
    Column('description', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

sets = Table(
    'sets',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('title', String(255), nullable=False),
    Column('description', Text, nullable=True),
    Column('educator_id', Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('category_id', Integer, ForeignKey('categories.id', ondelete='SET NULL'), nullable=True),
    Column('price', Numeric(10, 2), nullable=False, server_default=text('0')),
    Column('is_subscriber_only', Boolean, nullable=False, server_default=false()),
    Column('hidden', Boolean, nullable=False, server_default=false()),
    Column('featured', Boolean, nullable=False, server_default=false()),
    Column('thumbnail', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_sets_educator_id', 'educator_id'),
    Index('idx_sets_category_id', 'category_id'),
    Index('idx_sets_created_at', 'created_at'),
)

cards = Table(
    'cards',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('set_id', Integer, ForeignKey('sets.id', ondelete='CASCADE'), nullable=False),
    Column('front', Text, nullable=True),
    Column('back', Text, nullable=True),
    Column('hint', Text, nullable=True),
    Column('front_image', Text, nullable=True),
    Column('back_image', Text, nullable=True),
    Index('idx_cards_set_id', 'set_id'),
)

tags = Table(
    'tags',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('name', String(100), nullable=False, unique=True),
)

set_tags = Table(
    'set_tags',
    metadata,
    Column('set_id', Integer, ForeignKey('sets.id', ondelete='CASCADE'), primary_key=True),
    Column('tag_id', Integer, ForeignKey('tags.id', ondelete='CASCADE'), primary_key=True),
)

purchases = Table(
    'purchases',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('set_id', Integer, ForeignKey('sets.id', ondelete='CASCADE'), nullable=False),
    Column('stripe_session_id', String(255), nullable=True),
    Column('date', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('user_id', 'set_id', name='uq_purchases_user_set'),
)

subscriptions = Table(
    'subscriptions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('educator_id', Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('stripe_subscription_id', String(255), nullable=True, unique=True),
    Column('date', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('user_id', 'educator_id', name='uq_subscriptions_user_educator'),
)

user_likes = Table(
    'user_likes',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('set_id', Integer, ForeignKey('sets.id', ondelete='CASCADE'), nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('user_id', 'set_id', name='uq_user_likes_user_set'),
)

view_history = Table(
    'view_history',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('set_id', Integer, ForeignKey('sets.id', ondelete='CASCADE'), nullable=False),
    Column('viewed_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('completed', Boolean, nullable=False, server_default=false()),
    Column('num_cards_viewed', Integer, nullable=False, server_default=text('0')),
    Index('idx_view_history_user_viewed', 'user_id', 'viewed_at'),
)
