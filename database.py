"""
Database Configuration and Session Management
============================================

This module provides the database engine, session factory, and table creation
functionality for the swap payment service.
"""

import logging
from typing import Optional
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from config import Config
from models import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create an engine for the given URL.

    SQLite URLs share one connection across threads (the FastAPI test client and
    the APScheduler executor run on different threads); other backends get a
    pre-pinged pool.
    """
    url = database_url or Config.DATABASE_URL
    if not url:
        raise ValueError("DATABASE_URL environment variable is required")

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)

    return create_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,    # Validate connections before use
        pool_recycle=3600,     # Recycle connections every hour
        pool_timeout=30,
        echo=False,
    )


def build_session_factory(bind: Engine) -> sessionmaker:
    """Session factory whose objects stay readable after commit"""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=bind,
    )


engine = build_engine()

# Session factory
SessionLocal = build_session_factory(engine)


def create_tables(bind: Optional[Engine] = None) -> bool:
    """Create all database tables if they don't exist"""
    target = bind or engine
    try:
        logger.info("🏗️ Creating database tables (if they don't exist)...")
        logger.info(f"📊 Found {len(Base.metadata.tables)} table models to create")
        Base.metadata.create_all(bind=target, checkfirst=True)
        logger.info(f"✅ Database schema verified: {', '.join(sorted(Base.metadata.tables))}")
        return True
    except Exception as e:
        logger.error(f"❌ Failed to create database tables: {e}", exc_info=True)
        return False


def test_connection(bind: Optional[Engine] = None) -> bool:
    """Test database connection"""
    try:
        with (bind or engine).connect() as connection:
            connection.execute(text("SELECT 1"))
            logger.info("✅ Database connection test successful")
            return True
    except Exception as e:
        logger.error(f"❌ Database connection test failed: {e}")
        return False
