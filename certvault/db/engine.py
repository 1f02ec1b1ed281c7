"""Async SQLAlchemy engine and session factory.

When DATABASE_URL is configured, ``create_session_factory`` returns an
async engine for PostgreSQL via asyncpg plus a session factory the
PostgreSQL repository opens one session per operation from.

When DATABASE_URL is None, the service registry falls back to the
in-memory repository and no engine is created.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from certvault.core.config import Settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all table models."""


def create_session_factory(
    settings: Settings,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    if not settings.database_url:
        raise RuntimeError(
            "DATABASE_URL is not configured; cannot create database engine"
        )
    engine = create_async_engine(
        settings.database_url,
        echo=settings.is_dev,  # log SQL in dev only
        pool_size=5,
        max_overflow=10,
    )
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    logger.info("Database engine created: %s", engine.url)
    return engine, factory
