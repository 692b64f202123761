# src/helpers/database.py
"""Async database session helpers for services and Celery tasks.

SQLAlchemy asyncio engine + async_sessionmaker (expire_on_commit=False),
SQLite via aiosqlite, PostgreSQL via asyncpg.
"""

import importlib
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

# Engines sind an den Event-Loop gebunden: jeder Task-Lauf baut seine eigene
_models = None


def _get_models():
    """Lazy load models module to avoid circular imports."""
    global _models
    if _models is None:
        _models = importlib.import_module(".02_models", "src")
    return _models


def create_session_factory(
    database_url: Optional[str] = None, echo: bool = False
) -> Tuple[AsyncEngine, async_sessionmaker]:
    """Erstellt Engine + Session-Factory.

    In-Memory SQLite nutzt StaticPool, damit alle Sessions dieselbe
    Connection (und damit dieselbe Datenbank) sehen.

    Args:
        database_url: z.B. sqlite+aiosqlite:///:memory: (default: Settings)
        echo: SQL-Logging

    Returns:
        (engine, session_factory)
    """
    if database_url is None:
        config = importlib.import_module(".01_config", "src")
        database_url = config.get_settings().database_url

    # Dialect-aware Engine Configuration
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False, "timeout": 30.0}}
        if ":memory:" in database_url or database_url.endswith("://"):
            kwargs["poolclass"] = StaticPool
        engine = create_async_engine(database_url, echo=echo, **kwargs)
    else:
        engine = create_async_engine(
            database_url,
            echo=echo,
            pool_size=20,
            max_overflow=40,
            pool_recycle=3600,
        )

    factory = async_sessionmaker(engine, expire_on_commit=False)
    return engine, factory


async def init_models(engine: AsyncEngine) -> None:
    """Legt alle Tabellen an (create_all, idempotent)."""
    models = _get_models()
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)

