from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from alembic import command
from alembic.config import Config as AlembicConfig
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from order_watch.config import PROJECT_ROOT, load_config

_engine_cache: dict[str, AsyncEngine] = {}
_session_factory_cache: dict[str, async_sessionmaker[AsyncSession]] = {}


def get_engine(database_url: str) -> AsyncEngine:
    if database_url not in _engine_cache:
        _engine_cache[database_url] = create_async_engine(database_url, future=True)
    return _engine_cache[database_url]


def _ensure_sessionmaker(database_url: str) -> async_sessionmaker[AsyncSession]:
    if database_url not in _session_factory_cache:
        engine = get_engine(database_url)
        _session_factory_cache[database_url] = async_sessionmaker(engine, expire_on_commit=False)
    return _session_factory_cache[database_url]


@asynccontextmanager
async def session_scope(database_url: str) -> AsyncIterator[AsyncSession]:
    factory = _ensure_sessionmaker(database_url)
    async with factory() as session:
        yield session


async def dispose_engines() -> None:
    engines = list(_engine_cache.values())
    _engine_cache.clear()
    _session_factory_cache.clear()
    for engine in engines:
        await engine.dispose()


def run_alembic_upgrade(revision: str = "head", database_url: str | None = None) -> None:
    config = load_config()
    config_path = (PROJECT_ROOT / config.alembic_config).resolve()
    alembic_cfg = AlembicConfig(str(config_path))
    alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", database_url or config.database_url)
    command.upgrade(alembic_cfg, revision)
