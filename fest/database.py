# fest/database.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv
from sqlalchemy import event
from sqlalchemy.engine import URL
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker

load_dotenv()


def _default_db_url() -> str:
    """File-based SQLite DB at the project root when no Postgres is configured."""
    root = Path(__file__).resolve().parents[1]
    return f"sqlite+aiosqlite:///{(root / 'fest.db').as_posix()}"


def _translate_sslmode(value: str) -> Optional[str]:
    """Translate libpq sslmode values to asyncpg-compatible flags."""

    normalized = value.strip().lower()
    if normalized in {"require", "verify-ca", "verify-full"}:
        return "true"
    if normalized == "disable":
        return "false"

    # "prefer" / "allow" have no asyncpg equivalent; leave the driver default.
    return None


def _normalize_database_url(raw_url: Optional[str]) -> Optional[str]:
    """Force async drivers even if the URL omits them."""

    if not raw_url:
        return raw_url

    try:
        url = make_url(raw_url)
    except ArgumentError:
        return raw_url

    driver = url.drivername.lower()
    if driver in {"postgresql", "postgres"} or (
        driver.startswith("postgresql+") and driver != "postgresql+asyncpg"
    ):
        url = url.set(drivername="postgresql+asyncpg")
    elif driver == "sqlite":
        url = url.set(drivername="sqlite+aiosqlite")

    if url.drivername == "postgresql+asyncpg":
        query = dict(url.query)
        sslmode = query.pop("sslmode", None)
        if sslmode is not None:
            translated = _translate_sslmode(sslmode)
            if translated is not None:
                query["ssl"] = translated
        if query != dict(url.query):
            url = url.set(query=query)

    return url.render_as_string(hide_password=False)


def _pg_env_database_url(env: Mapping[str, str]) -> Optional[str]:
    """Construct a Postgres URL from libpq-style PG* variables."""

    host = env.get("PGHOST")
    database = env.get("PGDATABASE")
    user = env.get("PGUSER")

    if not (host and database and user):
        return None

    port = env.get("PGPORT")
    try:
        port_value = int(port) if port is not None else None
    except ValueError:
        port_value = None

    query: dict[str, str] = {}
    sslmode = env.get("PGSSLMODE")
    if sslmode:
        translated = _translate_sslmode(sslmode)
        if translated is not None:
            query["ssl"] = translated

    return URL.create(
        drivername="postgresql+asyncpg",
        username=user,
        password=env.get("PGPASSWORD") or None,
        host=host,
        port=port_value,
        database=database,
        query=query,
    ).render_as_string(hide_password=False)


def _database_url_from_env(env: Mapping[str, str]) -> Optional[str]:
    """Resolve the preferred database URL from environment variables."""

    for key in ("DATABASE_URL", "POSTGRES_URL"):
        normalized = _normalize_database_url(env.get(key))
        if normalized:
            return normalized

    return _pg_env_database_url(env)


DEFAULT_SQLITE_URL: str = _default_db_url()
DATABASE_URL: str = _database_url_from_env(os.environ) or DEFAULT_SQLITE_URL

ECHO = os.getenv("SQLALCHEMY_ECHO", "0").lower() in {"1", "true", "yes"}


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:  # noqa: ARG001
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str, *, echo: bool = ECHO) -> AsyncEngine:
    """Create an async engine; SQLite connections get foreign keys switched on."""

    bind = create_async_engine(database_url, echo=echo, pool_pre_ping=True)
    if bind.dialect.name == "sqlite":
        event.listen(bind.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return bind


def build_session_factory(bind_engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        bind=bind_engine,
        class_=AsyncSession,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


Base = declarative_base()

# Public globals that can be reconfigured at runtime.
engine: AsyncEngine
SessionLocal: sessionmaker
CURRENT_DATABASE_URL: str


def configure_engine(database_url: str) -> None:
    """Swap the global engine/session factory pair (used by the SQLite fallback)."""

    global engine, SessionLocal, CURRENT_DATABASE_URL

    engine = build_engine(database_url)
    SessionLocal = build_session_factory(engine)
    CURRENT_DATABASE_URL = database_url


configure_engine(DATABASE_URL)


async def get_db():
    """FastAPI dependency that yields an AsyncSession."""

    async with SessionLocal() as session:
        yield session


async def init_models(bind: Optional[AsyncEngine] = None) -> None:
    """Register every mapped class with ``Base`` and create missing tables."""

    import fest.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
