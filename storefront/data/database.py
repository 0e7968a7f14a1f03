"""
Engine and session factory.

The hosted Postgres is reached through its connection pooler, so engines are
built with NullPool. Without a DATABASE_URL the storefront runs with no
database: ``get_db`` yields None and routes that need rows answer with a
backend error.
"""
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

from storefront.core.config import get_config
from storefront.utils.logger import get_logger, kv

logger = get_logger("data.database")

Base = declarative_base()

engine: Optional[Engine] = None
SessionLocal: Optional[sessionmaker] = None


def make_session_factory(url: str, **engine_kwargs) -> sessionmaker:
    """Build an engine for ``url`` and return a session factory bound to it."""
    return sessionmaker(autocommit=False, autoflush=False, bind=create_engine(url, **engine_kwargs))


def configure(url: Optional[str] = None) -> Optional[Engine]:
    """Bind the module session factory. ``url`` defaults to the configured DATABASE_URL."""
    global engine, SessionLocal
    url = get_config().database_url if url is None else url
    engine, SessionLocal = None, None
    if not url:
        logger.info("database: %s", kv(method="configure", result="disabled", reason="DATABASE_URL not set"))
        return None
    try:
        SessionLocal = make_session_factory(url, pool_pre_ping=True, poolclass=NullPool)
    except Exception as e:
        logger.warning("database: %s", kv(method="configure", result="disabled", error=e))
        return None
    engine = SessionLocal.kw["bind"]
    logger.info("database: %s", kv(method="configure", result="configured", dialect=engine.dialect.name))
    return engine


def get_db() -> Iterator[Optional[Session]]:
    """FastAPI dependency: one session per request, or None when unconfigured."""
    if SessionLocal is None:
        yield None
        return
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
