"""Database engine and session factory construction.

Nothing here is created at import time: the application (or CLI, or a test)
builds an engine from settings and hands the session factory to the
authorization store explicitly.
"""

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from authz.core.config import settings


def create_db_engine(url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """Create a pooled SQLAlchemy engine for the authorization store."""
    url = url or settings.DATABASE_URL
    echo = settings.DEBUG if echo is None else echo

    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})

    connect_args = {}
    if url.startswith("postgresql"):
        connect_args["options"] = f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}"
    elif url.startswith("mysql"):
        # pymysql read timeout is in seconds
        connect_args["read_timeout"] = max(1, settings.DB_STATEMENT_TIMEOUT_MS // 1000)

    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
        connect_args=connect_args,
        echo=echo,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to the given engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
