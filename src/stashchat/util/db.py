from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

import structlog
from sqlalchemy import URL, Engine, create_engine, make_url, text
from sqlalchemy.orm import Session

_logger = structlog.get_logger()

_engine: Engine | None = None


def configure_engine(database_url: str, statement_timeout_ms: int | None = None) -> Engine:
    """Create the process-wide engine used for read-only corpus queries.

    Plain ``postgresql://`` and ``postgres://`` URLs are bound to the psycopg
    (v3) driver. On Postgres every connection gets a server-side
    ``statement_timeout`` so a slow similarity query is cut off instead of
    stalling the request.
    """
    global _engine  # noqa: PLW0603
    url = _with_psycopg_driver(make_url(database_url))
    connect_args: dict[str, Any] = {}
    if statement_timeout_ms and url.get_backend_name() == "postgresql":
        connect_args["options"] = f"-c statement_timeout={int(statement_timeout_ms)}"

    _engine = create_engine(url, pool_pre_ping=True, connect_args=connect_args)
    _logger.info(
        "db_engine_configured",
        url=url.render_as_string(hide_password=True),
        statement_timeout_ms=statement_timeout_ms,
    )
    return _engine


def _with_psycopg_driver(url: URL) -> URL:
    if url.drivername in ("postgresql", "postgres"):
        return url.set(drivername="postgresql+psycopg")
    return url


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Database engine not configured - call configure_engine() first")
    return _engine


@contextmanager
def get_session() -> Generator[Session, None, None]:
    with Session(get_engine()) as session:
        yield session


def check_vector_extension() -> bool:
    """Return True when the ``vector`` extension is installed in the database."""
    with get_engine().connect() as conn:
        row = conn.execute(
            text("SELECT 1 FROM pg_extension WHERE extname = 'vector'")
        ).first()
    return row is not None
