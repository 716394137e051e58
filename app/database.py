# app/database.py
from sqlmodel import SQLModel, create_engine, Session

from app.core.config import get_settings

settings = get_settings()

# ---------------------------------------------------------
# Supabase Postgres connection (via pooler)
#
# - sslmode=require   : enforce SSL when running in the cloud
# - pool_size=2       : the pooler in Session mode limits clients
# - max_overflow=0    : do not open extra connections beyond the pool
# - pool_pre_ping=True: validate connections before using them
#
# Local SQLite URLs (tests, quick demos) get none of the pool options.
# ---------------------------------------------------------


def _is_postgres(url: str) -> bool:
    return url.startswith(("postgresql", "postgres://"))


def _with_sslmode(url: str) -> str:
    """Append sslmode=require if it is not already present."""
    if "sslmode=" in url:
        return url
    return url + ("&" if "?" in url else "?") + "sslmode=require"


def build_engine(url: str):
    if _is_postgres(url):
        return create_engine(
            _with_sslmode(url),
            echo=False,        # set to True if you want to debug SQL queries
            pool_pre_ping=True,
            pool_size=2,
            max_overflow=0,
        )
    return create_engine(url, echo=False, connect_args={"check_same_thread": False})


engine = build_engine(settings.DATABASE_URL)


def create_db_and_tables() -> None:
    """
    Create all tables defined in SQLModel metadata if they do not exist.

    Called on application startup when AUTO_CREATE_TABLES is set.
    """
    SQLModel.metadata.create_all(engine)


def get_session():
    """
    FastAPI dependency that yields a SQLModel Session.

    Usage:

        from fastapi import Depends

        @router.get("/example")
        def example_endpoint(session: Session = Depends(get_session)):
            ...
    """
    with Session(engine) as session:
        yield session
