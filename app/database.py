from contextlib import contextmanager
from typing import Iterator

from sqlmodel import SQLModel, create_engine, Session

from app.core.config import get_settings

settings = get_settings()

# ---------------------------------------------------------
# Postgres connection (via pooler)
#
# - sslmode=require   : enforce SSL when running in the cloud
# - pool_size         : DB_POOL_SIZE, kept small for poolers with client caps
# - max_overflow      : DB_MAX_OVERFLOW
# - pool_pre_ping=True: validate connections before using them
#
# SQLite URLs (local runs, tests) skip all of the above and only relax
# the same-thread check, since FastAPI runs sync endpoints on a threadpool.
# ---------------------------------------------------------


def build_engine(db_url: str, **kwargs):
    if db_url.startswith("sqlite"):
        return create_engine(
            db_url,
            echo=False,
            connect_args={"check_same_thread": False},
            **kwargs,
        )

    # Append sslmode=require if it is not already present
    if "sslmode=" not in db_url:
        if "?" in db_url:
            db_url = db_url + "&sslmode=require"
        else:
            db_url = db_url + "?sslmode=require"

    return create_engine(
        db_url,
        echo=False,        # set to True if you want to debug SQL queries
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        **kwargs,
    )


engine = build_engine(settings.DATABASE_URL)


def create_db_and_tables() -> None:
    """
    Create all tables defined in SQLModel metadata if they do not exist.

    This is called once on application startup.
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


@contextmanager
def transaction(session: Session) -> Iterator[Session]:
    """
    Unit of work for service methods.

    Commits when the block finishes, rolls back and re-raises on any
    exception, so a multi-step mutation is applied completely or not at all.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
