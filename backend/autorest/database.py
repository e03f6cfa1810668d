"""
Catalog database connection and session management

The catalog database stores which tables/collections are exposed and the
field/row policies attached to them. It is never the database that the
auto-REST engine queries on behalf of callers.
"""
import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from autorest.config import settings

Base = declarative_base()


def create_catalog_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create the SQLAlchemy engine for the catalog database.

    Args:
        database_url: SQLAlchemy URL of the catalog database
        echo: Log emitted SQL

    Returns:
        Engine bound to the catalog database
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        if url.database in (None, "", ":memory:"):
            # A single shared connection keeps the in-memory catalog alive
            return create_engine(
                database_url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )

    return create_engine(
        database_url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        echo=echo,
        connect_args={"connect_timeout": 10},
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to the given catalog engine."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_catalog(engine: Engine) -> None:
    """Create catalog tables that do not exist yet."""
    # Model modules register themselves on Base.metadata when imported
    import autorest.models  # noqa: F401

    if engine.url.get_backend_name() == "sqlite" and engine.url.database not in (None, "", ":memory:"):
        parent = os.path.dirname(engine.url.database)
        if parent:
            os.makedirs(parent, exist_ok=True)

    Base.metadata.create_all(bind=engine)


app_engine = create_catalog_engine(settings.DATABASE_URL, echo=settings.DEBUG)
AppSessionLocal = create_session_factory(app_engine)
