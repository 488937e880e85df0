"""
Relational database setup for the Todo store.
Builds the SQLAlchemy engine and session factory from the `database` config section.
"""

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from loguru import logger

Base = declarative_base()


def create_db_engine(config: dict) -> Engine:
    url = config.get("url", "sqlite:///./dataservice.db")
    if url.startswith("sqlite"):
        # store calls run in worker threads
        options = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
        return create_engine(url, **options)
    return create_engine(url, pool_pre_ping=True, pool_recycle=300)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_schema(engine: Engine) -> None:
    """Creates missing tables. Development convenience, like EnsureCreated."""
    # registers the Todo table on Base.metadata
    from . import todos  # noqa: F401

    Base.metadata.create_all(engine)


def check_database_connection(engine: Engine) -> bool:
    """Check if database connection is working."""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
