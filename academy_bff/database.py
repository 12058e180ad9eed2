import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import settings

logger = logging.getLogger(__name__)


def normalize_database_url(url: str) -> str:
    """Hosting providers hand out postgres:// URLs, SQLAlchemy needs postgresql://"""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def make_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine, handling the SQLite special cases."""
    url = normalize_database_url(url)

    connect_args = {}
    kwargs = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if ":memory:" in url or url == "sqlite://":
            # One shared connection so every session sees the same in-memory DB
            kwargs["poolclass"] = StaticPool

    return create_engine(
        url,
        connect_args=connect_args,
        echo=echo,
        pool_pre_ping=True,
        **kwargs,
    )


database_url = normalize_database_url(settings.database_url)
engine = make_engine(database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind: Engine = None):
    """Create all tables in the database"""
    # Register models on the metadata before create_all
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables ready (%s)", (bind or engine).url.get_backend_name())
