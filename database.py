from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from config import DATABASE_URL


def make_engine(url: str = DATABASE_URL):
    """Create an engine; SQLite gets thread-safe settings, in-memory SQLite one shared connection."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


def make_session_factory(bind):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


Base = declarative_base()
