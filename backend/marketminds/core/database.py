# backend/marketminds/core/database.py
from contextlib import contextmanager
from datetime import datetime, timezone
from sqlalchemy import create_engine
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
import redis
from .config import settings
from .exceptions import StorageError

# PostgreSQL Database
_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
    connect_args=_connect_args,
)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)

Base = declarative_base()

# Redis Connection
redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)


def utcnow() -> datetime:
    """Naive UTC timestamp; all DateTime columns store naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Database Dependency
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Redis Dependency
def get_redis():
    return redis_client


@contextmanager
def storage_guard(db: Session):
    """Roll back and re-raise driver-level I/O failures as StorageError."""
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        db.rollback()
        raise StorageError(str(e.orig) if getattr(e, "orig", None) else str(e)) from e
