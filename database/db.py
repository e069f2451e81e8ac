"""
Database Configuration Module

Connection strategy:
- DATABASE_URL wins when set (any SQLAlchemy URL, tests use SQLite)
- otherwise a PostgreSQL URI is built from db_user / db_password / db_host /
  db_port / db_name

Pooling is only applied to server databases. NDR writes are short
read-modify-write cycles guarded by the `version` column, so the pool is
sized for many short checkouts rather than long transactions.
"""

import os
from datetime import datetime
from urllib.parse import quote_plus
import uuid as uuid
from pytz import timezone
from dotenv import load_dotenv

load_dotenv()

from sqlalchemy import Column, TIMESTAMP, Boolean, Integer, Uuid, create_engine, event
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import Session
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool

from logger import logging


# ============================================
# DATABASE CONNECTION CONFIGURATION
# ============================================

DBTYPE_POSTGRES = "postgresql"


def build_database_uri() -> str:
    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        return database_url

    return "%s://%s:%s@%s:%s/%s" % (
        DBTYPE_POSTGRES,
        os.environ.get("db_user", "postgres"),
        quote_plus(os.environ.get("db_password", "")),
        os.environ.get("db_host", "localhost"),
        os.environ.get("db_port", "5432"),
        os.environ.get("db_name", "ndr"),
    )


CORE_SQLALCHEMY_DATABASE_URI = build_database_uri()

# ============================================
# CONNECTION POOL SETTINGS
# ============================================

POOL_CONFIG = {
    # Base pool size - always maintain this many connections
    "pool_size": 20,
    # Additional connections allowed during peak webhook bursts
    "max_overflow": 20,
    # Timeout waiting for a connection from pool (seconds)
    "pool_timeout": 30,
    # Test connection health before using (handles stale connections)
    "pool_pre_ping": True,
    # Recycle connections after 30 minutes
    "pool_recycle": 1800,
    "poolclass": QueuePool,
}


def build_engine(uri: str):
    if uri.startswith("sqlite"):
        # bulk dispatch workers share the engine across threads
        return create_engine(
            uri, echo=False, connect_args={"check_same_thread": False}
        )
    return create_engine(uri, echo=False, **POOL_CONFIG)


db_engine = build_engine(CORE_SQLALCHEMY_DATABASE_URI)

# ============================================
# SESSION CONFIGURATION
# ============================================

SessionLocal = sessionmaker(
    autoflush=False,  # Manual flush for better control
    bind=db_engine,
    expire_on_commit=False,  # Prevent attribute expiration on commit
)

# Timezone configuration
UTC = timezone("UTC")
IST = timezone("Asia/Kolkata")


def time_now():
    """Get current UTC time"""
    return datetime.now(UTC)


def time_now_ist():
    """Get current IST time"""
    return datetime.now(IST)


def as_utc(value):
    """
    Attach UTC to naive datetimes read back from backends that drop the
    offset (SQLite). Aware values are converted to UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return UTC.localize(value)
    return value.astimezone(UTC)


# ============================================
# CONNECTION POOL MONITORING
# ============================================


@event.listens_for(db_engine, "checkout")
def receive_checkout(dbapi_connection, connection_record, connection_proxy):
    """Log when connection is checked out from pool"""
    logging.debug("Connection checked out from pool")


@event.listens_for(db_engine, "checkin")
def receive_checkin(dbapi_connection, connection_record):
    """Log when connection is returned to pool"""
    logging.debug("Connection returned to pool")


def get_pool_status():
    """
    Get current connection pool status.

    Returns:
        dict: Pool status including size, checked out, overflow
    """
    pool = db_engine.pool
    if not isinstance(pool, QueuePool):
        return {"pool_class": type(pool).__name__}

    return {
        "pool_size": pool.size(),
        "checked_out": pool.checkedout(),
        "overflow": pool.overflow(),
        "checked_in": pool.checkedin(),
    }


# ============================================
# DECLARATIVE BASE
# ============================================

DBBase = declarative_base()


def init_models():
    """Create all tables known to the declarative base."""
    # importing registers every model on DBBase.metadata
    import models  # noqa: F401

    DBBase.metadata.create_all(bind=db_engine)
    logging.info("Database tables initialised")


# ============================================
# BASE MODEL CLASS
# ============================================


class DBBaseClass:
    """
    Base class for all database models.

    Provides:
    - Auto-incrementing primary key (id)
    - UUID for external references
    - Created/updated timestamps
    - Soft delete flag
    """

    # Primary key
    id = Column(Integer, primary_key=True, unique=True, autoincrement=True)

    # UUID for external API references (don't expose internal IDs)
    uuid = Column(Uuid(as_uuid=True), default=uuid.uuid4, unique=True, nullable=False)

    # Timestamps
    created_at = Column(TIMESTAMP(timezone=True), default=time_now, nullable=False)
    updated_at = Column(
        TIMESTAMP(timezone=True),
        default=time_now,
        onupdate=time_now,
        nullable=False,
    )

    # Soft delete
    is_deleted = Column(Boolean, default=False, index=True)

    @classmethod
    def get_by_uuid(cls, db: Session, uuid):
        """Get record by UUID"""
        return db.query(cls).filter(cls.uuid == uuid, cls.is_deleted.is_(False)).first()

    @classmethod
    def get_by_id(cls, db: Session, id):
        """Get record by ID"""
        return db.query(cls).filter(cls.id == id, cls.is_deleted.is_(False)).first()

    def soft_delete(self):
        """Mark record as deleted (soft delete)"""
        self.is_deleted = True
        self.updated_at = time_now()

    def to_dict(self):
        """
        Convert model to dictionary.
        Override in subclasses for custom serialization.
        """
        return {
            "id": self.id,
            "uuid": str(self.uuid),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
