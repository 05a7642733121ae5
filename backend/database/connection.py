# connection.py
import os
import logging
import threading

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./interviews.db"
DATABASE_URL = os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL


def _engine_kwargs(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    kwargs = {"connect_args": {"check_same_thread": False}}
    # In-memory sqlite only exists on one connection
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return kwargs


engine = create_engine(DATABASE_URL, echo=False, **_engine_kwargs(DATABASE_URL))

_tables_ready = False
_tables_lock = threading.Lock()


def init_db():
    # Create tables
    SQLModel.metadata.create_all(engine)


def ensure_tables() -> bool:
    """
    Create tables once the store is reachable.
    Retried on every session until it succeeds, so a database that was down
    at startup gets its schema when it comes back.
    """
    global _tables_ready
    if _tables_ready:
        return True
    with _tables_lock:
        if _tables_ready:
            return True
        try:
            init_db()
        except SQLAlchemyError as e:
            logger.error(f"Could not create tables: {e}")
            return False
        _tables_ready = True
        logger.info("Database tables ready")
        return True


def get_session():
    # Dependency for FastAPI routes
    ensure_tables()
    with Session(engine) as session:
        yield session


def check_database() -> bool:
    """Return True when the record store answers a trivial query."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning(f"Database check failed: {e}")
        return False
    return ensure_tables()
