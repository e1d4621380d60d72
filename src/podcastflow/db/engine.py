"""
Database engine and session management for the shared public schema
"""
import logging
import threading
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import config

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_engine_lock = threading.Lock()

# Bound lazily so modules can be imported without a reachable database
SessionLocal = sessionmaker(autocommit=False, autoflush=False)


def _create_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=config.LOG_QUERIES,
        )

    return create_engine(
        url,
        pool_pre_ping=True,  # Detect dead connections before use
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_recycle=config.DB_POOL_RECYCLE,
        echo=config.LOG_QUERIES,
        connect_args={
            "connect_timeout": 10,
            "keepalives": 1,
            "keepalives_idle": 60,
            "application_name": "podcastflow",
        },
    )


def get_engine() -> Engine:
    """
    Get (creating on first use) the engine for the shared public schema

    Returns:
        SQLAlchemy engine bound to DATABASE_URL
    """
    global _engine
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                if not config.DATABASE_URL:
                    raise RuntimeError("DATABASE_URL is not set")
                _engine = _create_engine(config.DATABASE_URL)
                SessionLocal.configure(bind=_engine)
                _register_listeners(_engine)
                logger.info(
                    f"Database engine created (pool_size={config.DB_POOL_SIZE}, "
                    f"max_overflow={config.DB_MAX_OVERFLOW})"
                )
    return _engine


def set_engine(engine: Engine) -> None:
    """Bind the session factory to an externally created engine (scripts, tests)"""
    global _engine
    with _engine_lock:
        _engine = engine
        SessionLocal.configure(bind=engine)


def dispose_engine() -> None:
    global _engine
    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
            _engine = None
            logger.info("Database engine disposed")


def _register_listeners(engine: Engine) -> None:
    @event.listens_for(engine, "invalidate")
    def receive_invalidate(dbapi_conn, connection_record, exception):
        """Called when a connection is invalidated"""
        logger.warning(f"[POOL] Connection invalidated: {exception or 'Unknown'}")

    @event.listens_for(engine, "connect")
    def receive_connect(dbapi_conn, connection_record):
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("New database connection created")


def get_db() -> Generator:
    """
    Get database session with proper error handling.
    Use as FastAPI dependency: db: Session = Depends(get_db)
    """
    get_engine()
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        db.rollback()
        logger.error(f"Database session error: {e}", exc_info=True)
        raise
    finally:
        db.close()
