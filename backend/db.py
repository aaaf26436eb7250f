from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool
import logging
import os
from models import Base, Setting, DEFAULT_SETTINGS

logger = logging.getLogger(__name__)


def get_engine(db_path: str):
    """Create SQLAlchemy engine for SQLite with connection pooling

    Log writes arrive from worker threads (asyncio.to_thread) while the API
    reads from the FastAPI threadpool, so same-thread checks are disabled.
    """
    db_dir = os.path.dirname(db_path)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)

    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={
            "check_same_thread": False,
            "timeout": 30,
        },
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600
    )

    # Set up SQLite PRAGMAs on every new connection
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        """Configure SQLite for concurrent append-mostly access."""
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA busy_timeout=30000")  # 30 seconds
        cursor.close()

    return engine


def seed_default_settings(session: Session):
    """Insert default settings that are missing (never overwrites)."""
    existing = {row.key for row in session.query(Setting).all()}
    added = 0
    for key, value in DEFAULT_SETTINGS.items():
        if key not in existing:
            session.add(Setting(key=key, value=value))
            added += 1
    if added:
        session.commit()
        logger.info(f"Seeded {added} default settings")


def init_database(engine):
    """Create tables and seed defaults. Safe to call on every startup."""
    Base.metadata.create_all(bind=engine)

    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    try:
        seed_default_settings(session)
    finally:
        session.close()

    logger.info(f"Database schema initialized: {engine.url.database}")
