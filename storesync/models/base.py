"""
Base database model and session management
"""
import os
import threading
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.pool import NullPool
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from storesync.config import get_settings
from storesync.utils.logger import log

# Base class for all models
Base = declarative_base()

_engine = None
_engine_lock = threading.Lock()
_session_factory = sessionmaker(autocommit=False, autoflush=False)


def _resolve_url(url: str) -> str:
    """Resolve relative SQLite paths to absolute so cwd changes can't break it"""
    if url.startswith("sqlite:///") and not url.startswith("sqlite:////"):
        rel_path = url[len("sqlite:///"):]
        return "sqlite:///" + os.path.abspath(rel_path)
    return url


def _build_engine(url: str):
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 60},
            poolclass=NullPool,
            pool_pre_ping=True
        )
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=5,
        pool_recycle=300,
    )


def get_engine():
    """Create the process-wide engine on first use; later calls reuse it."""
    global _engine
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                engine = _build_engine(_resolve_url(get_settings().database_url))
                _session_factory.configure(bind=engine)
                _engine = engine
    return _engine


def dispose_engine():
    """Drop the cached engine (shutdown and tests)."""
    global _engine
    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
            _engine = None


def SessionLocal() -> Session:
    """Open a new session bound to the shared engine"""
    get_engine()
    return _session_factory()


def get_db():
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _migrate_missing_columns():
    """Add columns defined in models but missing from existing DB tables.

    create_all() only creates missing *tables*; it cannot add new columns
    to tables that already exist.
    """
    engine = get_engine()
    inspector = inspect(engine)
    with engine.connect() as conn:
        for table_name, table in Base.metadata.tables.items():
            if not inspector.has_table(table_name):
                continue
            existing = {c["name"] for c in inspector.get_columns(table_name)}
            for col in table.columns:
                if col.name not in existing:
                    col_type = col.type.compile(dialect=engine.dialect)
                    sql = f'ALTER TABLE {table_name} ADD COLUMN {col.name} {col_type}'
                    log.info(f"Auto-migrating: {sql}")
                    conn.execute(text(sql))
        conn.commit()


def init_db():
    """Initialize database tables and auto-migrate new columns."""
    import storesync.models  # noqa: F401  (registers every table on Base.metadata)

    Base.metadata.create_all(bind=get_engine())
    _migrate_missing_columns()
