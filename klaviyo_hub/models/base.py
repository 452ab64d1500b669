"""
Base database model and session management
"""
import os
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.pool import NullPool
from sqlalchemy.orm import declarative_base, sessionmaker
from klaviyo_hub.config import get_settings
from klaviyo_hub.utils.logger import log

settings = get_settings()

# Resolve relative SQLite paths to absolute so cwd changes can't break it
_db_url = settings.database_url
if _db_url.startswith("sqlite:///") and not _db_url.startswith("sqlite:////"):
    rel_path = _db_url[len("sqlite:///"):]
    if rel_path != ":memory:":
        _db_url = "sqlite:///" + os.path.abspath(rel_path)


def _ensure_sqlite_dir(url: str):
    """SQLite won't create missing parent directories"""
    if not url.startswith("sqlite:///"):
        return
    db_path = url[len("sqlite:///"):]
    if db_path == ":memory:":
        return
    parent = os.path.dirname(db_path)
    if parent:
        os.makedirs(parent, exist_ok=True)


# Create database engine
if _db_url.startswith("sqlite"):
    _ensure_sqlite_dir(_db_url)
    engine = create_engine(
        _db_url,
        connect_args={"check_same_thread": False, "timeout": 60},
        poolclass=NullPool,
        pool_pre_ping=True
    )
else:
    engine = create_engine(
        _db_url,
        pool_pre_ping=True,
        pool_size=3,
        max_overflow=5,
        pool_recycle=300,
    )

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for all models
Base = declarative_base()


def get_db():
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _migrate_missing_columns(bind):
    """Add columns defined in models but missing from existing DB tables.

    create_all() only creates missing tables; it cannot add new columns to
    tables that already exist.
    """
    inspector = inspect(bind)
    with bind.connect() as conn:
        for table_name, table in Base.metadata.tables.items():
            if not inspector.has_table(table_name):
                continue
            existing = {c["name"] for c in inspector.get_columns(table_name)}
            for col in table.columns:
                if col.name not in existing:
                    col_type = col.type.compile(dialect=bind.dialect)
                    sql = f'ALTER TABLE {table_name} ADD COLUMN {col.name} {col_type}'
                    log.info(f"Auto-migrating: {sql}")
                    conn.execute(text(sql))
        conn.commit()


def init_db(bind=None):
    """Initialize database tables and auto-migrate new columns."""
    # Register tables on Base.metadata
    from klaviyo_hub.models import klaviyo_data  # noqa: F401

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    _migrate_missing_columns(bind)
