"""Database engine and session helpers."""

from collections.abc import Generator

from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from handscore.settings import settings

# Columns added after the first release; create_all does not alter existing tables.
_ADDITIVE_COLUMNS: dict[str, dict[str, str]] = {
    "evaluation": {
        "priority": "VARCHAR DEFAULT 'accuracy'",
        "ocr_metadata_json": "VARCHAR",
    },
    "scheduledcleanup": {
        "attempts": "INTEGER DEFAULT 0",
        "last_error": "VARCHAR",
    },
}


def make_engine(sqlite_url: str) -> Engine:
    """Engine for the SQLite file shared by request handlers and background evaluations."""
    sqlite_engine = create_engine(sqlite_url, connect_args={"check_same_thread": False, "timeout": 30})

    @event.listens_for(sqlite_engine, "connect")
    def _sqlite_pragmas(dbapi_connection, connection_record) -> None:  # noqa: ARG001
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=30000")
        cursor.close()

    return sqlite_engine


engine = make_engine(settings.sqlite_url)


def create_db_and_tables() -> None:
    """Create all SQLModel tables and backfill columns missing from older databases."""
    import handscore.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
    with engine.begin() as conn:
        for table, additions in _ADDITIVE_COLUMNS.items():
            columns = {row[1] for row in conn.exec_driver_sql(f"PRAGMA table_info('{table}')") if len(row) > 1}
            for column, ddl in additions.items():
                if column not in columns:
                    conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))


def open_session() -> Session:
    # Resolved at call time so tests can swap ``db.engine``.
    return Session(engine)


def get_session() -> Generator[Session, None, None]:
    """Yield a database session for request-scoped dependency injection."""
    with Session(engine) as session:
        yield session
