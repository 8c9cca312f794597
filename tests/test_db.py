from __future__ import annotations

from handscore import db


def columns(engine, table: str) -> set[str]:
    with engine.begin() as conn:
        return {row[1] for row in conn.exec_driver_sql(f"PRAGMA table_info('{table}')")}


def test_create_db_backfills_columns_on_older_tables(tmp_path, monkeypatch) -> None:
    engine = db.make_engine(f"sqlite:///{tmp_path / 'old.db'}")
    with engine.begin() as conn:
        conn.exec_driver_sql(
            "CREATE TABLE scheduledcleanup (id INTEGER PRIMARY KEY, evaluation_id VARCHAR, "
            "storage_key VARCHAR, due_at DATETIME, done BOOLEAN)"
        )
    monkeypatch.setattr(db, "engine", engine)

    db.create_db_and_tables()
    db.create_db_and_tables()

    assert {"attempts", "last_error"} <= columns(engine, "scheduledcleanup")
    assert {"priority", "ocr_metadata_json", "stage"} <= columns(engine, "evaluation")


def test_engine_uses_write_ahead_logging(tmp_path) -> None:
    engine = db.make_engine(f"sqlite:///{tmp_path / 'wal.db'}")

    with engine.connect() as conn:
        assert conn.exec_driver_sql("PRAGMA journal_mode").scalar() == "wal"
