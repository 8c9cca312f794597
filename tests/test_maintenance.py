from __future__ import annotations

import asyncio
from datetime import timedelta

from sqlmodel import Session

from handscore import db
from handscore.models import Evaluation, EvaluationStatus, ScheduledCleanup, utcnow
from handscore.pipeline.maintenance import recover_orphaned_evaluations, run_due_cleanups, run_maintenance_once
from handscore.storage_provider import LocalDiskProvider


class FlakyStorage:
    def __init__(self) -> None:
        self.deleted: list[str] = []

    async def delete(self, key: str) -> None:
        if key.endswith("locked.png"):
            raise OSError("object is locked")
        self.deleted.append(key)


def add(engine, *rows):
    with Session(engine) as session:
        for row in rows:
            session.add(row)
        session.commit()
        for row in rows:
            session.refresh(row)
    return rows


def test_recovery_sweep_fails_only_stale_processing_jobs(database, question_id) -> None:
    now = utcnow()
    stale, fresh, finished = add(
        database,
        Evaluation(subject_id="s", question_id=question_id, stage="extracting_text", updated_at=now - timedelta(hours=2)),
        Evaluation(subject_id="s", question_id=question_id, stage="uploading", updated_at=now),
        Evaluation(
            subject_id="s",
            question_id=question_id,
            status=EvaluationStatus.COMPLETED,
            updated_at=now - timedelta(hours=2),
        ),
    )

    recovered = recover_orphaned_evaluations(grace_seconds=900, now=now)

    assert recovered == [stale.id]
    with Session(database) as session:
        stale_row = session.get(Evaluation, stale.id)
        assert stale_row.status == EvaluationStatus.FAILED
        assert "extracting_text" in stale_row.error_message
        assert session.get(Evaluation, fresh.id).status == EvaluationStatus.PROCESSING
        assert session.get(Evaluation, finished.id).status == EvaluationStatus.COMPLETED


def test_due_cleanups_delete_blobs_and_survive_failures(database, question_id) -> None:
    now = utcnow()
    (evaluation,) = add(database, Evaluation(subject_id="s", question_id=question_id))
    due, locked, later = add(
        database,
        ScheduledCleanup(evaluation_id=evaluation.id, storage_key="evaluations/x/original-a.png", due_at=now - timedelta(minutes=1)),
        ScheduledCleanup(evaluation_id=evaluation.id, storage_key="evaluations/x/locked.png", due_at=now - timedelta(minutes=1)),
        ScheduledCleanup(evaluation_id=evaluation.id, storage_key="evaluations/x/original-b.png", due_at=now + timedelta(hours=1)),
    )
    storage = FlakyStorage()

    deleted, failed = asyncio.run(run_due_cleanups(storage, now=now))

    assert (deleted, failed) == (1, 1)
    assert storage.deleted == ["evaluations/x/original-a.png"]
    with Session(database) as session:
        assert session.get(ScheduledCleanup, due.id).done is True
        locked_row = session.get(ScheduledCleanup, locked.id)
        assert locked_row.done is False
        assert locked_row.attempts == 1
        assert locked_row.last_error == "object is locked"
        assert session.get(ScheduledCleanup, later.id).done is False

    assert asyncio.run(run_due_cleanups(storage, now=now)) == (0, 1)


def test_maintenance_once_removes_local_blobs(database, question_id, tmp_path) -> None:
    storage = LocalDiskProvider(tmp_path / "objects")
    key = "evaluations/job/original-answer.png"
    asyncio.run(storage.put_bytes(key, b"png-bytes", "image/png"))
    (evaluation,) = add(database, Evaluation(subject_id="s", question_id=question_id, status=EvaluationStatus.COMPLETED))
    add(database, ScheduledCleanup(evaluation_id=evaluation.id, storage_key=key, due_at=utcnow() - timedelta(seconds=1)))

    result = asyncio.run(run_maintenance_once(storage=storage))

    assert result.cleaned == 1
    assert result.recovered == 0
    assert not storage.resolve_local_path(key).exists()


def test_cleanup_sweep_keeps_database_work_off_the_event_loop(database, question_id, monkeypatch) -> None:
    now = utcnow()
    (evaluation,) = add(database, Evaluation(subject_id="s", question_id=question_id))
    add(
        database,
        ScheduledCleanup(evaluation_id=evaluation.id, storage_key="evaluations/x/original-a.png", due_at=now),
        ScheduledCleanup(evaluation_id=evaluation.id, storage_key="evaluations/x/locked.png", due_at=now),
    )
    opened_on_loop: list[bool] = []
    open_session = db.open_session

    def tracking_open_session():
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            opened_on_loop.append(False)
        else:
            opened_on_loop.append(True)
        return open_session()

    monkeypatch.setattr(db, "open_session", tracking_open_session)

    assert asyncio.run(run_due_cleanups(FlakyStorage(), now=now)) == (1, 1)
    assert opened_on_loop == [False, False]
