from __future__ import annotations

import io
import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _reset_singletons() -> None:
    from handscore.pipeline.evaluation import reset_evaluation_pipeline
    from handscore.pipeline.progress import reset_progress_board
    from handscore.ratelimit import reset_rate_limiter
    from handscore.storage_provider import reset_storage_provider

    for reset in (reset_storage_provider, reset_rate_limiter, reset_evaluation_pipeline, reset_progress_board):
        reset()
    yield
    for reset in (reset_storage_provider, reset_rate_limiter, reset_evaluation_pipeline, reset_progress_board):
        reset()


@pytest.fixture
def database(tmp_path, monkeypatch):
    """Point settings and the engine at a fresh SQLite file under tmp_path."""
    from handscore import db
    from handscore.settings import settings

    monkeypatch.setattr(settings, "data_dir", str(tmp_path / "data"))
    monkeypatch.setattr(settings, "sqlite_path", str(tmp_path / "test.db"))
    monkeypatch.setattr(settings, "maintenance_interval_seconds", 0.0)
    engine = db.make_engine(settings.sqlite_url)
    monkeypatch.setattr(db, "engine", engine)
    db.create_db_and_tables()
    return engine


@pytest.fixture
def question_id(database) -> int:
    from sqlmodel import Session

    from handscore.models import Question

    with Session(database) as session:
        question = Question(
            title="E-governance",
            content="Discuss the role of e-governance in improving citizen services.",
            subject="Governance",
            marks=15,
            keywords_json=json.dumps(["governance", "citizen", "transparency"]),
        )
        session.add(question)
        session.commit()
        session.refresh(question)
        return question.id


@pytest.fixture
def answer_image() -> bytes:
    from PIL import Image, ImageDraw

    image = Image.new("RGB", (400, 300), color="white")
    draw = ImageDraw.Draw(image)
    for row in range(6):
        draw.line((20, 30 + row * 40, 380, 30 + row * 40), fill="black", width=2)
        draw.text((24, 10 + row * 40), f"line {row} of the answer", fill="black")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
