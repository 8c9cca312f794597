from __future__ import annotations

from pathlib import Path

from handscore.settings import Settings


def test_defaults_derive_sqlite_path_from_data_dir(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("HANDSCORE_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("HANDSCORE_SQLITE_PATH", raising=False)
    monkeypatch.delenv("SQLITE_PATH", raising=False)

    config = Settings()

    assert config.data_path == tmp_path
    assert Path(config.sqlite_path) == tmp_path / "handscore.db"
    assert config.sqlite_url == f"sqlite:///{tmp_path / 'handscore.db'}"
    assert config.ocr_min_confidence == 0.7
    assert config.max_upload_bytes == 10 * 1024 * 1024


def test_unprefixed_aliases_are_accepted(monkeypatch, tmp_path) -> None:
    monkeypatch.delenv("HANDSCORE_DATA_DIR", raising=False)
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.example, https://b.example")

    config = Settings()

    assert config.data_path == tmp_path
    assert config.cors_origin_list == ["https://a.example", "https://b.example"]


def test_prefixed_variables_configure_the_pipeline(monkeypatch) -> None:
    monkeypatch.setenv("HANDSCORE_OCR_PROVIDERS", "Stub,tesseract")
    monkeypatch.setenv("HANDSCORE_PERSIST_RETRY_BACKOFFS", "0.1, 0.3")
    monkeypatch.setenv("HANDSCORE_ALLOWED_CONTENT_TYPES", "image/PNG")

    config = Settings()

    assert config.ocr_provider_names == ["stub", "tesseract"]
    assert config.persist_backoff_schedule == (0.1, 0.3)
    assert config.allowed_content_type_set == {"image/png"}


def test_wildcard_cors(monkeypatch) -> None:
    monkeypatch.delenv("HANDSCORE_CORS_ALLOW_ORIGINS", raising=False)
    monkeypatch.delenv("CORS_ALLOW_ORIGINS", raising=False)

    assert Settings().cors_origin_list == ["*"]
