from __future__ import annotations

import json

import pytest

from handscore.ocr.stub import StubOCRProvider
from handscore.pipeline import transcribe
from handscore.settings import Settings, settings


def make_settings(**overrides) -> Settings:
    return Settings(**overrides)


def test_descriptors_follow_configured_order() -> None:
    config = make_settings(ocr_providers="stub, Tesseract")

    descriptors = transcribe.load_provider_descriptors(config)

    assert [descriptor.name for descriptor in descriptors] == ["stub", "tesseract"]
    assert [descriptor.priority for descriptor in descriptors] == [0, 1]
    assert descriptors[0].supported_languages == StubOCRProvider.supported_languages


def test_descriptors_can_come_from_json_config(tmp_path) -> None:
    path = tmp_path / "providers.json"
    path.write_text(
        json.dumps([{"name": "stub", "supported_languages": ["en", "ta"], "max_payload_bytes": 1024}]),
        encoding="utf-8",
    )
    config = make_settings(ocr_provider_config=str(path))

    (descriptor,) = transcribe.load_provider_descriptors(config)

    assert descriptor.supported_languages == ("en", "ta")
    assert descriptor.max_payload_bytes == 1024
    assert descriptor.supports("TA")


def test_json_config_must_be_a_list(tmp_path) -> None:
    path = tmp_path / "providers.json"
    path.write_text(json.dumps({"name": "stub"}), encoding="utf-8")

    with pytest.raises(ValueError):
        transcribe.load_provider_descriptors(make_settings(ocr_provider_config=str(path)))


def test_unknown_provider_name_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unknown OCR provider"):
        transcribe.load_provider_descriptors(make_settings(ocr_providers="stub,crystal-ball"))


def test_unavailable_providers_are_skipped(monkeypatch) -> None:
    monkeypatch.setattr(settings, "azure_document_endpoint", None)
    config = make_settings(ocr_providers="azure-read,stub")

    orchestrator = transcribe.build_ocr_orchestrator(config)

    assert [stats["name"] for stats in orchestrator.provider_stats()] == ["stub"]
