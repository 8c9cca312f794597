"""OCR provider registry, resolved once from static configuration."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from handscore.ocr.aws_textract import AWSTextractProvider
from handscore.ocr.azure_read import AzureReadProvider
from handscore.ocr.base import BaseOCRProvider, OCRProvider, ProviderDescriptor
from handscore.ocr.google_vision import GoogleVisionProvider
from handscore.ocr.orchestrator import OCROrchestrator
from handscore.ocr.stub import StubOCRProvider
from handscore.ocr.tesseract_provider import TesseractProvider
from handscore.settings import Settings

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type[BaseOCRProvider]] = {
    GoogleVisionProvider.name: GoogleVisionProvider,
    AzureReadProvider.name: AzureReadProvider,
    AWSTextractProvider.name: AWSTextractProvider,
    TesseractProvider.name: TesseractProvider,
    StubOCRProvider.name: StubOCRProvider,
}


def load_provider_descriptors(config: Settings) -> list[ProviderDescriptor]:
    """Return the ordered provider descriptors; list position is trial priority."""
    if config.ocr_provider_config:
        entries = json.loads(Path(config.ocr_provider_config).read_text(encoding="utf-8"))
        if not isinstance(entries, list):
            raise ValueError("OCR provider config must be a JSON list")
        descriptors = []
        for priority, entry in enumerate(entries):
            name = str(entry["name"]).lower()
            defaults = _provider_class(name)
            descriptors.append(
                ProviderDescriptor(
                    name=name,
                    supported_languages=tuple(entry.get("supported_languages") or defaults.supported_languages),
                    max_payload_bytes=int(entry.get("max_payload_bytes") or defaults.max_payload_bytes),
                    priority=priority,
                )
            )
        return descriptors

    descriptors = []
    for priority, name in enumerate(config.ocr_provider_names):
        provider_cls = _provider_class(name)
        descriptors.append(
            ProviderDescriptor(
                name=name,
                supported_languages=provider_cls.supported_languages,
                max_payload_bytes=provider_cls.max_payload_bytes,
                priority=priority,
            )
        )
    return descriptors


def _provider_class(name: str) -> type[BaseOCRProvider]:
    try:
        return PROVIDER_CLASSES[name]
    except KeyError:
        raise ValueError(f"Unknown OCR provider '{name}'. Use one of: {', '.join(PROVIDER_CLASSES)}") from None


def get_ocr_provider(descriptor: ProviderDescriptor) -> OCRProvider:
    return _provider_class(descriptor.name)(descriptor=descriptor)


def build_ocr_providers(config: Settings) -> list[OCRProvider]:
    providers: list[OCRProvider] = []
    for descriptor in load_provider_descriptors(config):
        try:
            providers.append(get_ocr_provider(descriptor))
        except RuntimeError as exc:
            logger.warning("OCR provider unavailable, skipping", extra={"provider": descriptor.name, "error": str(exc)})
    if not providers:
        logger.warning("No OCR providers could be initialised; every evaluation will fail at text extraction")
    return providers


def build_ocr_orchestrator(config: Settings) -> OCROrchestrator:
    return OCROrchestrator(
        build_ocr_providers(config),
        min_confidence=config.ocr_min_confidence,
        timeout_seconds=config.ocr_timeout_seconds,
    )
