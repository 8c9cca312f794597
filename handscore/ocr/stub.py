"""Stub OCR provider for local/offline testing."""

from __future__ import annotations

import hashlib

from handscore.ocr.base import MB, BaseOCRProvider, OCROptions, OCRResult, ProviderDescriptor, WordBox

_STUB_TEXT = (
    "Introduction: the answer outlines the context of the question.\n\n"
    "Body: it discusses governance, citizen services and implementation challenges with examples.\n\n"
    "Conclusion: a way forward balancing opportunities and risks."
)


class StubOCRProvider(BaseOCRProvider):
    name = "stub"
    supported_languages = ("en", "hi")
    max_payload_bytes = 50 * MB

    def __init__(self, confidence: float = 0.85, descriptor: ProviderDescriptor | None = None) -> None:
        super().__init__(descriptor)
        self.confidence = confidence

    def _recognize(self, image_bytes: bytes, options: OCROptions) -> OCRResult:
        digest = hashlib.sha256(image_bytes).hexdigest()[:12]
        boxes = [
            WordBox(text=word, confidence=self.confidence, x=float(10 + idx * 40), y=10.0, width=36.0, height=18.0)
            for idx, word in enumerate(_STUB_TEXT.split()[:12])
        ]
        return OCRResult(
            text=_STUB_TEXT,
            confidence=self.confidence,
            provider=self.name,
            detected_language=options.language,
            bounding_boxes=boxes,
            raw={"source": "stub", "image_sha256": digest},
        )
