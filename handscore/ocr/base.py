"""OCR provider interfaces."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)

MB = 1024 * 1024


class OCRError(Exception):
    """A single provider's failed recognition attempt."""

    def __init__(self, message: str, provider: str, code: str = "PROVIDER_ERROR", cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.code = code
        self.cause = cause

    def __str__(self) -> str:
        return self.message


class OCRAggregateError(OCRError):
    """Every provider in the trial order failed."""

    def __init__(self, failures: list[OCRError]) -> None:
        if failures:
            detail = "; ".join(f"{failure.provider}: {failure.message}" for failure in failures)
            message = f"All OCR providers failed. Errors: {detail}"
        else:
            message = "All OCR providers failed. Errors: no OCR providers are configured"
        super().__init__(message, provider="orchestrator", code="ALL_PROVIDERS_FAILED")
        self.failures = failures


def normalize_confidence(value: float | None, scale: float = 1.0) -> float:
    """Convert a provider-native confidence on ``[0, scale]`` to ``[0, 1]``."""
    if value is None or scale <= 0:
        return 0.0
    return min(1.0, max(0.0, float(value) / scale))


@dataclass(frozen=True)
class ProviderDescriptor:
    name: str
    supported_languages: tuple[str, ...]
    max_payload_bytes: int
    priority: int = 0

    def supports(self, language: str | None) -> bool:
        if not language:
            return True
        return language.lower() in {lang.lower() for lang in self.supported_languages}


@dataclass
class OCROptions:
    language: str | None = None
    preferred_provider: str | None = None
    detect_orientation: bool = False


@dataclass
class WordBox:
    text: str
    confidence: float
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height


@dataclass
class OCRResult:
    text: str
    confidence: float
    provider: str
    processing_time_ms: int = 0
    detected_language: str | None = None
    bounding_boxes: list[WordBox] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"OCR confidence must be normalized to [0, 1], got {self.confidence!r}")

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    def metadata(self) -> dict[str, Any]:
        return {
            "processing_time_ms": self.processing_time_ms,
            "detected_language": self.detected_language,
            "word_count": self.word_count,
            "bounding_boxes": [asdict(box) for box in self.bounding_boxes],
            "raw": self.raw,
        }


class OCRProvider(Protocol):
    """OCR provider protocol."""

    name: str
    descriptor: ProviderDescriptor

    async def recognize(self, image_bytes: bytes, options: OCROptions) -> OCRResult:
        """Perform one recognition attempt; failures surface only as OCRError."""


class BaseOCRProvider:
    """Runs a blocking SDK call off the event loop and wraps every failure in OCRError."""

    name = "base"
    error_code = "PROVIDER_ERROR"
    supported_languages: tuple[str, ...] = ("en",)
    max_payload_bytes = 10 * MB

    def __init__(self, descriptor: ProviderDescriptor | None = None) -> None:
        self.descriptor = descriptor or ProviderDescriptor(
            name=self.name,
            supported_languages=self.supported_languages,
            max_payload_bytes=self.max_payload_bytes,
        )

    def _recognize(self, image_bytes: bytes, options: OCROptions) -> OCRResult:
        raise NotImplementedError

    async def recognize(self, image_bytes: bytes, options: OCROptions) -> OCRResult:
        started = time.perf_counter()
        try:
            result = await asyncio.to_thread(self._recognize, image_bytes, options)
        except OCRError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise OCRError(f"{self.name} failed: {exc}", provider=self.name, code=self.error_code, cause=exc) from exc
        result.processing_time_ms = int((time.perf_counter() - started) * 1000)
        return result
