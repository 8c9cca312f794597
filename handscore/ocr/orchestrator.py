"""Multi-provider OCR with per-provider timeouts and a confidence short-circuit.

Providers are tried one at a time in trial order. Each attempt races a fixed
timeout; a provider that loses the race is recorded as failed and its eventual
outcome is discarded. The first result whose confidence meets the threshold is
returned immediately. Otherwise the highest-confidence result wins, earliest
provider first on ties, and only when every provider failed is an error raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence

from handscore.ocr.base import OCRAggregateError, OCRError, OCROptions, OCRProvider, OCRResult

logger = logging.getLogger(__name__)


def _discard_late_outcome(task: asyncio.Future) -> None:
    # Retrieve the outcome so a late failure is not reported as "never retrieved".
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("late OCR attempt failed after timeout", extra={"error": str(exc)})


class OCROrchestrator:
    def __init__(
        self,
        providers: Sequence[OCRProvider],
        min_confidence: float = 0.7,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._providers: dict[str, OCRProvider] = {}
        for provider in providers:
            self._providers[provider.name] = provider
        # Static default priority; stable for providers sharing a priority value.
        self._default_order = [
            provider.name
            for _, provider in sorted(enumerate(self._providers.values()), key=lambda item: (item[1].descriptor.priority, item[0]))
        ]
        self.min_confidence = min_confidence
        self.timeout_seconds = timeout_seconds

    @property
    def provider_names(self) -> list[str]:
        return list(self._default_order)

    def provider_order(self, preferred_provider: str | None = None) -> list[str]:
        if preferred_provider and preferred_provider in self._providers:
            return [preferred_provider, *[name for name in self._default_order if name != preferred_provider]]
        return list(self._default_order)

    async def _attempt(self, provider: OCRProvider, image_bytes: bytes, options: OCROptions) -> OCRResult:
        if len(image_bytes) > provider.descriptor.max_payload_bytes:
            raise OCRError(
                f"{provider.name} rejected payload of {len(image_bytes)} bytes (max {provider.descriptor.max_payload_bytes})",
                provider=provider.name,
                code="PAYLOAD_TOO_LARGE",
            )

        task = asyncio.ensure_future(provider.recognize(image_bytes, options))
        done, _ = await asyncio.wait({task}, timeout=self.timeout_seconds)
        if task not in done:
            task.add_done_callback(_discard_late_outcome)
            raise OCRError(
                f"{provider.name} timed out after {self.timeout_seconds:g}s",
                provider=provider.name,
                code="TIMEOUT",
            )

        try:
            return task.result()
        except OCRError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise OCRError(f"{provider.name} failed: {exc}", provider=provider.name, cause=exc) from exc

    async def process_image(self, image_bytes: bytes, options: OCROptions | None = None) -> OCRResult:
        options = options or OCROptions()
        started = time.perf_counter()
        results: list[OCRResult] = []
        failures: list[OCRError] = []

        for name in self.provider_order(options.preferred_provider):
            provider = self._providers[name]
            logger.info("Attempting OCR", extra={"provider": name})
            try:
                result = await self._attempt(provider, image_bytes, options)
            except OCRError as exc:
                failures.append(exc)
                logger.warning("OCR attempt failed", extra={"provider": name, "code": exc.code, "error": exc.message})
                continue

            results.append(result)
            if result.confidence >= self.min_confidence:
                logger.info(
                    "OCR confidence threshold met",
                    extra={
                        "provider": name,
                        "confidence": result.confidence,
                        "elapsed_ms": int((time.perf_counter() - started) * 1000),
                    },
                )
                return result
            logger.info("OCR completed below confidence threshold", extra={"provider": name, "confidence": result.confidence})

        if results:
            # max() keeps the first of equal elements, so ties go to the earliest provider.
            best = max(results, key=lambda item: item.confidence)
            logger.info(
                "Returning best OCR result below threshold",
                extra={"provider": best.provider, "confidence": best.confidence, "attempts": len(results) + len(failures)},
            )
            return best

        raise OCRAggregateError(failures)

    def best_provider_for_language(self, language: str) -> str | None:
        for name in self._default_order:
            if self._providers[name].descriptor.supports(language):
                return name
        return self._default_order[0] if self._default_order else None

    def provider_stats(self) -> list[dict[str, object]]:
        return [
            {
                "name": name,
                "is_available": True,
                "supported_languages": list(self._providers[name].descriptor.supported_languages),
                "max_payload_bytes": self._providers[name].descriptor.max_payload_bytes,
                "priority": self._providers[name].descriptor.priority,
            }
            for name in self._default_order
        ]
