from __future__ import annotations

import asyncio
import itertools

import pytest

from handscore.ocr.base import (
    MB,
    BaseOCRProvider,
    OCRAggregateError,
    OCRError,
    OCROptions,
    OCRResult,
    ProviderDescriptor,
    normalize_confidence,
)
from handscore.ocr.orchestrator import OCROrchestrator


class FakeProvider:
    def __init__(
        self,
        name: str,
        confidence: float | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
        priority: int = 0,
        max_payload_bytes: int = 10 * MB,
        languages: tuple[str, ...] = ("en",),
    ) -> None:
        self.name = name
        self.descriptor = ProviderDescriptor(name, languages, max_payload_bytes, priority)
        self.confidence = confidence
        self.error = error
        self.delay = delay
        self.calls = 0

    async def recognize(self, image_bytes: bytes, options: OCROptions) -> OCRResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return OCRResult(text=f"{self.name} text", confidence=self.confidence, provider=self.name)


def ordered(*providers: FakeProvider) -> list[FakeProvider]:
    for priority, provider in enumerate(providers):
        provider.descriptor = ProviderDescriptor(
            provider.name,
            provider.descriptor.supported_languages,
            provider.descriptor.max_payload_bytes,
            priority,
        )
    return list(providers)


def run(orchestrator: OCROrchestrator, options: OCROptions | None = None, payload: bytes = b"image") -> OCRResult:
    return asyncio.run(orchestrator.process_image(payload, options))


def test_below_threshold_result_does_not_short_circuit() -> None:
    a = FakeProvider("a", error=OCRError("boom", provider="a"))
    b = FakeProvider("b", confidence=0.6)
    c = FakeProvider("c", confidence=0.8)
    orchestrator = OCROrchestrator(ordered(a, b, c), min_confidence=0.7)

    result = run(orchestrator)

    assert result.provider == "c"
    assert result.confidence == 0.8
    assert (a.calls, b.calls, c.calls) == (1, 1, 1)


def test_best_result_returned_when_no_provider_meets_threshold() -> None:
    a = FakeProvider("a", confidence=0.5)
    b = FakeProvider("b", confidence=0.4)
    orchestrator = OCROrchestrator(ordered(a, b), min_confidence=0.9)

    result = run(orchestrator)

    assert result.provider == "a"
    assert b.calls == 1


def test_confidence_ties_go_to_earliest_provider() -> None:
    a = FakeProvider("a", confidence=0.5)
    b = FakeProvider("b", confidence=0.5)
    orchestrator = OCROrchestrator(ordered(a, b), min_confidence=0.9)

    assert run(orchestrator).provider == "a"


def test_all_failures_raise_aggregate_error_in_trial_order() -> None:
    a = FakeProvider("a", error=OCRError("quota exceeded", provider="a"))
    b = FakeProvider("b", error=RuntimeError("socket closed"))
    c = FakeProvider("c", delay=0.5, confidence=0.99)
    orchestrator = OCROrchestrator(ordered(a, b, c), min_confidence=0.7, timeout_seconds=0.05)

    with pytest.raises(OCRAggregateError) as exc_info:
        run(orchestrator)

    error = exc_info.value
    assert [failure.provider for failure in error.failures] == ["a", "b", "c"]
    assert error.failures[2].code == "TIMEOUT"
    assert error.message.startswith("All OCR providers failed.")
    for name in ("a", "b", "c"):
        assert f"{name}: " in error.message


def test_no_configured_providers_raises_aggregate_error() -> None:
    with pytest.raises(OCRAggregateError):
        run(OCROrchestrator([]))


@pytest.mark.parametrize("confidences", list(itertools.permutations([0.95, 0.75, 0.3, 0.1])))
def test_no_provider_is_invoked_after_threshold_is_met(confidences: tuple[float, ...]) -> None:
    providers = ordered(*[FakeProvider(f"p{idx}", confidence=value) for idx, value in enumerate(confidences)])
    orchestrator = OCROrchestrator(providers, min_confidence=0.7)

    result = run(orchestrator)

    first_hit = next(idx for idx, value in enumerate(confidences) if value >= 0.7)
    assert result.provider == f"p{first_hit}"
    assert [provider.calls for provider in providers] == [1] * (first_hit + 1) + [0] * (len(providers) - first_hit - 1)


def test_timed_out_provider_counts_as_failure_and_next_provider_is_used() -> None:
    slow = FakeProvider("slow", confidence=0.99, delay=1.0)
    fast = FakeProvider("fast", confidence=0.8)
    orchestrator = OCROrchestrator(ordered(slow, fast), min_confidence=0.7, timeout_seconds=0.05)

    result = run(orchestrator)

    assert result.provider == "fast"
    assert slow.calls == 1


def test_preferred_provider_is_tried_first() -> None:
    a = FakeProvider("a", confidence=0.9)
    b = FakeProvider("b", confidence=0.9)
    orchestrator = OCROrchestrator(ordered(a, b))

    result = run(orchestrator, OCROptions(preferred_provider="b"))

    assert result.provider == "b"
    assert a.calls == 0
    assert orchestrator.provider_order("missing") == ["a", "b"]


def test_default_order_follows_descriptor_priority() -> None:
    late = FakeProvider("late", confidence=0.9, priority=5)
    early = FakeProvider("early", confidence=0.9, priority=1)
    orchestrator = OCROrchestrator([late, early])

    assert orchestrator.provider_names == ["early", "late"]
    assert run(orchestrator).provider == "early"


def test_oversized_payload_is_rejected_without_calling_provider() -> None:
    small = FakeProvider("small", confidence=0.9, max_payload_bytes=4)
    large = FakeProvider("large", confidence=0.8)
    orchestrator = OCROrchestrator(ordered(small, large))

    result = run(orchestrator, payload=b"0123456789")

    assert result.provider == "large"
    assert small.calls == 0


def test_best_provider_for_language_and_stats() -> None:
    english = FakeProvider("english", confidence=0.9, languages=("en",))
    hindi = FakeProvider("hindi", confidence=0.9, languages=("en", "hi"))
    orchestrator = OCROrchestrator(ordered(english, hindi))

    assert orchestrator.best_provider_for_language("hi") == "hindi"
    assert orchestrator.best_provider_for_language("fr") == "english"
    stats = orchestrator.provider_stats()
    assert [row["name"] for row in stats] == ["english", "hindi"]
    assert stats[1]["supported_languages"] == ["en", "hi"]


def test_result_rejects_unnormalized_confidence() -> None:
    with pytest.raises(ValueError):
        OCRResult(text="x", confidence=85.0, provider="native")


def test_normalize_confidence_clamps_provider_scales() -> None:
    assert normalize_confidence(85, scale=100) == pytest.approx(0.85)
    assert normalize_confidence(140, scale=100) == 1.0
    assert normalize_confidence(-1) == 0.0
    assert normalize_confidence(None) == 0.0


def test_base_provider_wraps_sdk_errors() -> None:
    class Broken(BaseOCRProvider):
        name = "broken"
        error_code = "BROKEN_ERROR"

        def _recognize(self, image_bytes: bytes, options: OCROptions) -> OCRResult:
            raise ConnectionError("network down")

    with pytest.raises(OCRError) as exc_info:
        asyncio.run(Broken().recognize(b"img", OCROptions()))

    assert exc_info.value.provider == "broken"
    assert exc_info.value.code == "BROKEN_ERROR"
    assert isinstance(exc_info.value.cause, ConnectionError)
