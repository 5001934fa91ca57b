import asyncio
import time

import numpy as np
import pytest

from hybrid_recall.core.embedding import EmbeddingService, normalize_text
from hybrid_recall.settings import UnifiedSettings
from hybrid_recall.utils.exceptions import ModelUnavailable, UnembeddableText
from tests.conftest import VOCAB, FakeWordModel


def test_normalize_text() -> None:
    assert normalize_text("  Apple\n\n  FRUIT\t") == "apple fruit"


async def test_embed_is_cached_case_insensitively(embedder: EmbeddingService, model: FakeWordModel) -> None:
    first = await embedder.embed("Apple fruit")
    second = await embedder.embed("  apple   FRUIT ")
    assert first is second
    assert model.text_calls == ["apple fruit"]
    assert first.model_version == "fake-v1"
    assert first.dimension == 4


async def test_concurrent_embeds_share_one_invocation(embedder: EmbeddingService, model: FakeWordModel) -> None:
    results = await asyncio.gather(*(embedder.embed("music guitar") for _ in range(5)))
    assert len(model.text_calls) == 1
    assert all(r is results[0] for r in results)


class SlowWordModel(FakeWordModel):
    def embed_text(self, text: str):  # type: ignore[no-untyped-def]
        time.sleep(0.05)
        return super().embed_text(text)


async def test_cancelled_caller_does_not_cancel_other_waiters(settings: UnifiedSettings) -> None:
    model = SlowWordModel()
    embedder = EmbeddingService(model, settings)
    first = asyncio.create_task(embedder.embed("Apple"))
    await asyncio.sleep(0.01)
    second = asyncio.create_task(embedder.embed("  apple "))
    await asyncio.sleep(0.01)
    first.cancel()
    emb = await second
    with pytest.raises(asyncio.CancelledError):
        await first
    assert emb.model_version == "fake-v1"
    assert model.text_calls == ["apple"]
    assert embedder.cache.get("apple") is emb


async def test_generation_outlives_a_cancelled_sole_caller(settings: UnifiedSettings) -> None:
    model = SlowWordModel()
    embedder = EmbeddingService(model, settings)
    lone = asyncio.create_task(embedder.embed("car"))
    await asyncio.sleep(0.01)
    lone.cancel()
    with pytest.raises(asyncio.CancelledError):
        await lone
    again = await embedder.embed("car")
    assert model.text_calls == ["car"]
    assert again.model_version == "fake-v1"


async def test_word_average_fallback_skips_unknown_tokens(embedder: EmbeddingService) -> None:
    emb = await embedder.embed("apple zebra car")
    expected = (np.array(VOCAB["apple"]) + np.array(VOCAB["car"])) / 2
    np.testing.assert_allclose(emb.vector, expected, rtol=1e-6)


async def test_no_known_tokens_fails(embedder: EmbeddingService) -> None:
    with pytest.raises(UnembeddableText):
        await embedder.embed("zebra quokka")


async def test_empty_text_fails(embedder: EmbeddingService) -> None:
    with pytest.raises(UnembeddableText):
        await embedder.embed("   \n ")


async def test_failed_generation_is_not_cached(embedder: EmbeddingService, model: FakeWordModel) -> None:
    for _ in range(2):
        with pytest.raises(UnembeddableText):
            await embedder.embed("zebra")
    assert model.text_calls == ["zebra", "zebra"]
    assert len(embedder.cache) == 0


async def test_batch_isolates_failures(embedder: EmbeddingService) -> None:
    out = await embedder.embed_batch(["apple", "zebra", "car", "apple"])
    assert set(out) == {"apple", "car"}


async def test_batch_empty(embedder: EmbeddingService) -> None:
    assert await embedder.embed_batch([]) == {}


async def test_model_unavailable(settings: UnifiedSettings) -> None:
    def broken(name: str) -> FakeWordModel:
        raise OSError(f"no weights for {name}")

    service = EmbeddingService(None, settings, model_factory=broken)
    with pytest.raises(ModelUnavailable):
        await service.embed("apple")


async def test_fallback_model_is_used(settings: UnifiedSettings) -> None:
    tried: list[str] = []

    def factory(name: str) -> FakeWordModel:
        tried.append(name)
        if name == settings.embedding.model_name:
            raise RuntimeError("primary model corrupt")
        return FakeWordModel(version=name)

    service = EmbeddingService(None, settings, model_factory=factory)
    emb = await service.embed("sky")
    assert tried == [settings.embedding.model_name, settings.embedding.fallback_model_name]
    assert emb.model_version == settings.embedding.fallback_model_name
    assert service.model_version == settings.embedding.fallback_model_name


async def test_stats(embedder: EmbeddingService) -> None:
    await embedder.embed("apple")
    await embedder.embed("apple")
    stats = embedder.stats()
    assert stats["generated"] == 1
    assert stats["dimension"] == 4
    assert stats["cache"]["size"] == 1
    assert stats["cache"]["hits"] == 1
