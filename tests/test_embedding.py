"""
Tests for embedding providers and the EmbeddingService.

Tests cover:
- cosine_similarity properties
- Query caching (in-process and Redis tiers), batching, count and
  dimension checks
- SentenceTransformer and OpenAI providers with mocked backends
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from medroute.config import Settings
from medroute.core.errors import ConfigurationError, EmbeddingDimensionError, EmbeddingError
from medroute.rag.cache import CacheLayer
from medroute.rag.embedding import (
    DOCUMENT_PREFIX,
    QUERY_PREFIX,
    EmbeddingService,
    OpenAIEmbeddings,
    SentenceTransformerEmbeddings,
    cosine_similarity,
    create_embedding_provider,
)


def fixed_provider(vector: list[float]) -> MagicMock:
    provider = MagicMock()
    provider.dimension = len(vector)
    provider.embed_batch = AsyncMock(side_effect=lambda texts, is_query=False: [vector] * len(texts))
    return provider


# ============================================
# cosine_similarity
# ============================================


class TestCosineSimilarity:
    @pytest.mark.unit
    @pytest.mark.parametrize("vector", [[1.0, 2.0, 3.0], [-0.5, 0.25, 4.0], [1e-3, 0.0, 0.0]])
    def test_self_similarity_is_one(self, vector):
        assert cosine_similarity(vector, vector) == pytest.approx(1.0)

    @pytest.mark.unit
    def test_symmetric(self):
        a, b = [0.3, -1.2, 2.0], [1.5, 0.4, -0.7]
        assert cosine_similarity(a, b) == cosine_similarity(b, a)

    @pytest.mark.unit
    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    @pytest.mark.unit
    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    @pytest.mark.unit
    def test_zero_vector_gives_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    @pytest.mark.unit
    def test_length_mismatch_raises(self):
        with pytest.raises(ValueError):
            cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])


# ============================================
# EmbeddingService
# ============================================


class TestEmbedQuery:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_empty_query_raises(self, embedding_service):
        with pytest.raises(ValueError):
            await embedding_service.embed_query("   ")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_query_is_trimmed_and_embedded(self, embedding_service, provider):
        vector = await embedding_service.embed_query("  chest pain  ")
        assert vector == provider.vector("chest pain")
        assert provider.batches == [["chest pain"]]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_repeated_query_uses_cache(self, embedding_service, provider):
        await embedding_service.embed_query("chest pain")
        await embedding_service.embed_query("chest pain ")
        assert len(provider.batches) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_without_cache_always_calls_provider(self, provider):
        service = EmbeddingService(provider)
        await service.embed_query("chest pain")
        await service.embed_query("chest pain")
        assert len(provider.batches) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_redis_tier_hit_skips_provider(self):
        provider = fixed_provider([1.0, 0.0])
        redis_tier = MagicMock()
        redis_tier.get = AsyncMock(return_value=[0.5, 0.5])
        redis_tier.set = AsyncMock()
        service = EmbeddingService(provider, cache=CacheLayer(), embedding_cache=redis_tier)

        assert await service.embed_query("chest pain") == [0.5, 0.5]
        provider.embed_batch.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_redis_tier_miss_stores_result(self):
        provider = fixed_provider([1.0, 0.0])
        redis_tier = MagicMock()
        redis_tier.get = AsyncMock(return_value=None)
        redis_tier.set = AsyncMock(return_value=True)
        service = EmbeddingService(provider, embedding_cache=redis_tier)

        assert await service.embed_query("chest pain") == [1.0, 0.0]
        redis_tier.set.assert_awaited_once_with("chest pain", [1.0, 0.0])

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_redis_tier_vector_of_wrong_dimension_is_ignored(self):
        provider = fixed_provider([1.0, 0.0])
        redis_tier = MagicMock()
        redis_tier.get = AsyncMock(return_value=[0.1, 0.2, 0.3])
        redis_tier.set = AsyncMock(return_value=True)
        service = EmbeddingService(provider, embedding_cache=redis_tier)

        assert await service.embed_query("chest pain") == [1.0, 0.0]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_wrong_dimension_raises(self):
        provider = fixed_provider([1.0, 0.0])
        provider.dimension = 3
        service = EmbeddingService(provider)

        with pytest.raises(EmbeddingDimensionError) as exc_info:
            await service.embed_query("chest pain")
        assert (exc_info.value.expected, exc_info.value.actual) == (3, 2)


class TestEmbedDocuments:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_batches_preserve_order(self, provider):
        service = EmbeddingService(provider, batch_size=2)
        texts = ["chest pain", "ankle sprain", "stress", "policy", "heart"]

        vectors = await service.embed_documents(texts)

        assert len(provider.batches) == 3
        assert vectors == [provider.vector(t) for t in texts]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_count_mismatch_raises(self):
        provider = MagicMock()
        provider.dimension = 2
        provider.embed_batch = AsyncMock(return_value=[[1.0, 0.0]])
        service = EmbeddingService(provider)

        with pytest.raises(EmbeddingError, match="2 texts"):
            await service.embed_documents(["a chunk", "another chunk"])

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_empty_chunk_text_raises(self, provider):
        service = EmbeddingService(provider)
        with pytest.raises(EmbeddingError):
            await service.embed_documents(["valid", "  "])

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_provider_error_propagates(self):
        provider = MagicMock()
        provider.dimension = 2
        provider.embed_batch = AsyncMock(side_effect=EmbeddingError("quota exceeded"))
        service = EmbeddingService(provider)

        with pytest.raises(EmbeddingError, match="quota"):
            await service.embed_documents(["a chunk"])


# ============================================
# Providers
# ============================================


class TestSentenceTransformerEmbeddings:
    @pytest.fixture
    def model(self, mocker):
        model = MagicMock()
        model.encode.side_effect = lambda texts, **kwargs: np.ones((len(texts), 4))
        mocker.patch("medroute.rag.embedding._load_st_model", return_value=model)
        return model

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_nomic_query_prefix(self, model):
        provider = SentenceTransformerEmbeddings("nomic-ai/nomic-embed-text-v1.5", dimension=4)
        vectors = await provider.embed_batch(["chest pain"], is_query=True)

        assert vectors == [[1.0, 1.0, 1.0, 1.0]]
        assert model.encode.call_args[0][0] == [QUERY_PREFIX + "chest pain"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_nomic_document_prefix(self, model):
        provider = SentenceTransformerEmbeddings("nomic-ai/nomic-embed-text-v1.5", dimension=4)
        await provider.embed("protocol text")
        assert model.encode.call_args[0][0] == [DOCUMENT_PREFIX + "protocol text"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_other_models_have_no_prefix(self, model):
        provider = SentenceTransformerEmbeddings("all-MiniLM-L6-v2", dimension=4)
        await provider.embed("chest pain", is_query=True)
        assert model.encode.call_args[0][0] == ["chest pain"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_batch_failure_retries_individually(self, mocker):
        model = MagicMock()
        calls = []

        def encode(texts, **kwargs):
            calls.append(list(texts))
            if len(texts) > 1:
                raise RuntimeError("stack expects each tensor to be equal size")
            return np.ones((1, 4))

        model.encode.side_effect = encode
        mocker.patch("medroute.rag.embedding._load_st_model", return_value=model)
        provider = SentenceTransformerEmbeddings("all-MiniLM-L6-v2", dimension=4)

        vectors = await provider.embed_batch(["a", "b"])

        assert len(vectors) == 2
        assert calls[1:] == [["a"], ["b"]]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_model_failure_raises_embedding_error(self, mocker):
        mocker.patch(
            "medroute.rag.embedding._load_st_model", side_effect=OSError("model not found")
        )
        provider = SentenceTransformerEmbeddings("missing-model", dimension=4)
        with pytest.raises(EmbeddingError):
            await provider.embed("chest pain")

    @pytest.mark.unit
    def test_model_name_required(self):
        with pytest.raises(ConfigurationError):
            SentenceTransformerEmbeddings("", dimension=4)


class TestOpenAIEmbeddings:
    @pytest.mark.unit
    def test_missing_key_fails_fast(self):
        with pytest.raises(ConfigurationError):
            OpenAIEmbeddings(api_key=None)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_results_restored_to_input_order(self, mocker):
        provider = OpenAIEmbeddings(api_key="sk-test", dimension=2)
        response = SimpleNamespace(
            data=[
                SimpleNamespace(index=1, embedding=[0.0, 1.0]),
                SimpleNamespace(index=0, embedding=[1.0, 0.0]),
            ]
        )
        create = mocker.patch.object(
            provider._client.embeddings, "create", AsyncMock(return_value=response)
        )

        vectors = await provider.embed_batch(["first", "second"])

        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        create.assert_awaited_once_with(input=["first", "second"], model="text-embedding-3-small")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_api_error_raises_embedding_error(self, mocker):
        provider = OpenAIEmbeddings(api_key="sk-test", dimension=2)
        mocker.patch.object(
            provider._client.embeddings, "create", AsyncMock(side_effect=RuntimeError("429"))
        )
        with pytest.raises(EmbeddingError):
            await provider.embed("chest pain")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_empty_batch_skips_request(self):
        provider = OpenAIEmbeddings(api_key="sk-test", dimension=2)
        assert await provider.embed_batch([]) == []


class TestProviderFactory:
    @pytest.mark.unit
    def test_openai_backend(self):
        settings = Settings(
            embedding_backend="openai",
            openai_api_key="sk-test",
            embedding_model="text-embedding-3-small",
            embedding_dimension=1536,
        )
        provider = create_embedding_provider(settings)
        assert isinstance(provider, OpenAIEmbeddings)
        assert provider.dimension == 1536

    @pytest.mark.unit
    def test_sentence_transformers_backend(self):
        provider = create_embedding_provider(Settings())
        assert isinstance(provider, SentenceTransformerEmbeddings)
        assert provider.dimension == 768
