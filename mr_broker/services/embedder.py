# =============================================================================
# Embeddings - Chunk and Question Vectors
# =============================================================================
#
# One OpenAI-compatible embeddings endpoint serves both pipelines:
#   ingestion  -> embed_batch(chunks), on worker threads
#   query      -> embed_query(question), via asyncio.to_thread()
#
# The index is fixed-width (EMBEDDING_DIMENSIONS), so a vector of any
# other length is an EmbeddingServiceError, as is any SDK failure after
# the SDK's own bounded retries.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence

import openai
from openai import OpenAI

from mr_broker.config import settings
from mr_broker.errors import ConfigurationError, EmbeddingServiceError

logger = logging.getLogger(__name__)

_client: OpenAI | None = None


def _get_client() -> OpenAI:
    """Build the (thread-safe) client on first use; OPENAI_API_KEY wins over LLM_API_KEY."""
    global _client
    if _client is None:
        api_key = settings.openai_api_key or settings.llm_api_key
        if not api_key:
            raise ConfigurationError(
                "No API key configured for embeddings. Set OPENAI_API_KEY or LLM_API_KEY"
            )
        _client = OpenAI(
            api_key=api_key,
            base_url=settings.embedding_base_url,
            timeout=settings.embedding_timeout_seconds,
            max_retries=settings.embedding_max_retries,
        )
        logger.info("Embedding with %s", settings.embedding_model)
    return _client


def _embed_slice(client: OpenAI, texts: list[str]) -> list[list[float]]:
    try:
        response = client.embeddings.create(
            model=settings.embedding_model,
            input=texts,
            dimensions=settings.embedding_dimensions,
        )
    except openai.OpenAIError as exc:
        raise EmbeddingServiceError(f"Embedding request failed: {exc}") from exc

    if len(response.data) != len(texts):
        raise EmbeddingServiceError(
            f"Expected {len(texts)} embeddings, got {len(response.data)}"
        )

    vectors = [item.embedding for item in sorted(response.data, key=lambda d: d.index)]
    for vector in vectors:
        if len(vector) != settings.embedding_dimensions:
            raise EmbeddingServiceError(
                f"Embedding dimension {len(vector)} does not match the "
                f"configured {settings.embedding_dimensions}"
            )
    return vectors


def embed_batch(texts: Sequence[str], batch_size: int | None = None) -> list[list[float]]:
    """
    Embed texts, in input order.

    Requests are split into slices of `batch_size` (default
    EMBEDDING_BATCH_SIZE). Either every text gets a vector or an error is
    raised; callers never see a partial result.

    Raises:
        ConfigurationError: No API key.
        EmbeddingServiceError: Request failure, timeout or wrong vector shape.
    """
    if not texts:
        return []

    client = _get_client()
    step = batch_size or settings.embedding_batch_size

    vectors: list[list[float]] = []
    for start in range(0, len(texts), step):
        vectors.extend(_embed_slice(client, list(texts[start : start + step])))

    logger.debug("Embedded %d texts in %d requests", len(texts), -(-len(texts) // step))
    return vectors


def embed_query(text: str) -> list[float]:
    return embed_batch([text], batch_size=1)[0]
