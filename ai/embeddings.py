"""Embedding generation for role titles and descriptions.

Wraps sentence-transformers with batching, retries and model caching.
"""
from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Iterable, Protocol

from sentence_transformers import SentenceTransformer
from tenacity import retry, stop_after_attempt, wait_exponential

from etl.config import EmbeddingSettings
from etl.errors import EmbeddingError

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Anything that turns text into a fixed-size vector."""

    async def embed(self, text: str) -> list[float]:
        ...


@lru_cache(maxsize=4)
def _load_model(model_name: str, device: str) -> SentenceTransformer:
    """Load and cache the sentence transformer model.

    Raises:
        EmbeddingError: If model loading fails
    """
    try:
        logger.info(f"Loading embedding model: {model_name} on device: {device}")
        model = SentenceTransformer(model_name, device=device)
        logger.info(f"Model loaded successfully. Embedding dim: {model.get_sentence_embedding_dimension()}")
        return model
    except Exception as e:
        logger.error(f"Failed to load embedding model: {e}")
        raise EmbeddingError(f"Model loading failed: {e}", component="embedder") from e


class SentenceTransformerEmbedder:
    """Embedder backed by a local sentence-transformers model."""

    def __init__(self, config: EmbeddingSettings) -> None:
        self.config = config

    async def embed(self, text: str) -> list[float]:
        """Embed one text off the event loop."""
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text", component="embedder")
        vectors = await asyncio.to_thread(self.embed_texts, [text])
        return vectors[0]

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def embed_texts(self, texts: Iterable[str]) -> list[list[float]]:
        """Compute embeddings for a batch of texts with retry logic.

        Raises:
            EmbeddingError: If embedding computation fails after retries
        """
        text_list = list(texts)
        if not text_list:
            return []

        model = _load_model(self.config.model_name, self.config.device)
        try:
            logger.debug(f"Encoding {len(text_list)} texts")
            embeddings = model.encode(
                text_list,
                batch_size=self.config.batch_size,
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=self.config.normalize_embeddings,
            )
        except Exception as e:
            logger.error(f"Embedding computation failed: {e}")
            raise EmbeddingError(f"Failed to compute embeddings: {e}", component="embedder") from e

        result = embeddings.tolist()
        if result and len(result[0]) != self.config.dim:
            raise EmbeddingError(
                f"Model produced {len(result[0])}-dim vectors, expected {self.config.dim}",
                component="embedder",
            )
        return result
