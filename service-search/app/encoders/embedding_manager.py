"""Embedding model lifecycle and text encoding.

The model is a scoped resource: loaded once by ``initialize`` during the
application lifespan, injected into the search and ingestion paths, and
released by ``cleanup`` on shutdown.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np
import structlog
import torch
from sentence_transformers import SentenceTransformer

from libs.common.config import SearchConfig
from libs.common.metrics import MetricsCollector

logger = structlog.get_logger("search_service.embedding_manager")


class BaseEmbedder(ABC):
    """Maps text to unit-length vectors."""

    async def initialize(self) -> None:
        return None

    @abstractmethod
    async def embed_many(self, texts: Sequence[str], purpose: str = "document") -> List[np.ndarray]:
        """Embed a batch of texts, preserving order."""

    async def embed(self, text: str, purpose: str = "query") -> np.ndarray:
        """Embed a single text."""
        vectors = await self.embed_many([text], purpose=purpose)
        return vectors[0]

    async def health_check(self) -> bool:
        return True

    async def cleanup(self) -> None:
        return None


class EmbeddingManager(BaseEmbedder):
    """SentenceTransformer-backed embedder.

    Notes
    - Loading and encoding run in worker threads to keep the event loop free
    - Output is L2-normalized by the model (``normalize_embeddings=True``)
    - The model dimension must match ``ml_vector_dimension``
    """

    def __init__(self, config: SearchConfig, metrics: Optional[MetricsCollector] = None):
        self.config = config
        self.metrics = metrics
        self.model_name = config.ml_embedding_model
        self.model: Optional[SentenceTransformer] = None
        self.device: Optional[str] = None

    def _select_device(self) -> str:
        preference = self.config.ml_gpu_preference.lower()
        if preference == "cpu":
            return "cpu"
        if torch.cuda.is_available():
            return "cuda"
        if preference == "cuda":
            logger.warning("CUDA requested but not available, falling back to CPU")
        return "cpu"

    async def initialize(self) -> None:
        """Load the configured model."""
        self.device = self._select_device()
        start_time = time.time()
        try:
            model = await asyncio.to_thread(SentenceTransformer, self.model_name, device=self.device)
        except Exception as e:
            logger.error("Failed to load embedding model", model_name=self.model_name, error=str(e))
            raise

        dimension = model.get_sentence_embedding_dimension()
        if dimension != self.config.ml_vector_dimension:
            raise ValueError(
                f"Embedding model {self.model_name} produces {dimension}-dimensional vectors, "
                f"expected {self.config.ml_vector_dimension}"
            )

        self.model = model
        logger.info(
            "Loaded embedding model",
            model_name=self.model_name,
            device=self.device,
            dimension=dimension,
            load_seconds=round(time.time() - start_time, 3),
        )

    async def embed_many(self, texts: Sequence[str], purpose: str = "document") -> List[np.ndarray]:
        """Encode ``texts`` in batches of ``ml_embedding_batch_size``."""
        if self.model is None:
            raise RuntimeError("Embedding model is not loaded")
        if not texts:
            return []

        start_time = time.time()
        embeddings = await asyncio.to_thread(
            self.model.encode,
            list(texts),
            batch_size=self.config.ml_embedding_batch_size,
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        duration = time.time() - start_time

        if self.metrics is not None:
            self.metrics.record_embedding(self.model_name, purpose, duration)
        logger.debug("Embeddings generated", count=len(texts), purpose=purpose, duration=duration)
        return [np.asarray(vector, dtype=np.float32) for vector in embeddings]

    async def health_check(self) -> bool:
        return self.model is not None

    async def cleanup(self) -> None:
        """Release the model and any cached GPU memory."""
        self.model = None
        if self.device == "cuda":
            torch.cuda.empty_cache()
        logger.info("Embedding model released", model_name=self.model_name)
