"""Shared fixtures for the search service tests."""

import hashlib
import re
from typing import List, Sequence

import numpy as np
import pytest

from app.encoders.embedding_manager import BaseEmbedder
from libs.common.config import SearchConfig
from libs.document_store.memory import InMemoryStore

TEST_DIMENSION = 256
TEST_API_KEY = "test-key"


class HashingEmbedder(BaseEmbedder):
    """Deterministic bag-of-words embedder; no model download needed."""

    def __init__(self, dimension: int = TEST_DIMENSION):
        self.dimension = dimension
        self.calls: List[List[str]] = []
        self.initialized = False
        self.cleaned_up = False

    async def initialize(self) -> None:
        self.initialized = True

    async def embed_many(self, texts: Sequence[str], purpose: str = "document") -> List[np.ndarray]:
        self.calls.append(list(texts))
        return [self._vectorize(text) for text in texts]

    async def cleanup(self) -> None:
        self.cleaned_up = True

    def _vectorize(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype=np.float32)
        for token in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        norm = np.linalg.norm(vector)
        return vector / norm if norm else vector


def words(count: int, prefix: str = "w") -> str:
    """``count`` distinct space-separated words."""
    return " ".join(f"{prefix}{i}" for i in range(count))


@pytest.fixture
def embedder():
    return HashingEmbedder()


@pytest.fixture
def memory_store():
    return InMemoryStore(vector_dimension=TEST_DIMENSION)


@pytest.fixture
def search_config():
    return SearchConfig(
        ml_env="test",
        ml_log_format="console",
        ml_vector_backend="memory",
        ml_vector_dimension=TEST_DIMENSION,
        ml_api_key=TEST_API_KEY,
    )
