"""Base document store interface.

Defines the abstract contract the search service depends on, independent of
the backing implementation (PostgreSQL/pgvector or in-process memory).

A store owns clients, documents and the embedded chunks derived from each
document, and exposes the two raw relevance lookups consumed by hybrid
search:

- ``semantic_scores``: per document, the best ``1 - cosine distance`` over
  its chunks
- ``keyword_scores``: per document, a non-negative lexical statistic; an
  absent document had no lexical match

All methods are asynchronous to support high-throughput services.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID

import numpy as np


@dataclass
class ClientRecord:
    """A client owning documents."""
    id: UUID
    first_name: str
    last_name: str
    email: str
    description: Optional[str] = None
    social_links: List[str] = field(default_factory=list)


@dataclass
class DocumentRecord:
    """A stored document; its chunks are kept alongside."""
    id: UUID
    client_id: UUID
    title: str
    content: str
    created_at: datetime


@dataclass
class ChunkRecord:
    """An embedded chunk of a document."""
    document_id: UUID
    chunk_index: int
    text: str
    embedding: np.ndarray


class DocumentStore(ABC):
    """Abstract base class for document stores.

    Implementations must keep client emails unique (case-insensitive),
    document titles unique per client (case-insensitive), and store a
    document together with its chunks atomically.
    """

    async def initialize(self) -> None:
        """Acquire connections and prepare storage. No-op by default."""

    @abstractmethod
    async def create_client(self, client: ClientRecord) -> ClientRecord:
        """Persist a new client.

        Raises ``DocumentStoreConflictError`` if the email is taken.
        """

    @abstractmethod
    async def get_client(self, client_id: UUID) -> Optional[ClientRecord]:
        """Get a client by id, ``None`` when absent."""

    @abstractmethod
    async def find_document_by_title(self, client_id: UUID, title: str) -> Optional[DocumentRecord]:
        """Find a client's document by title, ignoring case."""

    @abstractmethod
    async def store_document(self, document: DocumentRecord, chunks: Sequence[ChunkRecord]) -> DocumentRecord:
        """Persist a document and its chunks in one unit of work.

        Raises
        - ``DocumentStoreNotFoundError`` if the owning client does not exist
        - ``DocumentStoreConflictError`` on a duplicate title for the client
        """

    @abstractmethod
    async def get_documents(self, document_ids: Iterable[UUID]) -> Dict[UUID, DocumentRecord]:
        """Fetch documents by id; unknown ids are left out of the result."""

    @abstractmethod
    async def semantic_scores(self, query_vector: np.ndarray, limit: int) -> Dict[UUID, float]:
        """Best chunk similarity per document.

        ``limit`` bounds the number of nearest chunks considered before
        per-document aggregation where the backend is index-backed.
        Scores are passed through unfiltered; callers drop non-finite values.
        """

    @abstractmethod
    async def keyword_scores(self, query: str) -> Dict[UUID, float]:
        """Raw lexical relevance per lexically matching document."""

    @abstractmethod
    async def search_clients(self, query: str) -> List[ClientRecord]:
        """Clients whose name, email or description match the query."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the store is healthy."""

    async def close(self) -> None:
        """Release connections. No-op by default."""


class DocumentStoreError(Exception):
    """Base exception for document store operations."""
    pass


class DocumentStoreConnectionError(DocumentStoreError):
    """Connection error to the backing database."""
    pass


class DocumentStoreQueryError(DocumentStoreError):
    """Query error in the document store."""
    pass


class DocumentStoreNotFoundError(DocumentStoreError):
    """A referenced entity does not exist."""
    pass


class DocumentStoreConflictError(DocumentStoreError):
    """A uniqueness constraint would be violated."""
    pass
