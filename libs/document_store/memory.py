"""In-memory implementation of the document store.

Keeps everything in process: useful for local development, tests, and small
deployments that do not warrant PostgreSQL. Relevance is recomputed over all
rows on every query:

- semantic: cosine similarity of the query against every chunk embedding
  (numpy), aggregated to the maximum per document. There is no index and no
  top-K cutoff, so ``limit`` is ignored.
- lexical: BM25+ (``rank_bm25``) over ``title + content`` restricted to
  documents sharing at least one token with the query. BM25+ keeps the idf
  strictly positive, so scores stay non-negative.
- clients: case-insensitive substring match on name, email and description.
"""

import re
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID

import numpy as np
import structlog
from rank_bm25 import BM25Plus

from .base import (
    ChunkRecord,
    ClientRecord,
    DocumentRecord,
    DocumentStore,
    DocumentStoreConflictError,
    DocumentStoreNotFoundError,
)

logger = structlog.get_logger("document_store.memory")


def simple_tokenize(text: str) -> List[str]:
    """Lower-cased word tokens."""
    return re.findall(r"\w+", text.lower())


class InMemoryStore(DocumentStore):
    """Dict-backed document store.

    Mutations complete without awaiting, so each one is atomic with respect
    to other coroutines on the same event loop.
    """

    def __init__(self, vector_dimension: Optional[int] = None):
        self.vector_dimension = vector_dimension
        self._clients: Dict[UUID, ClientRecord] = {}
        self._documents: Dict[UUID, DocumentRecord] = {}
        self._chunks: Dict[UUID, List[ChunkRecord]] = {}

    async def create_client(self, client: ClientRecord) -> ClientRecord:
        """Persist a new client; emails are unique ignoring case."""
        email = client.email.lower()
        if any(existing.email.lower() == email for existing in self._clients.values()):
            logger.warning("Duplicate client email", email=client.email)
            raise DocumentStoreConflictError("A client with this email already exists")

        self._clients[client.id] = client
        logger.info("Stored client", client_id=str(client.id))
        return client

    async def get_client(self, client_id: UUID) -> Optional[ClientRecord]:
        return self._clients.get(client_id)

    async def find_document_by_title(self, client_id: UUID, title: str) -> Optional[DocumentRecord]:
        wanted = title.lower()
        for document in self._documents.values():
            if document.client_id == client_id and document.title.lower() == wanted:
                return document
        return None

    async def store_document(self, document: DocumentRecord, chunks: Sequence[ChunkRecord]) -> DocumentRecord:
        """Store a document with its chunks after checking constraints."""
        if document.client_id not in self._clients:
            raise DocumentStoreNotFoundError("Client not found")
        if await self.find_document_by_title(document.client_id, document.title) is not None:
            raise DocumentStoreConflictError(
                "A document with this title already exists for this client"
            )

        stored_chunks = [
            ChunkRecord(
                document_id=chunk.document_id,
                chunk_index=chunk.chunk_index,
                text=chunk.text,
                embedding=self._ensure_vector_dimension(chunk.embedding),
            )
            for chunk in chunks
        ]
        self._documents[document.id] = document
        self._chunks[document.id] = stored_chunks

        logger.info(
            "Stored document",
            document_id=str(document.id),
            client_id=str(document.client_id),
            chunk_count=len(stored_chunks),
        )
        return document

    async def get_documents(self, document_ids: Iterable[UUID]) -> Dict[UUID, DocumentRecord]:
        return {
            document_id: self._documents[document_id]
            for document_id in document_ids
            if document_id in self._documents
        }

    async def semantic_scores(self, query_vector: np.ndarray, limit: int) -> Dict[UUID, float]:
        """Maximum cosine similarity over every chunk of every document."""
        owners: List[UUID] = []
        vectors: List[np.ndarray] = []
        for document_id, chunks in self._chunks.items():
            for chunk in chunks:
                owners.append(document_id)
                vectors.append(chunk.embedding)

        if not vectors:
            return {}

        query = self._ensure_vector_dimension(query_vector).astype(np.float64)
        matrix = np.vstack(vectors).astype(np.float64)

        # Zero vectors give NaN here; callers drop non-finite scores.
        with np.errstate(divide="ignore", invalid="ignore"):
            similarities = (matrix @ query) / (np.linalg.norm(matrix, axis=1) * np.linalg.norm(query))

        scores: Dict[UUID, float] = {}
        for document_id, similarity in zip(owners, similarities.tolist()):
            best = scores.get(document_id)
            if best is None or similarity > best or np.isnan(best):
                scores[document_id] = similarity

        logger.info(
            "Vector similarity search completed",
            chunks_scanned=len(vectors),
            results_count=len(scores),
        )
        return scores

    async def keyword_scores(self, query: str) -> Dict[UUID, float]:
        """BM25+ scores for documents sharing a token with the query."""
        query_tokens = simple_tokenize(query)
        if not query_tokens or not self._documents:
            return {}

        document_ids = list(self._documents)
        corpus = [
            simple_tokenize(f"{self._documents[document_id].title} {self._documents[document_id].content}")
            for document_id in document_ids
        ]
        wanted = set(query_tokens)
        matched = [index for index, tokens in enumerate(corpus) if wanted.intersection(tokens)]
        if not matched:
            return {}

        bm25 = BM25Plus(corpus)
        bm25_scores = bm25.get_scores(query_tokens)
        scores = {document_ids[index]: float(bm25_scores[index]) for index in matched}

        logger.info("Lexical search completed", results_count=len(scores))
        return scores

    async def search_clients(self, query: str) -> List[ClientRecord]:
        """Case-insensitive substring match on client fields."""
        needle = query.lower()
        matches = [
            client for client in self._clients.values()
            if any(
                needle in (value or "").lower()
                for value in (client.first_name, client.last_name, client.email, client.description)
            )
        ]
        return sorted(matches, key=lambda c: (c.last_name.lower(), c.first_name.lower(), c.email))

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        self._clients.clear()
        self._documents.clear()
        self._chunks.clear()

    def _ensure_vector_dimension(self, vector: Iterable[float]) -> np.ndarray:
        """Ensure a vector is one-dimensional and, if configured, of the right size."""
        array = np.asarray(vector, dtype=np.float32)
        if array.ndim != 1:
            raise ValueError("Vector must be one-dimensional")

        if self.vector_dimension is not None and array.shape[0] != self.vector_dimension:
            raise ValueError(
                f"Expected vector dimension {self.vector_dimension}, "
                f"got {array.shape[0]}"
            )
        return array
