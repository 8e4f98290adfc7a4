"""Search manager for hybrid semantic and lexical search.

Embeds the query once, runs the nearest-neighbour and full-text lookups
concurrently, and merges both signals with weighted score fusion. Matching
clients are returned alongside the ranked documents.
"""

import asyncio
import math
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from uuid import UUID

import structlog

from libs.common.logging import log_performance
from libs.common.metrics import MetricsCollector
from libs.document_store.base import ClientRecord, DocumentRecord, DocumentStore
from ..encoders.embedding_manager import BaseEmbedder
from ..ranking.fusion import FusionConfig, ScoreEntry, WeightedScoreFusion

logger = structlog.get_logger("search_service.search_manager")


class SearchBackendError(Exception):
    """Embedding or a lookup failed; no partial results are returned."""
    pass


@dataclass
class RankedDocument:
    document: DocumentRecord
    score: float


@dataclass
class SearchResults:
    query: str
    clients: List[ClientRecord] = field(default_factory=list)
    documents: List[RankedDocument] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.clients) + len(self.documents)


class SearchManager:
    """Coordinates hybrid search operations.

    Responsibilities
    - Embed the query through the injected embedder
    - Run semantic and lexical lookups against the document store
    - Drop non-finite semantic scores and fuse the rest
    - Surface any upstream failure as ``SearchBackendError``
    """

    def __init__(
        self,
        store: DocumentStore,
        embedder: BaseEmbedder,
        fusion_config: Optional[FusionConfig] = None,
        semantic_candidates: int = 200,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.fusion = WeightedScoreFusion(fusion_config)
        self.semantic_candidates = semantic_candidates
        self.metrics = metrics

    async def search(self, query: str) -> SearchResults:
        """Search clients and documents.

        Raises ``ValueError`` for a blank query and ``SearchBackendError``
        when the store or embedder fails.
        """
        query = (query or "").strip()
        if not query:
            raise ValueError("Query parameter 'q' is required and must not be blank")

        start_time = time.time()
        try:
            try:
                clients = await self.store.search_clients(query)
            except Exception as e:
                logger.error("Client lookup failed", query=query, error=str(e))
                raise SearchBackendError(f"Client lookup failed: {e}") from e
            documents = await self.search_documents(query)
        except Exception:
            self._record("hybrid", start_time, status="error")
            raise

        results = SearchResults(query=query, clients=clients, documents=documents)
        self._record("hybrid", start_time, results_count=results.total)
        log_performance(
            "search",
            (time.time() - start_time) * 1000,
            clients_count=len(clients),
            documents_count=len(documents),
        )
        return results

    async def search_documents(self, query: str) -> List[RankedDocument]:
        """Rank documents and load their records, preserving rank order."""
        ranked = await self.rank_documents(query)
        if not ranked:
            return []

        try:
            documents = await self.store.get_documents([entry.item_id for entry in ranked])
        except Exception as e:
            logger.error("Document fetch failed", error=str(e))
            raise SearchBackendError(f"Document fetch failed: {e}") from e

        return [
            RankedDocument(document=documents[entry.item_id], score=entry.score)
            for entry in ranked
            if entry.item_id in documents
        ]

    async def rank_documents(self, query: str) -> List[ScoreEntry]:
        """Embed, look up both signals concurrently and fuse them."""
        try:
            query_vector = await self.embedder.embed(query, purpose="query")
        except Exception as e:
            logger.error("Query embedding failed", error=str(e))
            raise SearchBackendError(f"Query embedding failed: {e}") from e

        semantic_task = asyncio.create_task(
            self.store.semantic_scores(query_vector, self.semantic_candidates)
        )
        keyword_task = asyncio.create_task(self.store.keyword_scores(query))
        tasks = [semantic_task, keyword_task]

        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                error = task.exception()
                if error is not None:
                    lookup = "semantic" if task is semantic_task else "keyword"
                    logger.error("Lookup failed", lookup=lookup, error=str(error))
                    raise SearchBackendError(f"{lookup.capitalize()} lookup failed: {error}") from error
            semantic_raw = semantic_task.result()
            keyword_scores = keyword_task.result()
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        semantic_scores = self._finite_scores(semantic_raw)
        ranked = self.fusion.fuse_results(semantic_scores, keyword_scores)

        logger.info(
            "Documents ranked",
            semantic_count=len(semantic_scores),
            keyword_count=len(keyword_scores),
            results_count=len(ranked),
        )
        return ranked

    @staticmethod
    def _finite_scores(scores: Dict[UUID, float]) -> Dict[UUID, float]:
        finite = {item_id: score for item_id, score in scores.items() if math.isfinite(score)}
        dropped = len(scores) - len(finite)
        if dropped:
            logger.warning("Dropped non-finite semantic scores", dropped_count=dropped)
        return finite

    def _record(self, query_type: str, start_time: float, results_count: int = 0, status: str = "success"):
        if self.metrics is not None:
            self.metrics.record_search(
                query_type=query_type,
                duration=time.time() - start_time,
                results_count=results_count,
                status=status,
            )

    async def health_check(self) -> bool:
        """Healthy when both the store and the embedder are."""
        try:
            return await self.store.health_check() and await self.embedder.health_check()
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return False
