"""Client and document ingestion.

A document is validated against its owner and existing titles before any
embedding work happens, then chunked, embedded in one batch, and stored with
its chunks as a single unit.
"""

import time
from datetime import datetime, timezone
from typing import List, Optional, Sequence
from uuid import UUID, uuid4

import structlog

from libs.common.logging import log_performance
from libs.common.metrics import MetricsCollector
from libs.document_store.base import (
    ChunkRecord,
    ClientRecord,
    DocumentRecord,
    DocumentStore,
    DocumentStoreConflictError,
    DocumentStoreNotFoundError,
)
from ..encoders.embedding_manager import BaseEmbedder
from .chunker import ChunkingConfig, chunk_text

logger = structlog.get_logger("search_service.indexer")


class DocumentIndexer:
    """Creates clients and indexes their documents."""

    def __init__(
        self,
        store: DocumentStore,
        embedder: BaseEmbedder,
        chunking_config: Optional[ChunkingConfig] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.chunking_config = chunking_config or ChunkingConfig()
        self.metrics = metrics

    async def create_client(
        self,
        first_name: str,
        last_name: str,
        email: str,
        description: Optional[str] = None,
        social_links: Optional[Sequence[str]] = None,
    ) -> ClientRecord:
        """Create a client; the email is stored lower-cased."""
        client = ClientRecord(
            id=uuid4(),
            first_name=first_name,
            last_name=last_name,
            email=email.lower(),
            description=description,
            social_links=list(social_links or []),
        )
        created = await self.store.create_client(client)
        logger.info("Client created", client_id=str(created.id))
        return created

    async def create_document(self, client_id: UUID, title: str, content: str) -> DocumentRecord:
        """Chunk, embed and store a document for ``client_id``.

        Raises
        - ``DocumentStoreNotFoundError`` if the client does not exist
        - ``DocumentStoreConflictError`` if the client already has the title
        """
        start_time = time.time()

        if await self.store.get_client(client_id) is None:
            raise DocumentStoreNotFoundError("Client not found")
        if await self.store.find_document_by_title(client_id, title) is not None:
            raise DocumentStoreConflictError(
                "A document with this title already exists for this client"
            )

        document = DocumentRecord(
            id=uuid4(),
            client_id=client_id,
            title=title,
            content=content,
            created_at=datetime.now(timezone.utc),
        )

        chunks = chunk_text(content, self.chunking_config)
        embeddings = await self.embedder.embed_many([chunk.text for chunk in chunks], purpose="document")
        records: List[ChunkRecord] = [
            ChunkRecord(
                document_id=document.id,
                chunk_index=chunk.index,
                text=chunk.text,
                embedding=embedding,
            )
            for chunk, embedding in zip(chunks, embeddings)
        ]

        stored = await self.store.store_document(document, records)

        if self.metrics is not None:
            self.metrics.record_document_indexed(len(records))
        log_performance(
            "index_document",
            (time.time() - start_time) * 1000,
            document_id=str(stored.id),
            client_id=str(client_id),
            chunk_count=len(records),
        )
        return stored
