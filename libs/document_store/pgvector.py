"""PgVector implementation of the document store.

Documents live in PostgreSQL; chunk embeddings are stored with the pgvector
extension. Both relevance lookups are pushed down to the database:

- semantic: the ``limit`` nearest chunks by cosine distance (``<=>``, served
  by an HNSW index) are aggregated to ``MAX(1 - distance)`` per document.
  A document whose only good chunk falls outside that global top-K is not
  returned; this is the recall cost of index-backed search. The HNSW
  search list (``hnsw.ef_search``) is raised to the limit per query so the
  index scan can actually yield ``limit`` rows.
- lexical: ``ts_rank`` over ``title || ' ' || content`` for documents that
  match ``plainto_tsquery``.

Connection management
- A shared asyncpg pool is created on ``initialize`` (or lazily) and reused
- Queries are funneled through ``_execute_query`` for uniform error handling
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence
from uuid import UUID

import asyncpg
import numpy as np
import structlog
from asyncpg import Connection, Pool
from pgvector.asyncpg import register_vector

from .base import (
    ChunkRecord,
    ClientRecord,
    DocumentRecord,
    DocumentStore,
    DocumentStoreConflictError,
    DocumentStoreConnectionError,
    DocumentStoreNotFoundError,
    DocumentStoreQueryError,
)

logger = structlog.get_logger("document_store.pgvector")

HNSW_EF_SEARCH_DEFAULT = 40
HNSW_EF_SEARCH_MAX = 1000

_DOCUMENT_TSVECTOR = "to_tsvector('english', title || ' ' || content)"
_CLIENT_TSVECTOR = (
    "to_tsvector('simple', first_name || ' ' || last_name || ' ' || email"
    " || ' ' || coalesce(description, ''))"
)


class PgVectorStore(DocumentStore):
    """PgVector implementation of the document store."""

    def __init__(
        self,
        dsn: str,
        pool_size: int = 10,
        max_queries: int = 50000,
        command_timeout: int = 60,
        vector_dimension: int = 384,
    ):
        """Configure a PgVector-backed store.

        Parameters
        - dsn: PostgreSQL DSN including database and credentials
        - pool_size: Max size of asyncpg connection pool
        - max_queries: Queries per connection before recycling
        - command_timeout: Seconds to allow per DB command
        - vector_dimension: Dimensionality of the ``chunks.embedding`` column
        """
        self.dsn = dsn
        self.pool_size = pool_size
        self.max_queries = max_queries
        self.command_timeout = command_timeout
        self.vector_dimension = vector_dimension
        self._pool: Optional[Pool] = None

    async def _init_connection(self, conn: Connection) -> None:
        """Register the pgvector codec for asyncpg connections."""
        await register_vector(conn)

    async def _get_pool(self) -> Pool:
        """Get or create the connection pool."""
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=1,
                    max_size=self.pool_size,
                    max_queries=self.max_queries,
                    command_timeout=self.command_timeout,
                    init=self._init_connection,
                )
                logger.info("Created PgVector connection pool", pool_size=self.pool_size)
            except Exception as e:
                logger.error("Failed to create PgVector connection pool", error=str(e))
                raise DocumentStoreConnectionError(f"Failed to create connection pool: {e}") from e

        return self._pool

    async def _execute_query(
        self,
        query: str,
        *args: Any,
        fetch: bool = False,
        fetch_one: bool = False
    ) -> Any:
        """Execute a query with error handling.

        The ``fetch``/``fetch_one`` flags control how results are retrieved.
        Driver failures are wrapped in ``DocumentStoreQueryError``.
        """
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                if fetch_one:
                    return await conn.fetchrow(query, *args)
                if fetch:
                    return await conn.fetch(query, *args)
                return await conn.execute(query, *args)
        except asyncpg.UniqueViolationError as e:
            raise DocumentStoreConflictError(str(e)) from e
        except Exception as e:
            logger.error("Query execution failed", query=query, error=str(e))
            raise DocumentStoreQueryError(f"Query failed: {e}") from e

    async def initialize(self) -> None:
        """Create the pool and make sure the schema exists."""
        await self.ensure_schema()

    async def ensure_schema(self) -> None:
        """Create extension, tables and indexes if missing.

        The extension is created on a bare connection first so the pool's
        per-connection codec registration can find the ``vector`` type.
        """
        try:
            conn = await asyncpg.connect(self.dsn)
        except Exception as e:
            raise DocumentStoreConnectionError(f"Failed to connect: {e}") from e
        try:
            await conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS clients (
                    id UUID PRIMARY KEY,
                    first_name TEXT NOT NULL,
                    last_name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    description TEXT,
                    social_links TEXT[] NOT NULL DEFAULT '{{}}',
                    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS documents (
                    id UUID PRIMARY KEY,
                    client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL
                );

                CREATE TABLE IF NOT EXISTS chunks (
                    id BIGSERIAL PRIMARY KEY,
                    document_id UUID NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
                    chunk_index INTEGER NOT NULL,
                    text TEXT NOT NULL,
                    embedding vector({int(self.vector_dimension)}) NOT NULL,
                    UNIQUE (document_id, chunk_index)
                );

                CREATE UNIQUE INDEX IF NOT EXISTS uq_documents_client_title
                    ON documents (client_id, lower(title));
                CREATE INDEX IF NOT EXISTS idx_documents_fts
                    ON documents USING gin ({_DOCUMENT_TSVECTOR});
                CREATE INDEX IF NOT EXISTS idx_clients_fts
                    ON clients USING gin ({_CLIENT_TSVECTOR});
                CREATE INDEX IF NOT EXISTS idx_chunks_embedding
                    ON chunks USING hnsw (embedding vector_cosine_ops);
            """)
            logger.info("Ensured search schema", vector_dimension=self.vector_dimension)
        except Exception as e:
            logger.error("Schema initialization failed", error=str(e))
            raise DocumentStoreQueryError(f"Schema initialization failed: {e}") from e
        finally:
            await conn.close()

        await self._get_pool()

    async def create_client(self, client: ClientRecord) -> ClientRecord:
        """Persist a new client."""
        query = """
            INSERT INTO clients (id, first_name, last_name, email, description, social_links)
            VALUES ($1, $2, $3, $4, $5, $6)
        """
        try:
            await self._execute_query(
                query,
                client.id,
                client.first_name,
                client.last_name,
                client.email,
                client.description,
                list(client.social_links),
            )
        except DocumentStoreConflictError as e:
            logger.warning("Duplicate client email", email=client.email)
            raise DocumentStoreConflictError("A client with this email already exists") from e

        logger.info("Stored client", client_id=str(client.id))
        return client

    async def get_client(self, client_id: UUID) -> Optional[ClientRecord]:
        """Get a client by id."""
        row = await self._execute_query(
            """
            SELECT id, first_name, last_name, email, description, social_links
            FROM clients WHERE id = $1
            """,
            client_id,
            fetch_one=True,
        )
        return self._client_from_row(row) if row else None

    async def find_document_by_title(self, client_id: UUID, title: str) -> Optional[DocumentRecord]:
        """Find a client's document by case-insensitive title."""
        row = await self._execute_query(
            """
            SELECT id, client_id, title, content, created_at
            FROM documents WHERE client_id = $1 AND lower(title) = lower($2)
            """,
            client_id,
            title,
            fetch_one=True,
        )
        return self._document_from_row(row) if row else None

    async def store_document(self, document: DocumentRecord, chunks: Sequence[ChunkRecord]) -> DocumentRecord:
        """Insert a document and its chunks in one transaction."""
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        """
                        INSERT INTO documents (id, client_id, title, content, created_at)
                        VALUES ($1, $2, $3, $4, $5)
                        """,
                        document.id,
                        document.client_id,
                        document.title,
                        document.content,
                        document.created_at,
                    )
                    await conn.executemany(
                        """
                        INSERT INTO chunks (document_id, chunk_index, text, embedding)
                        VALUES ($1, $2, $3, $4)
                        """,
                        [
                            (chunk.document_id, chunk.chunk_index, chunk.text, self._ensure_vector_dimension(chunk.embedding))
                            for chunk in chunks
                        ],
                    )
        except asyncpg.ForeignKeyViolationError as e:
            raise DocumentStoreNotFoundError("Client not found") from e
        except asyncpg.UniqueViolationError as e:
            raise DocumentStoreConflictError(
                "A document with this title already exists for this client"
            ) from e
        except ValueError:
            raise
        except Exception as e:
            logger.error("Failed to store document", document_id=str(document.id), error=str(e))
            raise DocumentStoreQueryError(f"Failed to store document: {e}") from e

        logger.info(
            "Stored document",
            document_id=str(document.id),
            client_id=str(document.client_id),
            chunk_count=len(chunks),
        )
        return document

    async def get_documents(self, document_ids: Iterable[UUID]) -> Dict[UUID, DocumentRecord]:
        """Fetch documents by id."""
        ids = list(document_ids)
        if not ids:
            return {}
        rows = await self._execute_query(
            """
            SELECT id, client_id, title, content, created_at
            FROM documents WHERE id = ANY($1::uuid[])
            """,
            ids,
            fetch=True,
        )
        return {row["id"]: self._document_from_row(row) for row in rows}

    async def semantic_scores(self, query_vector: np.ndarray, limit: int) -> Dict[UUID, float]:
        """Best chunk similarity per document among the ``limit`` nearest chunks.

        The HNSW scan yields at most ``hnsw.ef_search`` rows, so the search
        list is widened to ``limit`` for this transaction.
        """
        vector_array = self._ensure_vector_dimension(query_vector)
        ef_search = self.hnsw_ef_search(limit)
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(f"SET LOCAL hnsw.ef_search = {ef_search}")
                    rows = await conn.fetch(
                        """
                        SELECT document_id, MAX(similarity) AS score
                        FROM (
                            SELECT document_id, 1 - (embedding <=> $1) AS similarity
                            FROM chunks
                            ORDER BY embedding <=> $1
                            LIMIT $2
                        ) AS nearest
                        GROUP BY document_id
                        """,
                        vector_array,
                        limit,
                    )
        except Exception as e:
            logger.error("Vector similarity search failed", error=str(e))
            raise DocumentStoreQueryError(f"Vector similarity search failed: {e}") from e

        scores = {row["document_id"]: float(row["score"]) for row in rows}

        logger.info(
            "Vector similarity search completed",
            query_vector_dim=len(vector_array),
            limit=limit,
            ef_search=ef_search,
            results_count=len(scores),
        )
        return scores

    @staticmethod
    def hnsw_ef_search(limit: int) -> int:
        """HNSW search list size covering ``limit`` rows, within pgvector's [40, 1000]."""
        return min(max(int(limit), HNSW_EF_SEARCH_DEFAULT), HNSW_EF_SEARCH_MAX)

    async def keyword_scores(self, query: str) -> Dict[UUID, float]:
        """``ts_rank`` per document matching the query."""
        rows = await self._execute_query(
            f"""
            SELECT id, ts_rank({_DOCUMENT_TSVECTOR}, plainto_tsquery('english', $1)) AS rank
            FROM documents
            WHERE {_DOCUMENT_TSVECTOR} @@ plainto_tsquery('english', $1)
            """,
            query,
            fetch=True,
        )
        scores = {row["id"]: float(row["rank"]) for row in rows}

        logger.info("Lexical search completed", results_count=len(scores))
        return scores

    async def search_clients(self, query: str) -> List[ClientRecord]:
        """Full-text match on client name, email and description."""
        rows = await self._execute_query(
            f"""
            SELECT id, first_name, last_name, email, description, social_links
            FROM clients
            WHERE {_CLIENT_TSVECTOR} @@ plainto_tsquery('simple', $1)
            ORDER BY lower(last_name), lower(first_name), email
            """,
            query,
            fetch=True,
        )
        return [self._client_from_row(row) for row in rows]

    async def health_check(self) -> bool:
        """Check if the database answers."""
        try:
            await self._execute_query("SELECT 1", fetch_one=True)
            return True
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Closed PgVector connection pool")

    def _ensure_vector_dimension(self, vector: Iterable[float]) -> np.ndarray:
        """Ensure a vector matches the expected dimensionality."""
        array = np.asarray(vector, dtype=np.float32)
        if array.ndim != 1:
            raise ValueError("Vector must be one-dimensional")

        if array.shape[0] != self.vector_dimension:
            raise ValueError(
                f"Expected vector dimension {self.vector_dimension}, "
                f"got {array.shape[0]}"
            )
        return array

    @staticmethod
    def _client_from_row(row: asyncpg.Record) -> ClientRecord:
        return ClientRecord(
            id=row["id"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            email=row["email"],
            description=row["description"],
            social_links=list(row["social_links"] or []),
        )

    @staticmethod
    def _document_from_row(row: asyncpg.Record) -> DocumentRecord:
        return DocumentRecord(
            id=row["id"],
            client_id=row["client_id"],
            title=row["title"],
            content=row["content"],
            created_at=row["created_at"],
        )
