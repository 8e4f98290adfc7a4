"""Document store factory.

Centralizes creation of concrete ``DocumentStore`` backends so callers don't
depend on implementation details. Both backends feed the same ranking code;
only the data-access path differs.
"""

from enum import Enum

import structlog

from .base import DocumentStore
from .memory import InMemoryStore
from .pgvector import PgVectorStore

logger = structlog.get_logger("document_store.factory")


class DocumentStoreType(Enum):
    """Supported document store backends."""
    PGVECTOR = "pgvector"
    MEMORY = "memory"


def create_document_store(config) -> DocumentStore:
    """Create the store selected by ``config.ml_vector_backend``.

    Parameters
    - config: ``BaseConfig`` (or subclass) carrying DSN, pool and dimension

    Raises ``ValueError`` for an unknown backend name.
    """
    try:
        store_type = DocumentStoreType(config.ml_vector_backend.lower())
    except ValueError:
        raise ValueError(f"Unsupported document store backend: {config.ml_vector_backend}") from None

    if store_type == DocumentStoreType.PGVECTOR:
        store: DocumentStore = PgVectorStore(
            dsn=config.ml_vector_db_dsn,
            pool_size=config.ml_vector_pool_size,
            command_timeout=config.ml_vector_command_timeout,
            vector_dimension=config.ml_vector_dimension,
        )
    else:
        store = InMemoryStore(vector_dimension=config.ml_vector_dimension)

    logger.info("Created document store", backend=store_type.value)
    return store
