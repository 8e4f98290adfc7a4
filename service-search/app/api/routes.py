"""API routes for search service."""

import time
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, EmailStr, Field, field_validator
import structlog

from libs.document_store.base import ClientRecord, DocumentRecord
from ..hybrid.search_manager import SearchManager
from ..ingestion.indexer import DocumentIndexer

logger = structlog.get_logger("search_service.api")

router = APIRouter()


class ClientRequest(BaseModel):
    """Request model for client creation."""
    first_name: str = Field(..., min_length=1, description="First name")
    last_name: str = Field(..., min_length=1, description="Last name")
    email: EmailStr = Field(..., description="Unique email address")
    description: Optional[str] = Field(None, description="Free-text description")
    social_links: Optional[List[str]] = Field(None, description="Social profile URLs")

    @field_validator("first_name", "last_name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class DocumentRequest(BaseModel):
    """Request model for document creation."""
    title: str = Field(..., description="Document title, unique per client")
    content: str = Field(..., description="Document text")

    @field_validator("title", "content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class ClientResponse(BaseModel):
    """Response model for a client."""
    id: UUID
    first_name: str
    last_name: str
    email: str
    description: Optional[str] = None
    social_links: List[str] = Field(default_factory=list)

    @classmethod
    def from_record(cls, client: ClientRecord) -> "ClientResponse":
        return cls(
            id=client.id,
            first_name=client.first_name,
            last_name=client.last_name,
            email=client.email,
            description=client.description,
            social_links=client.social_links,
        )


class DocumentResponse(BaseModel):
    """Response model for a document."""
    id: UUID
    client_id: UUID
    title: str
    content: str
    created_at: datetime

    @classmethod
    def from_record(cls, document: DocumentRecord) -> "DocumentResponse":
        return cls(
            id=document.id,
            client_id=document.client_id,
            title=document.title,
            content=document.content,
            created_at=document.created_at,
        )


class SearchResultItem(BaseModel):
    """A client or document hit; fields of the other kind are null."""
    type: str = Field(..., description="Either 'client' or 'document'")
    id: UUID
    score: Optional[float] = Field(None, description="Relevance score (documents only)")
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    description: Optional[str] = None
    social_links: Optional[List[str]] = None
    client_id: Optional[UUID] = None
    title: Optional[str] = None
    content: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_client(cls, client: ClientRecord) -> "SearchResultItem":
        return cls(
            type="client",
            id=client.id,
            first_name=client.first_name,
            last_name=client.last_name,
            email=client.email,
            description=client.description,
            social_links=client.social_links,
        )

    @classmethod
    def from_document(cls, document: DocumentRecord, score: float) -> "SearchResultItem":
        return cls(
            type="document",
            id=document.id,
            score=round(score, 4),
            client_id=document.client_id,
            title=document.title,
            content=document.content,
            created_at=document.created_at,
        )


class SearchResponse(BaseModel):
    """Response model for search endpoint."""
    results: List[SearchResultItem] = Field(..., description="Clients first, then ranked documents")
    total: int = Field(..., description="Total number of results")
    query: str = Field(..., description="Trimmed query")
    latency_ms: float = Field(..., description="Search latency in milliseconds")


def get_search_manager(request: Request) -> SearchManager:
    """Get search manager from application state."""
    return request.app.state.search_manager


def get_indexer(request: Request) -> DocumentIndexer:
    """Get document indexer from application state."""
    return request.app.state.indexer


@router.post(
    "/clients",
    response_model=ClientResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_client(
    request: ClientRequest,
    indexer: DocumentIndexer = Depends(get_indexer),
):
    """Create a client."""
    client = await indexer.create_client(
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email,
        description=request.description,
        social_links=request.social_links,
    )
    return ClientResponse.from_record(client)


@router.post(
    "/clients/{client_id}/documents",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_document(
    client_id: UUID,
    request: DocumentRequest,
    indexer: DocumentIndexer = Depends(get_indexer),
):
    """Chunk, embed and store a document for a client."""
    document = await indexer.create_document(client_id, request.title, request.content)
    return DocumentResponse.from_record(document)


@router.get("/search", response_model=SearchResponse, response_model_exclude_none=True)
async def search(
    q: Optional[str] = Query(None, description="Search query"),
    search_manager: SearchManager = Depends(get_search_manager),
):
    """Search clients by text match and documents by hybrid ranking."""
    if q is None:
        raise HTTPException(status_code=400, detail="Required parameter 'q' is missing")

    start_time = time.time()
    try:
        results = await search_manager.search(q)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    items = [SearchResultItem.from_client(client) for client in results.clients]
    items.extend(
        SearchResultItem.from_document(ranked.document, ranked.score)
        for ranked in results.documents
    )
    latency_ms = (time.time() - start_time) * 1000

    logger.info(
        "Search completed",
        query=results.query,
        results_count=len(items),
        latency_ms=latency_ms,
    )

    return SearchResponse(
        results=items,
        total=len(items),
        query=results.query,
        latency_ms=latency_ms,
    )
