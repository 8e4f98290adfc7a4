"""Search service package.

Layout:
- ``api``: HTTP endpoints for clients, documents and search.
- ``encoders``: embedding model lifecycle.
- ``ingestion``: chunking and document indexing.
- ``hybrid``: semantic + lexical search orchestration.
- ``ranking``: weighted score fusion.
- ``runtime``: service-local metrics helpers.
"""
