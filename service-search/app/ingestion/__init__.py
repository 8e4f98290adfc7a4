"""Ingestion of clients and documents.

- ``chunker``: split document content into overlapping word windows.
- ``indexer``: validate, chunk, embed and persist documents.
"""
