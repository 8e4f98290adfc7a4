"""Shared libraries for the hybrid search service.

Subpackages:
- ``libs.common``: configuration, logging, authentication and metrics.
- ``libs.document_store``: document/chunk storage with semantic and lexical
  lookups, plus concrete backends.

Notes:
- Keep HTTP and ranking policy out of here; this layer only stores and
  retrieves raw scores.
"""
