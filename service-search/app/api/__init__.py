"""API subpackage for the search service.

Routers expose endpoints for client and document creation and hybrid search.
Transport layer remains thin and delegates to ``DocumentIndexer`` and
``SearchManager``.
"""
