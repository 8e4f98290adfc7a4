"""Document store adapters.

Primary components:
- ``base``: abstract ``DocumentStore`` interface, records and exceptions.
- ``pgvector``: PostgreSQL/pgvector implementation with SQL pushdown.
- ``memory``: in-process implementation recomputing scores over all rows.
- ``factory``: construct a store from typed config.

Guidance:
- Prefer ``factory.create_document_store`` so the service stays decoupled
  from specific backends.
"""
