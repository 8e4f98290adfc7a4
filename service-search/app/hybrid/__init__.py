"""Hybrid search components for semantic + lexical ranking.

Includes the ``SearchManager`` which embeds the query, runs vector similarity
and full-text lookups concurrently, and merges them with weighted fusion.
"""
