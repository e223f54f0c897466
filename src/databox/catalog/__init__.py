"""Catalog search: similarity, scoring and the read-side query service."""

from databox.catalog.queries import CatalogQueries
from databox.catalog.search import Match, NotFound, SearchResult, find_best_match, rank, score_entry
from databox.catalog.similarity import compare_two_strings

__all__ = [
    "CatalogQueries",
    "Match",
    "NotFound",
    "SearchResult",
    "compare_two_strings",
    "find_best_match",
    "rank",
    "score_entry",
]
