"""Vector storage for embedded passages."""

from .passage_index import IndexStats, PassageIndex, SearchResult

__all__ = ["IndexStats", "PassageIndex", "SearchResult"]
