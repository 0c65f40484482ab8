"""
Search Strategy Base
====================

Capability interface shared by the vector, keyword and graph searchers.

The fan-out treats every strategy the same way: ``search()`` returns hits
(possibly none) or raises; the retriever decides how a raised fault is
absorbed. Adding a strategy needs no change in the ranker.
"""

from abc import ABC, abstractmethod
from typing import List

from ragcore.config.retrieval import RetrievalConfig
from ragcore.storage.retriever.models import StrategyHit


class SearchStrategy(ABC):
    """
    Base class for retrieval strategies.

    Subclasses define ``name`` (one of vector, keyword, graph) and
    ``search()``. Hits must come only from READY items, best first.

    Example:
        >>> class TitleStrategy(SearchStrategy):
        ...     name = "keyword"
        ...
        ...     async def search(self, query, config):
        ...         return []
    """

    name: str = ""

    @abstractmethod
    async def search(self, query: str, config: RetrievalConfig) -> List[StrategyHit]:
        """Hits for ``query`` under the ``config`` snapshot."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name})"
