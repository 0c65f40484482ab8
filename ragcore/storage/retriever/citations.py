"""
Citation Builder
================

One Citation per distinct source item, ordered by the position of that
item's best-ranked chunk. Every chunk gets the ordinal of its source, so
chunks of the same document share one reference.
"""

from typing import Dict, List

from ragcore.storage.retriever.models import Citation, ScoredChunk


def build_citations(chunks: List[ScoredChunk]) -> List[Citation]:
    """
    Assign citation ordinals (1-based) to ``chunks`` in place.

    Returns:
        Citations in ordinal order; never more than len(chunks)
    """
    ordinals: Dict[str, int] = {}
    citations = []

    for chunk in chunks:
        ordinal = ordinals.get(chunk.item_id)
        if ordinal is None:
            ordinal = len(citations) + 1
            ordinals[chunk.item_id] = ordinal
            citations.append(Citation(ordinal=ordinal, title=chunk.item_title, item_id=chunk.item_id))
        chunk.citation_ordinal = ordinal

    return citations
