"""
ragcore Core
============

Orchestration facade.

- KnowledgeBase: wires storage, pipeline and retrieval behind one API
- KnowledgeBaseConfig: connection and pipeline settings
"""

from ragcore.core.knowledge_base import KnowledgeBase, KnowledgeBaseConfig

__all__ = [
    "KnowledgeBase",
    "KnowledgeBaseConfig",
]
