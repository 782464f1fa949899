"""
Knowledge Layer

Persisted selector memory (static and learned entries plus scoring
configuration) and the optional embedding-based semantic index.
"""

from .selector_memory import (
    SelectorMemoryStore,
    MemoryEntry,
    HeuristicsConfig,
    DEFAULT_SCORE_THRESHOLDS,
    DEFAULT_WEIGHTS,
    DEFAULT_SYNONYMS,
    DEFAULT_PATTERNS,
)
from .semantic_index import (
    SemanticIndex,
    SemanticIndexBuilder,
    SemanticIndexManager,
    QuerySpec,
    EvidencePack,
    EvidenceItem,
)

__all__ = [
    "SelectorMemoryStore",
    "MemoryEntry",
    "HeuristicsConfig",
    "DEFAULT_SCORE_THRESHOLDS",
    "DEFAULT_WEIGHTS",
    "DEFAULT_SYNONYMS",
    "DEFAULT_PATTERNS",
    "SemanticIndex",
    "SemanticIndexBuilder",
    "SemanticIndexManager",
    "QuerySpec",
    "EvidencePack",
    "EvidenceItem",
]
