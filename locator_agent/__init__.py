"""
Locator Agent

Resolves human labels ("Email", "Sign in") to live UI selectors:
- Static and learned selector memory, always tried first
- Weighted heuristic scoring over a one-pass element graph
- Session context (form groups, flows, recent elements) biasing ranking
- Optional semantic retrieval over embeddings
- Provider disambiguation with live validation and failed-selector feedback
"""

from .config import ResolverConfig
from .errors import (
    LocatorAgentError,
    GraphBuildFailure,
    NoCandidates,
    ParseFailure,
    ValidationFailure,
    ProviderFailure,
)
from .core import (
    Element,
    ElementGraph,
    ElementGraphBuilder,
    HeuristicScorer,
    QueryIntent,
    ResolutionOrchestrator,
    Resolved,
    Unresolved,
    build_graph_from_html,
)
from .knowledge import SelectorMemoryStore, SemanticIndexManager
from .context import SessionContextTracker
from .brain import AIGateway, SelectorResolver
from .session import ResolutionSession

__all__ = [
    # Config & errors
    "ResolverConfig",
    "LocatorAgentError",
    "GraphBuildFailure",
    "NoCandidates",
    "ParseFailure",
    "ValidationFailure",
    "ProviderFailure",
    # Core
    "Element",
    "ElementGraph",
    "ElementGraphBuilder",
    "HeuristicScorer",
    "QueryIntent",
    "ResolutionOrchestrator",
    "Resolved",
    "Unresolved",
    "build_graph_from_html",
    # Knowledge & context
    "SelectorMemoryStore",
    "SemanticIndexManager",
    "SessionContextTracker",
    # Provider
    "AIGateway",
    "SelectorResolver",
    # Session
    "ResolutionSession",
]

__version__ = "1.0.0"
