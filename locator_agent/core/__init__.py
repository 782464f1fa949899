"""
Core Resolution Components

Element graph extraction, heuristic scoring and the resolution
orchestrator that ties memory, heuristics, semantics and provider
disambiguation together.
"""

from .element_graph import (
    Element,
    ElementGraph,
    ElementGraphBuilder,
    InteractionType,
    Stability,
    build_graph_from_html,
)
from .dom_view import DomView, SoupDomView
from .html_cleaner import clean_html
from .heuristic_scorer import (
    CandidateMatch,
    HeuristicScorer,
    QueryIntent,
    RoutingDecision,
    RoutingKind,
    SessionSnapshot,
    create_llm_context,
)
from .resolution_orchestrator import (
    ResolutionOrchestrator,
    ResolutionOutcome,
    ResolutionStage,
    Resolved,
    Unresolved,
)

__all__ = [
    # Graph
    "Element",
    "ElementGraph",
    "ElementGraphBuilder",
    "InteractionType",
    "Stability",
    "build_graph_from_html",
    "DomView",
    "SoupDomView",
    "clean_html",
    # Scoring
    "CandidateMatch",
    "HeuristicScorer",
    "QueryIntent",
    "RoutingDecision",
    "RoutingKind",
    "SessionSnapshot",
    "create_llm_context",
    # Orchestration
    "ResolutionOrchestrator",
    "ResolutionOutcome",
    "ResolutionStage",
    "Resolved",
    "Unresolved",
]
