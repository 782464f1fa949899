"""
Resolution Session

Per-automation-session bundle: one memory store, one context tracker,
one gateway and one orchestrator, built at session start and torn down
with close(). Parallel sessions each get their own bundle.
"""

import logging
from typing import Any, Dict, Optional

from .config import ResolverConfig
from .brain.ai_gateway import AIGateway
from .brain.selector_resolver import SelectorResolver
from .context.session_context import SessionContextTracker
from .core.element_graph import ElementGraphBuilder
from .core.heuristic_scorer import HeuristicScorer
from .core.resolution_orchestrator import ResolutionOrchestrator, ResolutionOutcome
from .knowledge.selector_memory import SelectorMemoryStore
from .knowledge.semantic_index import SemanticIndexBuilder, SemanticIndexManager

logger = logging.getLogger(__name__)


class ResolutionSession:
    """Owns the long-lived state of one automation session"""

    def __init__(self, config: Optional[ResolverConfig] = None, gateway=None, clock=None):
        """
        Args:
            config: Session configuration (defaults to ResolverConfig.from_env())
            gateway: Provider gateway; an AIGateway is built from config when omitted
            clock: Optional time source for the context tracker
        """
        self.config = config or ResolverConfig.from_env()
        self.store = SelectorMemoryStore(str(self.config.store_path))
        self.tracker = SessionContextTracker(clock=clock)

        llm_available = self.config.enable_llm and (gateway is not None or self.config.has_provider_credentials())
        needs_gateway = llm_available or self.config.enable_embeddings
        self.gateway = gateway if gateway is not None else (AIGateway.from_config(self.config) if needs_gateway else None)

        resolver = SelectorResolver.from_config(self.gateway, self.config) if llm_available else None
        if self.config.enable_llm and not llm_available:
            logger.info(f"[RESOLVER] No credentials for provider '{self.config.provider}', heuristics only")

        semantic = None
        if self.config.enable_embeddings and self.gateway is not None:
            semantic = SemanticIndexManager(SemanticIndexBuilder(
                self.gateway,
                batch_size=self.config.embedding_batch_size,
                concurrency=self.config.embedding_concurrency,
            ))

        self.orchestrator = ResolutionOrchestrator(
            store=self.store,
            tracker=self.tracker,
            graph_builder=ElementGraphBuilder(self.store.patterns),
            scorer=HeuristicScorer(self.store),
            resolver=resolver,
            semantic=semantic,
            enable_llm=llm_available,
            max_disambiguation_retries=self.config.max_disambiguation_retries,
            max_candidates_for_llm=self.config.max_candidates_for_llm,
            semantic_k=self.config.semantic_k,
        )
        self._closed = False

    async def resolve(self, page, label: str, action: str = "any", **kwargs) -> ResolutionOutcome:
        if self._closed:
            raise RuntimeError("Resolution session is closed")
        return await self.orchestrator.resolve(page, label, action, **kwargs)

    def get_stats(self) -> Dict[str, Any]:
        stats = {
            "orchestrator": self.orchestrator.get_stats(),
            "context": self.tracker.get_stats(),
            "memory": self.store.get_stats(),
        }
        if self.gateway is not None and hasattr(self.gateway, "get_stats"):
            stats["gateway"] = self.gateway.get_stats()
        return stats

    def close(self):
        """Flush the memory store and reset the tracker"""
        if self._closed:
            return
        self.store.save()
        self.tracker.reset()
        self._closed = True
        logger.info("[RESOLVER] Resolution session closed")

    async def __aenter__(self) -> "ResolutionSession":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()
