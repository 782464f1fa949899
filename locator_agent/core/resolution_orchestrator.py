"""
Resolution Orchestrator

Top-level control loop that turns a (label, action) request into a live,
validated selector. Stages run in strict precedence and an earlier
success always short-circuits the later ones:

1. Static memory entries (curated selectors) - validated live
2. Learned memory entries - validated live
3. Heuristic Direct / TryTop2 over a fresh element graph - validated live
4. Semantic evidence (optional embedding layer) - validated live
5. Provider disambiguation with retry and accumulated failed selectors

Every request ends in Resolved or Unresolved. Only GraphBuildFailure
reaches the caller as an exception.
"""

import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import urlparse

from playwright.async_api import Page

from .element_graph import ElementGraph, ElementGraphBuilder
from .heuristic_scorer import (
    CandidateMatch,
    HeuristicScorer,
    QueryIntent,
    RoutingKind,
    create_llm_context,
)
from ..brain.selector_resolver import validate_selector
from ..errors import ProviderFailure, ValidationFailure

logger = logging.getLogger(__name__)

SEMANTIC_CANDIDATES = 3


class ResolutionStage(Enum):
    """Which stage produced the outcome"""
    STATIC = "static"
    LEARNED = "learned"
    DIRECT = "direct"
    TOP2 = "top2"
    SEMANTIC = "semantic"
    LLM = "llm"
    UNRESOLVED = "unresolved"


# ==================== Outcomes ====================

@dataclass(frozen=True)
class Resolved:
    """A selector that matched at least one live element"""
    selector: str
    confidence: float
    fallbacks: Tuple[str, ...]
    stage: ResolutionStage


@dataclass(frozen=True)
class Unresolved:
    """Empty-result sentinel returned once every stage is exhausted"""
    failed_selectors: Tuple[str, ...] = ()
    selector: str = ""
    confidence: float = 0.0
    fallbacks: Tuple[str, ...] = ()
    stage: ResolutionStage = ResolutionStage.UNRESOLVED


ResolutionOutcome = Union[Resolved, Unresolved]


@dataclass
class _Attempt:
    """Per-request working state"""
    intent: QueryIntent
    url: str
    step_note: Optional[str] = None
    failed: List[str] = field(default_factory=list)
    graph: Optional[ElementGraph] = None
    matches: List[CandidateMatch] = field(default_factory=list)

    @property
    def element_type(self) -> str:
        return self.intent.element_type


# ==================== Orchestrator ====================

class ResolutionOrchestrator:
    """
    Resolves element labels to selectors for one automation session.

    Owns no global state: the memory store and context tracker are passed
    in and must not be shared with another concurrently running session.
    """

    def __init__(
        self,
        store,
        tracker,
        graph_builder: Optional[ElementGraphBuilder] = None,
        scorer: Optional[HeuristicScorer] = None,
        resolver=None,
        semantic=None,
        enable_llm: bool = True,
        max_disambiguation_retries: int = 2,
        max_candidates_for_llm: int = 8,
        semantic_k: int = 30,
    ):
        """
        Args:
            store: SelectorMemoryStore with static and learned selectors
            tracker: SessionContextTracker for this session
            graph_builder: Live element graph builder (defaults from store patterns)
            scorer: Heuristic scorer (defaults from store thresholds/weights)
            resolver: SelectorResolver for provider disambiguation, or None
            semantic: SemanticIndexManager, or None to skip the embedding layer
            enable_llm: Whether escalation may call the provider
        """
        self.store = store
        self.tracker = tracker
        self.graph_builder = graph_builder or ElementGraphBuilder(store.patterns)
        self.scorer = scorer or HeuristicScorer(store)
        self.resolver = resolver
        self.semantic = semantic
        self.enable_llm = enable_llm
        self.max_disambiguation_retries = max_disambiguation_retries
        self.max_candidates_for_llm = max_candidates_for_llm
        self.semantic_k = semantic_k

        self._stage_hits: Dict[ResolutionStage, int] = {stage: 0 for stage in ResolutionStage}
        self._total_resolutions = 0
        self._step_index = 0

    async def resolve(
        self,
        page: Page,
        label: str,
        action: str = "any",
        role_hint: Optional[str] = None,
        context: Optional[str] = None,
        step_note: Optional[str] = None,
    ) -> ResolutionOutcome:
        """
        Resolve a label to a live selector.

        Args:
            page: Browser page (Playwright Page or compatible)
            label: Human label of the target element
            action: click, type or any
            role_hint: Optional ARIA role expected for the target
            context: Optional section/context text used for context boosts
            step_note: Optional free-text step description for the provider

        Returns:
            Resolved, or the Unresolved sentinel

        Raises:
            GraphBuildFailure: the page could not be read
        """
        start = time.time()
        self._total_resolutions += 1
        self._step_index += 1

        attempt = _Attempt(
            intent=QueryIntent(
                action=action,
                label=label,
                role_hint=role_hint,
                context=context,
                failed_selectors=self.tracker.failed_selectors,
            ),
            url=getattr(page, "url", "") or "",
            step_note=step_note,
        )
        self.tracker.on_step_start(self._step_index, action, label)
        logger.info(f"[RESOLVER] Resolving '{label}' ({action}) on {attempt.url}")

        outcome = await self._run_stages(page, attempt)

        self._stage_hits[outcome.stage] += 1
        elapsed = int((time.time() - start) * 1000)
        if isinstance(outcome, Resolved):
            logger.info(
                f"[RESOLVER] Resolved '{label}' via {outcome.stage.value}: {outcome.selector} "
                f"(confidence {outcome.confidence:.2f}, {elapsed}ms)"
            )
        else:
            logger.warning(
                f"[RESOLVER] Could not resolve '{label}' after {elapsed}ms; "
                f"{len(outcome.failed_selectors)} selector(s) failed"
            )
        return outcome

    async def _run_stages(self, page, attempt: _Attempt) -> ResolutionOutcome:
        outcome = await self._try_memory(page, attempt, ResolutionStage.STATIC)
        if outcome:
            return outcome
        outcome = await self._try_memory(page, attempt, ResolutionStage.LEARNED)
        if outcome:
            return outcome

        # GraphBuildFailure propagates from here
        attempt.graph = await self.graph_builder.build(page)
        self.tracker.on_navigate(attempt.graph.url or attempt.url, attempt.graph)

        outcome = await self._try_heuristics(page, attempt)
        if outcome:
            return outcome

        outcome = await self._try_semantic(page, attempt)
        if outcome:
            return outcome

        outcome = await self._try_llm(page, attempt)
        if outcome:
            return outcome

        return Unresolved(failed_selectors=tuple(attempt.failed))

    # ==================== Live Validation ====================

    async def _validate(self, page, selector: str, attempt: _Attempt) -> bool:
        if not selector or selector in attempt.failed:
            return False
        try:
            await validate_selector(page, selector)
            return True
        except ValidationFailure as e:
            logger.debug(f"[RESOLVER] {e}")
            attempt.failed.append(selector)
            self.tracker.on_interaction(None, selector, False)
            return False

    async def _first_valid(self, page, selectors: List[str], attempt: _Attempt) -> Optional[str]:
        for selector in selectors:
            if await self._validate(page, selector, attempt):
                return selector
        return None

    # ==================== Stages ====================

    async def _try_memory(self, page, attempt: _Attempt, stage: ResolutionStage) -> Optional[Resolved]:
        if stage is ResolutionStage.STATIC:
            entries = self.store.get_static_selectors(attempt.intent.label, attempt.element_type, attempt.url)
        else:
            entries = self.store.get_learned_selectors(attempt.intent.label, attempt.element_type, attempt.url)

        for entry in entries:
            candidates = [entry.selector] + entry.fallbacks
            selector = await self._first_valid(page, candidates, attempt)
            if selector:
                logger.info(f"[MEMORY] {stage.value.capitalize()} selector validated for '{attempt.intent.label}'")
                fallbacks = tuple(s for s in candidates if s != selector and s not in attempt.failed)
                confidence = entry.confidence if entry.confidence is not None else 1.0
                if stage is ResolutionStage.LEARNED:
                    self._record(
                        attempt, selector, list(fallbacks), confidence, None,
                        entry.reasoning, url_pattern=entry.url_pattern,
                    )
                else:
                    self.tracker.on_interaction(None, selector, True)
                return Resolved(selector, confidence, fallbacks, stage)
        return None

    async def _try_heuristics(self, page, attempt: _Attempt) -> Optional[Resolved]:
        matches = self.scorer.find_best_matches(attempt.graph, attempt.intent, self.tracker.session_context())
        matches = self.tracker.enhance_matches(matches)
        matches.sort(key=lambda m: m.score, reverse=True)
        attempt.matches = matches

        decision = self.scorer.route(matches)
        logger.info(f"[HEURISTIC] Routing {decision.kind.value}: {decision.reason}")
        if decision.escalate:
            return None

        stage = ResolutionStage.DIRECT if decision.kind is RoutingKind.DIRECT else ResolutionStage.TOP2
        for match in decision.candidates:
            selectors = []
            cached = self.tracker.get_cached_selector(match.element, attempt.intent.action)
            if cached:
                selectors.append(cached.selector)
            for selector in [match.selector] + match.element.candidate_selectors:
                if selector not in selectors:
                    selectors.append(selector)

            selector = await self._first_valid(page, selectors, attempt)
            if selector:
                fallbacks = [s for s in match.element.candidate_selectors if s != selector and s not in attempt.failed]
                self._record(attempt, selector, fallbacks, match.confidence, match.element, "; ".join(match.reasoning))
                return Resolved(selector, match.confidence, tuple(fallbacks), stage)

        logger.info(f"[HEURISTIC] Live validation failed for {stage.value} candidates, escalating")
        return None

    async def _try_semantic(self, page, attempt: _Attempt) -> Optional[Resolved]:
        if self.semantic is None:
            return None

        # Imported here: the knowledge package depends on core
        from ..knowledge.semantic_index import QueryConstraints, QueryFilters, QuerySpec

        query = QuerySpec(
            intent=attempt.intent.action,
            keywords=[w for w in attempt.intent.label.split() if w],
            filters=QueryFilters(section_hint=attempt.intent.context),
            constraints=QueryConstraints(must_be_visible=True),
            k=self.semantic_k,
        )
        try:
            await self.semantic.get_or_build(attempt.graph)
            pack = await self.semantic.search(query)
        except ProviderFailure as e:
            logger.warning(f"[SEMANTIC] Search unavailable: {e}")
            return None

        items = [item for item in pack.items if item.type == "element"][:SEMANTIC_CANDIDATES]
        for item in items:
            selector = await self._first_valid(page, item.selector_candidates, attempt)
            if selector:
                fallbacks = [s for s in item.selector_candidates if s != selector and s not in attempt.failed]
                confidence = min(item.score, 1.0)
                element = self._element_for(attempt, selector)
                self._record(attempt, selector, fallbacks, confidence, element, f"Semantic match '{item.label}'")
                return Resolved(selector, confidence, tuple(fallbacks), ResolutionStage.SEMANTIC)
        return None

    async def _try_llm(self, page, attempt: _Attempt) -> Optional[Resolved]:
        if self.resolver is None or not self.enable_llm:
            logger.info("[RESOLVER] Provider escalation disabled, skipping")
            return None

        # failures from earlier requests in this session steer the provider too
        for selector in attempt.intent.failed_selectors:
            if selector not in attempt.failed:
                attempt.failed.append(selector)

        result = await self.resolver.find_selector_with_validation(
            page,
            attempt.intent.label,
            attempt.element_type,
            step_note=attempt.step_note,
            max_retries=self.max_disambiguation_retries,
            failed_selectors=attempt.failed,
            candidates_context=create_llm_context(attempt.matches[:self.max_candidates_for_llm]),
        )
        if result.is_empty:
            return None

        element = self._element_for(attempt, result.selector)
        self._record(attempt, result.selector, list(result.fallbacks), result.confidence, element, "Provider disambiguation")
        return Resolved(result.selector, result.confidence, tuple(result.fallbacks), ResolutionStage.LLM)

    # ==================== Recording ====================

    @staticmethod
    def _element_for(attempt: _Attempt, selector: str):
        if attempt.graph is None:
            return None
        for element in attempt.graph.elements:
            if selector in element.candidate_selectors:
                return element
        return None

    def _record(
        self,
        attempt: _Attempt,
        selector: str,
        fallbacks: List[str],
        confidence: float,
        element,
        reasoning: Optional[str],
        url_pattern: Optional[str] = "",
    ):
        """Write a resolved selector to the tracker and the learned memory"""
        if url_pattern == "":
            url_pattern = urlparse(attempt.url).netloc or None
        self.tracker.on_interaction(element, selector, True)
        self.store.add_learned_selector(
            label=attempt.intent.label,
            element_type=attempt.element_type,
            selector=selector,
            fallbacks=fallbacks,
            url_pattern=url_pattern,
            confidence=confidence,
            reasoning=reasoning,
        )

    # ==================== Stats ====================

    def get_stats(self) -> Dict[str, Any]:
        """Resolution counts per stage"""
        return {
            "total_resolutions": self._total_resolutions,
            "stage_hits": {stage.value: count for stage, count in self._stage_hits.items()},
            "llm_dependency": (
                self._stage_hits[ResolutionStage.LLM] / self._total_resolutions * 100
                if self._total_resolutions > 0 else 0
            ),
        }
