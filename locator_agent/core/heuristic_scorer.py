"""
Heuristic Candidate Scorer

Ranks element graph candidates against a query intent with an additive
weighted sum of independent signals:

1. Role match - exact role hint, or action-appropriate tag/role
2. Label similarity - fuzzy + token cosine over every text source
3. i18n synonyms - similarity against a matched synonym group
4. Stable attributes - test ids, semantic ids, form names, stability tier
5. Context boost - session form/modal, section heading, navigation, primary button
6. Negative signals - offscreen, disabled, inactive tab, ad/footer, duplicates

The routing decision that follows the ranking is the main cost-control
point: only low confidence escalates to semantic/LLM resolution.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .element_graph import Element, ElementGraph, Stability
from ..text_matching import best_similarity, fuzzy_similarity, href_to_label, normalize_text
from .dom_view import is_generated_id
from ..errors import NoCandidates
from ..knowledge.selector_memory import (
    DEFAULT_SCORE_THRESHOLDS,
    DEFAULT_SYNONYMS,
    DEFAULT_WEIGHTS,
    SelectorMemoryStore,
)

logger = logging.getLogger(__name__)

MAX_SELECTORS_TO_TRY = 16
MAX_ESCALATION_CANDIDATES = 8
DUPLICATE_PENALTY = 0.15
NEGATIVE_FLOOR = -0.3
I18N_MATCH_THRESHOLD = 0.85

DEMO_CLASS_KEYWORDS = ("demo", "footer", "advertisement", "banner")
SUBMIT_TERMS = ("submit", "send", "save", "login")
NAVIGATION_HINTS = ("sidebar", "navigation", "nav")


# ==================== Query & Result Types ====================

@dataclass
class QueryIntent:
    """What the caller is looking for"""
    action: str  # click, type, any
    label: str
    role_hint: Optional[str] = None
    context: Optional[str] = None
    failed_selectors: List[str] = field(default_factory=list)

    @property
    def element_type(self) -> str:
        """Memory store element type for this action"""
        if self.action == "type":
            return "input"
        if self.action == "click":
            return "button"
        return "any"


@dataclass
class SessionSnapshot:
    """Read-only view of session state consumed by the scorer"""
    recent_elements: List[Element] = field(default_factory=list)
    current_form_group: Optional[str] = None
    active_modal: Optional[str] = None


@dataclass
class CandidateMatch:
    """One scored candidate for a query"""
    element: Element
    selector: str
    score: float
    confidence: float
    reasoning: List[str] = field(default_factory=list)
    context: str = ""


class RoutingKind(Enum):
    """Where a ranked result goes next"""
    DIRECT = "direct"
    TRY_TOP2 = "try_top2"
    ESCALATE = "escalate"


@dataclass(frozen=True)
class RoutingDecision:
    """Routing outcome with the candidates to carry forward"""
    kind: RoutingKind
    candidates: Tuple[CandidateMatch, ...]
    reason: str
    best_score: float = 0.0

    @property
    def escalate(self) -> bool:
        return self.kind is RoutingKind.ESCALATE


# ==================== Scorer ====================

class HeuristicScorer:
    """
    Weighted multi-signal ranking of element graph candidates.

    Thresholds, weights and synonyms come from the memory store when one
    is given, otherwise from the compiled-in defaults. Explicit overrides
    win over both.
    """

    def __init__(
        self,
        store: Optional[SelectorMemoryStore] = None,
        score_thresholds: Optional[Dict[str, float]] = None,
        weights: Optional[Dict[str, float]] = None,
        synonyms: Optional[Dict[str, List[str]]] = None,
    ):
        self.store = store
        self.score_thresholds = dict(store.score_thresholds if store else DEFAULT_SCORE_THRESHOLDS)
        self.weights = dict(store.weights if store else DEFAULT_WEIGHTS)
        self.synonyms = dict(store.synonyms if store else DEFAULT_SYNONYMS)
        if score_thresholds:
            self.score_thresholds.update(score_thresholds)
        if weights:
            self.weights.update(weights)
        if synonyms:
            self.synonyms = dict(synonyms)

    def find_best_matches(
        self,
        graph: ElementGraph,
        intent: QueryIntent,
        session: Optional[SessionSnapshot] = None,
    ) -> List[CandidateMatch]:
        """Score every candidate and return positive matches, best first"""
        logger.info(f"[HEURISTIC] Finding matches for '{intent.label}' (action: {intent.action})")

        candidates = self.filter_candidates(graph, intent.action)
        logger.debug(f"[HEURISTIC] {len(candidates)} candidates after action filtering")

        matches: List[CandidateMatch] = []
        for element in candidates:
            total, reasoning = self.score_element(element, intent, graph, session)
            if total <= 0:
                continue
            matches.append(CandidateMatch(
                element=element,
                selector=element.candidate_selectors[0] if element.candidate_selectors
                else build_fallback_selector(element),
                score=total,
                confidence=min(total, 1.0),
                reasoning=reasoning,
                context=element.context_summary(),
            ))

        matches.sort(key=lambda m: m.score, reverse=True)

        for i, match in enumerate(matches[:3]):
            logger.debug(f"[HEURISTIC]   {i + 1}. Score {match.score:.3f}: {match.selector}")
        return matches

    @staticmethod
    def filter_candidates(graph: ElementGraph, action: str) -> List[Element]:
        """Visible, enabled, active-tab elements appropriate for the action"""
        result = []
        for element in graph.elements:
            if not (element.visible and element.enabled and element.is_in_active_tab):
                continue
            if action == "type":
                if element.tag in ("input", "textarea") or element.role == "textbox" or element.content_editable:
                    result.append(element)
                elif element.tag in ("label", "legend", "span", "div", "p") and element.text:
                    # Label association candidates
                    result.append(element)
            elif action == "click":
                if (
                    element.clickable
                    or element.tag in ("button", "a")
                    or element.role in ("button", "link")
                ):
                    result.append(element)
            else:
                result.append(element)
        return result

    def score_element(
        self,
        element: Element,
        intent: QueryIntent,
        graph: ElementGraph,
        session: Optional[SessionSnapshot] = None,
    ) -> Tuple[float, List[str]]:
        """Weighted total (floored at 0) and the reasoning trace"""
        reasoning: List[str] = []
        total = 0.0

        weighted = [
            ("role-match", self.score_role_match(element, intent.action, intent.role_hint), "roleMatch"),
            ("label-sim", self.score_label_similarity(element, intent.label), "labelSimilarity"),
            ("i18n", self.score_i18n_similarity(element, intent.label), "i18nNormalization"),
            ("stable", self.score_stable_attributes(element), "stableAttributes"),
            ("context", self.score_context_boost(element, intent, session), "contextBoost"),
        ]
        for name, score, weight_key in weighted:
            total += score * self.weights.get(weight_key, DEFAULT_WEIGHTS[weight_key])
            if score > 0:
                reasoning.append(f"{name}({score:.2f})")

        negative = self.score_negative_signals(element, graph)
        total += negative
        if negative < 0:
            reasoning.append(f"negative({negative:.2f})")

        return max(0.0, total), reasoning

    # ==================== Signals ====================

    @staticmethod
    def score_role_match(element: Element, action: str, role_hint: Optional[str] = None) -> float:
        if role_hint and element.role == role_hint:
            return 1.0
        if action == "click":
            if element.role in ("button", "link"):
                return 0.9
            if element.tag in ("button", "a"):
                return 0.8
            if element.clickable:
                return 0.6
        elif action == "type":
            if element.role == "textbox":
                return 0.9
            if element.tag in ("input", "textarea"):
                return 0.8
        return 0.0

    @staticmethod
    def score_label_similarity(element: Element, label: str) -> float:
        target = normalize_text(label)
        sources = [
            element.accessible_name,
            element.title,
            element.tooltip_title,
            element.label,
            element.placeholder,
            element.text,
            element.name,
            element.data_test_id,
            element.data_unique,
            href_to_label(element.href),
        ]
        candidates = [normalize_text(s) for s in sources if s]
        return best_similarity(target, [c for c in candidates if c])

    def score_i18n_similarity(self, element: Element, label: str) -> float:
        """Similarity of element text to every member of the synonym groups the label belongs to"""
        target = normalize_text(label)
        members: List[str] = []
        for key, synonyms in self.synonyms.items():
            group = [key] + list(synonyms)
            if any(fuzzy_similarity(normalize_text(s), target) > I18N_MATCH_THRESHOLD for s in group):
                members.extend(group)
        if not members:
            return 0.0

        texts = [
            normalize_text(s)
            for s in (element.accessible_name, element.label, element.placeholder, element.text)
            if s
        ]
        best = 0.0
        for text in texts:
            for member in members:
                best = max(best, fuzzy_similarity(text, normalize_text(member)))
        return best

    @staticmethod
    def score_stable_attributes(element: Element) -> float:
        score = 0.0
        if element.data_test_id:
            score += 0.8
        if element.data_unique:
            score += 0.8
        if element.id and not is_generated_id(element.id):
            score += 0.6
        if element.name and element.tag in ("input", "textarea", "select"):
            score += 0.5
        if element.stability is Stability.HIGH:
            score += 0.4
        elif element.stability is Stability.MEDIUM:
            score += 0.2
        if element.href:
            score += 0.2
        return min(score, 1.0)

    @staticmethod
    def score_context_boost(
        element: Element,
        intent: QueryIntent,
        session: Optional[SessionSnapshot] = None,
    ) -> float:
        boost = 0.0
        if session and session.current_form_group and element.form_group == session.current_form_group:
            boost += 0.6
        if session and session.active_modal and element.parent_modal_or_drawer == session.active_modal:
            boost += 0.4

        if intent.context:
            context = intent.context.lower()
            if element.section_title and context in element.section_title.lower():
                boost += 0.3
            if any(hint in context for hint in NAVIGATION_HINTS):
                if element.in_navigation or "sidebar" in (element.data_unique or "").lower():
                    boost += 0.6

        if element.is_primary and any(term in intent.label.lower() for term in SUBMIT_TERMS):
            boost += 0.5
        return min(boost, 1.0)

    @staticmethod
    def score_negative_signals(element: Element, graph: ElementGraph) -> float:
        """Summed penalties, clamped afterwards"""
        penalty = 0.0
        if not element.in_viewport:
            penalty -= 0.3
        if not element.enabled:
            penalty -= 0.5
        if not element.is_in_active_tab:
            penalty -= 0.4
        if any(keyword in cls.lower() for cls in element.classes for keyword in DEMO_CLASS_KEYWORDS):
            penalty -= 0.2

        if element.text:
            duplicates = sum(
                1 for other in graph.elements
                if other is not element
                and other.text == element.text
                and other.section_title == element.section_title
            )
            penalty -= DUPLICATE_PENALTY * duplicates

        return max(penalty, NEGATIVE_FLOOR)

    # ==================== Routing ====================

    def route(self, matches: List[CandidateMatch]) -> RoutingDecision:
        """Direct / TryTop2 / Escalate from the best score"""
        if not matches:
            logger.info("[HEURISTIC] No matches found, escalating")
            return RoutingDecision(RoutingKind.ESCALATE, (), "No matches found", 0.0)

        best = matches[0].score
        if best >= self.score_thresholds["direct"]:
            return RoutingDecision(
                RoutingKind.DIRECT, tuple(matches[:1]),
                f"High confidence match ({best:.3f})", best,
            )
        if best >= self.score_thresholds["tryMultiple"]:
            return RoutingDecision(
                RoutingKind.TRY_TOP2, tuple(matches[:2]),
                f"Medium confidence, trying top candidates ({best:.3f})", best,
            )
        return RoutingDecision(
            RoutingKind.ESCALATE, tuple(matches[:MAX_ESCALATION_CANDIDATES]),
            f"Low confidence ({best:.3f}), escalating", best,
        )

    def rank_or_raise(
        self,
        graph: ElementGraph,
        intent: QueryIntent,
        session: Optional[SessionSnapshot] = None,
    ) -> List[CandidateMatch]:
        """find_best_matches, raising NoCandidates on an empty result"""
        matches = self.find_best_matches(graph, intent, session)
        if not matches:
            raise NoCandidates(f"No candidates for '{intent.label}' ({intent.action})")
        return matches

    def get_selectors_to_try(
        self,
        matches: List[CandidateMatch],
        label: Optional[str] = None,
        element_type: Optional[str] = None,
        url: Optional[str] = None,
    ) -> List[str]:
        """
        Ordered, deduplicated selector list for live validation.

        Static memory entries come first, then learned entries, then each
        match's primary and candidate locators.
        """
        collected: List[str] = []

        if self.store and label and element_type:
            statics = self.store.get_static_selectors(label, element_type, url)
            for entry in statics:
                collected.append(entry.selector)
                collected.extend(entry.fallbacks)
            if statics:
                logger.info(f"[HEURISTIC] Injected {len(statics)} static selector(s) for '{label}'")

            learned = self.store.get_learned_selectors(label, element_type, url)
            for entry in learned:
                collected.append(entry.selector)
                collected.extend(entry.fallbacks)
            if learned:
                logger.info(f"[HEURISTIC] Injected {len(learned)} learned selector(s) for '{label}'")

        for match in matches:
            collected.append(match.selector or build_fallback_selector(match.element))
            collected.extend(match.element.candidate_selectors)

        seen = set()
        unique = []
        for selector in collected:
            if not selector or selector in seen:
                continue
            seen.add(selector)
            unique.append(selector)
        return unique[:MAX_SELECTORS_TO_TRY]


def create_llm_context(matches: List[CandidateMatch]) -> str:
    """Numbered candidate summary for the disambiguation prompt"""
    if not matches:
        return "No candidates found by heuristics."

    descriptions = []
    for index, match in enumerate(matches, 1):
        described = match.element.accessible_name or match.element.text or "no text"
        descriptions.append(
            f"{index}. Selector: {match.selector}\n"
            f"   - Score: {match.score:.3f}\n"
            f"   - Element: {match.element.tag} with {described}\n"
            f"   - Context: {match.context}"
        )
    joined = "\n\n".join(descriptions)
    return f"Heuristic analysis found {len(matches)} candidates:\n\n{joined}"


def build_fallback_selector(element: Element) -> str:
    """Best-effort locator for an element without generated candidates"""
    if element.data_test_id:
        return f'[data-testid="{element.data_test_id}"]'
    if element.data_unique:
        return f'[data-unique="{element.data_unique}"]'
    if element.id:
        return f"#{element.id}"
    if element.name and element.tag in ("input", "textarea", "select"):
        return f'{element.tag}[name="{element.name}"]'
    if element.role and element.accessible_name:
        return f'[role="{element.role}"][aria-label="{element.accessible_name}"]'
    if element.tag == "button" and element.text and len(element.text) <= 30:
        return f'button:has-text("{element.text}")'
    if element.href and element.tag == "a":
        return f'a[href="{element.href}"]'
    if element.classes:
        return "." + ".".join(element.classes[:2])
    return element.tag
