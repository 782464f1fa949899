"""
Session Context Tracker

Cross-step memory for one automation session:
- current URL, form group and active modal
- bounded recent steps and recently used elements
- per-element selector cache with a 5 minute TTL
- failed selectors, cleared after 10 minutes of step inactivity
- temporal proximity (recently used elements get a decaying bonus)
- detected interaction flow (login, registration, checkout, form, navigation)

The tracker biases heuristic ranking through enhance_matches(). It is not
safe for concurrent writers; one tracker belongs to one session.
"""

import time
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Set

from ..core.element_graph import Element, ElementGraph
from ..core.heuristic_scorer import CandidateMatch, SessionSnapshot

logger = logging.getLogger(__name__)

MAX_RECENT_ELEMENTS = 10
MAX_RECENT_STEPS = 20
CACHE_TTL_S = 5 * 60
PROXIMITY_WINDOW_S = 30
PROXIMITY_EXPIRATION_S = 60 * 60
FAILED_SELECTORS_MAX_AGE_S = 10 * 60

PROXIMITY_BONUS = 0.1
SAME_FORM_BONUS = 0.15
FLOW_EXPECTED_BONUS = 0.1

# Common follow-up fields after a given field
NEXT_FIELD_SEQUENCES: Dict[str, List[str]] = {
    "email": ["password"],
    "password": ["confirm-password", "submit"],
    "firstname": ["lastname", "email"],
    "lastname": ["email", "phone"],
    "address": ["city", "zip", "country"],
    "city": ["zip", "country"],
    "zip": ["country"],
    "phone": ["submit"],
    "card-number": ["expiry", "cvv"],
    "expiry": ["cvv", "name"],
    "cvv": ["name", "submit"],
}


@dataclass
class StepRecord:
    """One executed step"""
    step_index: int
    step_type: str  # goto, type, click, wait, keypress, any
    timestamp: float
    label: Optional[str] = None
    element: Optional[Element] = None
    selector: Optional[str] = None
    success: bool = False
    form_group: Optional[str] = None
    modal: Optional[str] = None
    url: Optional[str] = None


@dataclass
class CachedSelector:
    selector: str
    confidence: float
    timestamp: float


@dataclass
class FlowContext:
    """Detected multi-step user journey"""
    flow_type: str
    expected_sequence: List[str] = field(default_factory=list)
    current_position: int = 0
    confidence: float = 0.0

    def expected_field(self) -> Optional[str]:
        if self.current_position >= len(self.expected_sequence):
            return None
        return self.expected_sequence[self.current_position]


@dataclass
class SessionState:
    current_url: str = ""
    current_form_group: Optional[str] = None
    active_modal: Optional[str] = None
    recent_elements: List[Element] = field(default_factory=list)
    recent_steps: List[StepRecord] = field(default_factory=list)
    screen_cache: Dict[str, Any] = field(default_factory=dict)  # fingerprint -> (graph, timestamp)
    selector_cache: Dict[str, CachedSelector] = field(default_factory=dict)
    failed_selectors: Set[str] = field(default_factory=set)
    temporal_proximity: Dict[str, float] = field(default_factory=dict)


# Checked in order, first match wins
FLOW_RULES = [
    {
        "flow_type": "login",
        "url": ("login", "signin"),
        "title": ("login", "sign in"),
        "landmarks": ("login", "anmelden"),
        "sequence": ["email", "password", "submit"],
        "confidence": 0.9,
    },
    {
        "flow_type": "registration",
        "url": ("register", "signup"),
        "title": ("register", "sign up"),
        "landmarks": ("register", "registr"),
        "sequence": ["email", "password", "confirm-password", "submit"],
        "confidence": 0.9,
    },
    {
        "flow_type": "checkout",
        "url": ("checkout", "payment"),
        "title": ("checkout", "payment"),
        "landmarks": (),
        "sequence": ["address", "payment", "confirm", "submit"],
        "confidence": 0.8,
    },
]


class SessionContextTracker:
    """Tracks navigation and interactions to bias element ranking"""

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.time
        self.state = SessionState()
        self.flow: Optional[FlowContext] = None

    # ==================== Events ====================

    def on_navigate(self, url: str, graph: ElementGraph):
        """Record a new screen: modal, form reset on URL change, flow detection"""
        logger.info(f"[CONTEXT] Navigation to {url}")
        url_changed = self.state.current_url != url
        self.state.current_url = url

        self.state.screen_cache[graph.screen_fingerprint] = (graph, self._clock())
        self.state.active_modal = graph.active_modal

        if url_changed:
            self.state.current_form_group = None
            logger.debug("[CONTEXT] URL changed, reset form group")

        self._detect_flow(url, graph)
        self.clean_expired()

    def on_step_start(self, step_index: int, step_type: str, label: Optional[str] = None):
        self.state.recent_steps.append(StepRecord(
            step_index=step_index,
            step_type=step_type,
            label=label,
            timestamp=self._clock(),
        ))
        if len(self.state.recent_steps) > MAX_RECENT_STEPS:
            self.state.recent_steps.pop(0)
        logger.debug(f"[CONTEXT] Step {step_index} started: {step_type} '{label}'")

    def on_interaction(self, element: Optional[Element], selector: str, success: bool):
        """
        Record the outcome of using a selector.

        element is None when the selector came straight from the memory
        store; the step and failure bookkeeping still happen.
        """
        now = self._clock()
        current = self.state.recent_steps[-1] if self.state.recent_steps else None
        if current:
            current.element = element
            current.selector = selector
            current.success = success
            current.form_group = element.form_group if element else None
            current.modal = element.parent_modal_or_drawer if element else None
            current.url = self.state.current_url

        if not success:
            self.state.failed_selectors.add(selector)
            logger.debug(f"[CONTEXT] Failed selector: {selector}")
            return

        if element is None:
            logger.info(f"[CONTEXT] Successful interaction with {selector}")
            return

        self.state.recent_elements.append(element)
        if len(self.state.recent_elements) > MAX_RECENT_ELEMENTS:
            self.state.recent_elements.pop(0)

        if element.form_group:
            self.state.current_form_group = element.form_group
            logger.debug(f"[CONTEXT] Current form group: {element.form_group}")

        step_type = current.step_type if current else "any"
        self.state.selector_cache[self._cache_key(element, step_type)] = CachedSelector(
            selector=selector, confidence=1.0, timestamp=now
        )
        self.state.temporal_proximity[element.signature] = now

        if self.flow and self._matches_expected(element, self.flow):
            self.flow.current_position += 1
        logger.info(f"[CONTEXT] Successful interaction with {element.tag}[{selector}]")

    # ==================== Queries ====================

    def session_context(self) -> SessionSnapshot:
        return SessionSnapshot(
            recent_elements=list(self.state.recent_elements),
            current_form_group=self.state.current_form_group,
            active_modal=self.state.active_modal,
        )

    @property
    def failed_selectors(self) -> List[str]:
        return sorted(self.state.failed_selectors)

    def get_cached_selector(self, element: Element, step_type: str) -> Optional[CachedSelector]:
        """Cached selector for an element, None when absent or older than 5 minutes"""
        key = self._cache_key(element, step_type)
        cached = self.state.selector_cache.get(key)
        if cached is None:
            return None
        if self._clock() - cached.timestamp > CACHE_TTL_S:
            del self.state.selector_cache[key]
            return None
        logger.debug(f"[CONTEXT] Using cached selector for {key}: {cached.selector}")
        return cached

    def get_cached_screen(self, fingerprint: str) -> Optional[ElementGraph]:
        entry = self.state.screen_cache.get(fingerprint)
        if entry is None:
            return None
        graph, stored_at = entry
        if self._clock() - stored_at > CACHE_TTL_S:
            del self.state.screen_cache[fingerprint]
            return None
        return graph

    def temporal_proximity_boost(self, element: Element) -> float:
        """1.0 right after a successful use, decaying linearly to 0 over 30 s"""
        last = self.state.temporal_proximity.get(element.signature)
        if last is None:
            return 0.0
        elapsed = self._clock() - last
        if elapsed > PROXIMITY_WINDOW_S:
            return 0.0
        return max(0.0, 1.0 - elapsed / PROXIMITY_WINDOW_S)

    def get_form_group_context(self) -> Dict[str, Any]:
        form_elements = [
            e for e in self.state.recent_elements
            if e.form_group == self.state.current_form_group
        ]
        return {
            "current_form_group": self.state.current_form_group,
            "recent_form_elements": form_elements,
            "expected_next_fields": self.predict_next_form_fields(form_elements),
        }

    @staticmethod
    def predict_next_form_fields(form_elements: List[Element]) -> List[str]:
        predictions: List[str] = []
        for element in form_elements:
            field_type = element.type or element.name
            if not field_type:
                continue
            for name in NEXT_FIELD_SEQUENCES.get(field_type, []):
                if name not in predictions:
                    predictions.append(name)
        return predictions

    def enhance_matches(self, matches: List[CandidateMatch]) -> List[CandidateMatch]:
        """
        Add session bonuses to scored matches.

        Order is preserved; callers re-sort afterwards.
        """
        enhanced = []
        for match in matches:
            bonus = 0.0
            extra: List[str] = []

            proximity = self.temporal_proximity_boost(match.element)
            if proximity > 0:
                bonus += proximity * PROXIMITY_BONUS
                extra.append(f"temporal(+{proximity:.2f})")

            if self.state.current_form_group and match.element.form_group == self.state.current_form_group:
                bonus += SAME_FORM_BONUS
                extra.append("same-form")

            if self.flow and self._matches_expected(match.element, self.flow):
                bonus += FLOW_EXPECTED_BONUS
                extra.append("flow-expected")

            if bonus == 0:
                enhanced.append(match)
                continue
            score = match.score + bonus
            enhanced.append(replace(
                match,
                score=score,
                confidence=min(score, 1.0),
                reasoning=match.reasoning + extra,
            ))
        return enhanced

    def get_stats(self) -> Dict[str, Any]:
        return {
            "current_url": self.state.current_url,
            "current_form_group": self.state.current_form_group,
            "active_modal": self.state.active_modal,
            "flow_type": self.flow.flow_type if self.flow else None,
            "recent_elements": len(self.state.recent_elements),
            "recent_steps": len(self.state.recent_steps),
            "cached_selectors": len(self.state.selector_cache),
            "cached_screens": len(self.state.screen_cache),
            "failed_selectors": len(self.state.failed_selectors),
            "proximity_entries": len(self.state.temporal_proximity),
        }

    # ==================== Maintenance ====================

    def clean_expired(self):
        """Purge stale cache, proximity and failed-selector state"""
        now = self._clock()

        for key in [k for k, v in self.state.selector_cache.items() if now - v.timestamp > CACHE_TTL_S]:
            del self.state.selector_cache[key]

        for key in [k for k, (_, ts) in self.state.screen_cache.items() if now - ts > CACHE_TTL_S]:
            del self.state.screen_cache[key]

        for key in [k for k, ts in self.state.temporal_proximity.items() if now - ts > PROXIMITY_EXPIRATION_S]:
            del self.state.temporal_proximity[key]

        oldest = self.state.recent_steps[0] if self.state.recent_steps else None
        if oldest and now - oldest.timestamp > FAILED_SELECTORS_MAX_AGE_S:
            self.state.failed_selectors.clear()

        logger.debug(
            f"[CONTEXT] Cache cleanup: {len(self.state.selector_cache)} cached selectors, "
            f"{len(self.state.temporal_proximity)} proximity entries"
        )

    def reset(self):
        self.state = SessionState()
        self.flow = None
        logger.info("[CONTEXT] Context tracker reset")

    # ==================== Internals ====================

    def _detect_flow(self, url: str, graph: ElementGraph):
        url_path = url.lower()
        title = (graph.title or "").lower()
        landmarks = [l.lower() for l in graph.landmark_structure]

        for rule in FLOW_RULES:
            if (
                any(t in url_path for t in rule["url"])
                or any(t in title for t in rule["title"])
                or any(t in l for l in landmarks for t in rule["landmarks"])
            ):
                if self.flow and self.flow.flow_type == rule["flow_type"]:
                    return
                self.flow = FlowContext(
                    flow_type=rule["flow_type"],
                    expected_sequence=list(rule["sequence"]),
                    confidence=rule["confidence"],
                )
                logger.info(f"[CONTEXT] Detected {rule['flow_type']} flow")
                return

        if graph.active_forms:
            if self.flow and self.flow.flow_type == "form":
                return
            self.flow = FlowContext(
                flow_type="form",
                expected_sequence=["field1", "field2", "submit"],
                confidence=0.6,
            )
            logger.info("[CONTEXT] Detected form flow")
            return

        # Earlier flow persists when nothing new matches
        if self.flow is None:
            self.flow = FlowContext(flow_type="navigation", confidence=0.3)

    @staticmethod
    def _matches_expected(element: Element, flow: FlowContext) -> bool:
        expected = flow.expected_field()
        if not expected:
            return False
        name = element.name or element.data_test_id or element.accessible_name or ""
        return expected.lower() in name.lower()

    @staticmethod
    def _cache_key(element: Element, step_type: str) -> str:
        return ":".join([
            step_type,
            element.tag,
            element.data_test_id or "",
            element.id or "",
            element.name or "",
            element.accessible_name or "",
            element.form_group or "",
            element.section_title or "",
        ])
