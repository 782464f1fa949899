"""
Selector Memory Store

Persists curated (static) and accumulated (learned) selectors together
with the tunable heuristics configuration: score thresholds, signal
weights, i18n synonyms and DOM query patterns.

Lookup order is always static entries first, then learned entries.
The whole file is rewritten after every mutation.
"""

import copy
import json
import os
import logging
import threading
from datetime import datetime, timezone
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ..text_matching import normalize_text

logger = logging.getLogger(__name__)

MAX_LEARNED_SELECTORS = 500
STORE_VERSION = 1


# ==================== Compiled-in Defaults ====================

DEFAULT_SCORE_THRESHOLDS: Dict[str, float] = {
    "direct": 0.78,
    "tryMultiple": 0.6,
    "llmFallback": 0.6,
}

DEFAULT_WEIGHTS: Dict[str, float] = {
    "roleMatch": 0.2,
    "labelSimilarity": 0.3,
    "i18nNormalization": 0.05,
    "stableAttributes": 0.2,
    "contextBoost": 0.15,
    "negativeSignals": 0.3,
}

DEFAULT_SYNONYMS: Dict[str, List[str]] = {
    "login": ["anmelden", "sign in", "log in", "einloggen"],
    "register": ["registrieren", "sign up", "anmelden", "erstellen"],
    "submit": ["absenden", "senden", "send", "abschicken"],
    "cancel": ["abbrechen", "zurück", "back", "schließen"],
    "search": ["suchen", "suche", "find", "finden"],
    "email": ["e-mail", "mail", "email"],
    "password": ["passwort", "kennwort", "pwd"],
    "username": ["benutzername", "nutzername", "user"],
    "confirm": ["bestätigen", "confirm", "ok"],
    "next": ["weiter", "next", "continue", "fortfahren"],
    "previous": ["zurück", "back", "prev", "vorherige"],
}

DEFAULT_PATTERNS: Dict[str, Any] = {
    "buttonTexts": ["SAVE", "Save", "save", "START", "Start", "start", "CANCEL", "Cancel", "cancel"],
    "interactiveButtonQuery": 'button, [role="button"], input[type="submit"], input[type="button"], a[role="button"], a[href]',
    "interactiveInputQuery": 'input, textarea, [contenteditable="true"]',
    "navigationContainers": 'nav, [role="navigation"], .sidebar, .side-nav, [data-unique*="SideBar"]',
    "modalSelectors": '[role="dialog"]:not([aria-hidden="true"]), .modal:not(.hidden), [data-modal], .drawer, [data-drawer]',
    "landmarkQuery": 'h1, h2, h3, [role="main"], [role="navigation"], [role="banner"]',
}


def normalize_label(label: Optional[str]) -> str:
    """Normalized key used for memory lookups"""
    return normalize_text(label)


def element_type_for_action(action: str) -> str:
    """Map a query action (click/type/any) to a stored element type"""
    if action == "type":
        return "input"
    if action == "click":
        return "button"
    return "any"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ==================== Data Classes ====================

@dataclass
class MemoryEntry:
    """A stored selector for a label"""
    label: str
    element_type: str  # input, button, any
    selector: str
    fallbacks: List[str] = field(default_factory=list)
    url_pattern: Optional[str] = None
    source: str = "learned"  # manual, learned
    used_count: int = 0
    last_used_at: str = ""
    confidence: Optional[float] = None
    reasoning: Optional[str] = None

    def identity(self) -> tuple:
        return (
            normalize_label(self.label),
            self.element_type,
            self.selector,
            self.url_pattern or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "label": self.label,
            "elementType": self.element_type,
            "selector": self.selector,
            "source": self.source,
            "usedCount": self.used_count,
            "lastUsedAt": self.last_used_at,
        }
        if self.fallbacks:
            data["fallbacks"] = list(self.fallbacks)
        if self.url_pattern is not None:
            data["urlPattern"] = self.url_pattern
        if self.confidence is not None:
            data["confidence"] = self.confidence
        if self.reasoning is not None:
            data["reasoning"] = self.reasoning
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryEntry":
        return cls(
            label=data.get("label", ""),
            element_type=data.get("elementType", "any"),
            selector=data.get("selector", ""),
            fallbacks=list(data.get("fallbacks") or []),
            url_pattern=data.get("urlPattern"),
            source=data.get("source", "learned"),
            used_count=int(data.get("usedCount", 0)),
            last_used_at=data.get("lastUsedAt", ""),
            confidence=data.get("confidence"),
            reasoning=data.get("reasoning"),
        )


@dataclass
class HeuristicsConfig:
    """Full persisted store content"""
    version: int = STORE_VERSION
    score_thresholds: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_SCORE_THRESHOLDS))
    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    synonyms: Dict[str, List[str]] = field(default_factory=lambda: copy.deepcopy(DEFAULT_SYNONYMS))
    static_selectors: List[MemoryEntry] = field(default_factory=list)
    learned_selectors: List[MemoryEntry] = field(default_factory=list)
    patterns: Dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULT_PATTERNS))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "scoreThresholds": dict(self.score_thresholds),
            "weights": dict(self.weights),
            "synonyms": copy.deepcopy(self.synonyms),
            "staticSelectors": [e.to_dict() for e in self.static_selectors],
            "learnedSelectors": [e.to_dict() for e in self.learned_selectors],
            "patterns": copy.deepcopy(self.patterns),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HeuristicsConfig":
        """Merge persisted values over the compiled-in defaults"""
        config = cls()
        config.version = int(data.get("version", STORE_VERSION))
        config.score_thresholds.update(data.get("scoreThresholds") or {})
        config.weights.update(data.get("weights") or {})
        if data.get("synonyms"):
            config.synonyms.update(data["synonyms"])
        config.patterns.update(data.get("patterns") or {})
        config.static_selectors = [
            MemoryEntry.from_dict(e) for e in data.get("staticSelectors") or []
        ]
        config.learned_selectors = [
            MemoryEntry.from_dict(e) for e in data.get("learnedSelectors") or []
        ]
        return config


# ==================== Store ====================

class SelectorMemoryStore:
    """
    File-backed store of static and learned selectors.

    One instance belongs to one automation session; callers serialize
    access to it.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or os.getenv("SELECTOR_HEURISTICS_PATH") or "selector-heuristics.json")
        self._lock = threading.Lock()
        self.config = self._load()

    def _load(self) -> HeuristicsConfig:
        """Load the store, rewriting defaults when the file is missing or corrupt"""
        if not self.path.exists():
            logger.info(f"[MEMORY] No store at {self.path}, writing defaults")
            config = HeuristicsConfig()
            self._write(config)
            return config

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("store root must be an object")
            config = HeuristicsConfig.from_dict(data)
            logger.debug(
                f"[MEMORY] Loaded {len(config.static_selectors)} static / "
                f"{len(config.learned_selectors)} learned selectors"
            )
            return config
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"[MEMORY] Corrupt store {self.path} ({e}), restoring defaults")
            config = HeuristicsConfig()
            self._write(config)
            return config

    def _write(self, config: HeuristicsConfig):
        """Atomically replace the store file"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(config.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def save(self):
        with self._lock:
            self._write(self.config)

    # ==================== Config Access ====================

    def get_config(self) -> HeuristicsConfig:
        return self.config

    @property
    def score_thresholds(self) -> Dict[str, float]:
        return self.config.score_thresholds

    @property
    def weights(self) -> Dict[str, float]:
        return self.config.weights

    @property
    def synonyms(self) -> Dict[str, List[str]]:
        return self.config.synonyms

    @property
    def patterns(self) -> Dict[str, Any]:
        return self.config.patterns

    def update_config(
        self,
        score_thresholds: Optional[Dict[str, float]] = None,
        weights: Optional[Dict[str, float]] = None,
        synonyms: Optional[Dict[str, List[str]]] = None,
        patterns: Optional[Dict[str, Any]] = None
    ):
        """Partially update the tunable settings and persist"""
        if score_thresholds:
            self.config.score_thresholds.update(score_thresholds)
        if weights:
            self.config.weights.update(weights)
        if synonyms:
            self.config.synonyms.update(synonyms)
        if patterns:
            self.config.patterns.update(patterns)
        self.save()

    # ==================== Lookup ====================

    @staticmethod
    def _type_compatible(entry_type: str, query_type: str) -> bool:
        return entry_type == "any" or query_type == "any" or entry_type == query_type

    @staticmethod
    def _url_compatible(pattern: Optional[str], url: Optional[str]) -> bool:
        if not pattern:
            return True
        if not url:
            return False
        domain = urlparse(url).netloc
        return pattern in domain or pattern in url

    def _matching(
        self,
        entries: List[MemoryEntry],
        label: str,
        element_type: str,
        url: Optional[str]
    ) -> List[MemoryEntry]:
        key = normalize_label(label)
        if not key:
            return []
        return [
            entry for entry in entries
            if normalize_label(entry.label) == key
            and self._type_compatible(entry.element_type, element_type)
            and self._url_compatible(entry.url_pattern, url)
        ]

    def get_static_selectors(self, label: str, element_type: str = "any", url: Optional[str] = None) -> List[MemoryEntry]:
        """Curated entries for a label"""
        return self._matching(self.config.static_selectors, label, element_type, url)

    def get_learned_selectors(self, label: str, element_type: str = "any", url: Optional[str] = None) -> List[MemoryEntry]:
        """Accumulated entries for a label"""
        return self._matching(self.config.learned_selectors, label, element_type, url)

    def get_selectors(self, label: str, element_type: str = "any", url: Optional[str] = None) -> List[str]:
        """Flattened static-then-learned selector list (with fallbacks), deduplicated"""
        ordered: List[str] = []
        for entry in self.get_static_selectors(label, element_type, url) + \
                self.get_learned_selectors(label, element_type, url):
            for selector in [entry.selector] + entry.fallbacks:
                if selector and selector not in ordered:
                    ordered.append(selector)
        return ordered

    # ==================== Mutation ====================

    def add_learned_selector(
        self,
        label: str,
        element_type: str,
        selector: str,
        fallbacks: Optional[List[str]] = None,
        url_pattern: Optional[str] = None,
        confidence: Optional[float] = None,
        reasoning: Optional[str] = None,
        source: str = "learned"
    ) -> MemoryEntry:
        """
        Upsert a learned selector.

        Identity is (normalized label, type, selector, url pattern). A
        repeat bumps used_count and merges fallbacks; a new entry goes to
        the front and the list is trimmed from the back.
        """
        candidate = MemoryEntry(
            label=label,
            element_type=element_type,
            selector=selector,
            fallbacks=[f for f in (fallbacks or []) if f],
            url_pattern=url_pattern,
            source=source,
            used_count=1,
            last_used_at=_now_iso(),
            confidence=confidence,
            reasoning=reasoning,
        )

        with self._lock:
            identity = candidate.identity()
            existing = next(
                (e for e in self.config.learned_selectors if e.identity() == identity),
                None
            )

            if existing:
                existing.used_count += 1
                existing.last_used_at = candidate.last_used_at
                if confidence is not None:
                    existing.confidence = confidence
                for fallback in candidate.fallbacks:
                    if fallback not in existing.fallbacks:
                        existing.fallbacks.append(fallback)
                entry = existing
                logger.debug(f"[MEMORY] Reinforced '{label}' -> {selector} (used {existing.used_count}x)")
            else:
                self.config.learned_selectors.insert(0, candidate)
                while len(self.config.learned_selectors) > MAX_LEARNED_SELECTORS:
                    dropped = self.config.learned_selectors.pop()
                    logger.debug(f"[MEMORY] Evicted learned selector {dropped.selector}")
                entry = candidate
                logger.info(f"[MEMORY] Learned '{label}' -> {selector}")

            self._write(self.config)
        return entry

    def add_static_selector(
        self,
        label: str,
        element_type: str,
        selector: str,
        fallbacks: Optional[List[str]] = None,
        url_pattern: Optional[str] = None,
        reasoning: Optional[str] = None
    ) -> MemoryEntry:
        """Seed a curated selector (used for store authoring, not at runtime)"""
        entry = MemoryEntry(
            label=label,
            element_type=element_type,
            selector=selector,
            fallbacks=list(fallbacks or []),
            url_pattern=url_pattern,
            source="manual",
            used_count=0,
            last_used_at=_now_iso(),
            reasoning=reasoning,
        )
        with self._lock:
            self.config.static_selectors.append(entry)
            self._write(self.config)
        return entry

    def get_stats(self) -> Dict[str, Any]:
        learned = self.config.learned_selectors
        return {
            "static_selectors": len(self.config.static_selectors),
            "learned_selectors": len(learned),
            "total_uses": sum(e.used_count for e in learned),
            "path": str(self.path),
        }
