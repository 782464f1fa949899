"""
Semantic Retrieval Index

Optional embedding layer used when heuristic confidence is low. Builds,
per screen fingerprint, an in-memory vector index over two collections:

- sections: landmark/heading groups summarized by their element labels
- elements: interactive and hidden-input elements summarized by
  label + role + section

Texts are deduplicated and embedded in batches of 20 with at most 3
batches in flight. A failed batch is logged and skipped; the other
batches still land in the index.
"""

import re
import time
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from ..core.element_graph import Element, ElementGraph, InteractionType
from ..errors import ProviderFailure

logger = logging.getLogger(__name__)

DEFAULT_K = 30
BATCH_SIZE = 20
CONCURRENT_BATCHES = 3
MAX_ELEMENT_TEXT = 200
MAX_EMBED_TEXT = 1000
MAX_SECTION_LABELS = 10
MAX_ANCHORS = 3
INDEX_CACHE_SIZE = 3
FALLBACK_SECTION_TITLE = "Main Page Content"

GENERIC_TEXTS = {"", "...", "button", "element", "click", "submit", "div", "span", "input", "​"}
HIDDEN_LABEL_SKIP = {":", "submit", "button", "click", "here"}


# ==================== Index Types ====================

@dataclass
class SectionIndex:
    title: str
    text: str
    roles: List[str] = field(default_factory=list)
    anchor_selectors: List[str] = field(default_factory=list)
    embedding: Optional[List[float]] = None


@dataclass
class ElementIndex:
    label: str
    role: str
    selector: str
    candidate_selectors: List[str] = field(default_factory=list)
    section: Optional[str] = None
    group: Optional[str] = None
    visible: bool = True
    in_viewport: bool = True
    active_tab: bool = True
    stability: str = "low"
    interaction_type: str = InteractionType.CLICK.value
    embedding: Optional[List[float]] = None

    @property
    def text(self) -> str:
        """Compact text used for embedding"""
        parts = [self.label]
        if self.role and self.role != self.label:
            parts.append(self.role)
        if self.section and self.section != self.label:
            parts.append(self.section)
        return " ".join(parts)[:MAX_ELEMENT_TEXT]


@dataclass
class SemanticIndex:
    sections: List[SectionIndex]
    elements: List[ElementIndex]
    url: str
    fingerprint: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class QueryFilters:
    role: List[str] = field(default_factory=list)
    attrs: Dict[str, str] = field(default_factory=dict)
    section_hint: Optional[str] = None
    negative: List[str] = field(default_factory=list)


@dataclass
class QueryConstraints:
    must_be_visible: bool = False
    must_be_clickable: bool = False
    language: Optional[str] = None


@dataclass
class QuerySpec:
    """Semantic search request"""
    intent: str  # navigate, click, type, assert
    keywords: List[str] = field(default_factory=list)
    filters: QueryFilters = field(default_factory=QueryFilters)
    constraints: QueryConstraints = field(default_factory=QueryConstraints)
    k: int = DEFAULT_K

    @property
    def text(self) -> str:
        parts = [f"intent:{self.intent}"] + list(self.keywords)
        if self.filters.section_hint:
            parts.append(f"section:{self.filters.section_hint}")
        return " ".join(parts)


@dataclass
class EvidenceItem:
    id: str
    label: str
    role: str
    snippet: str
    selector_candidates: List[str]
    score: float
    type: str  # section, element
    section: Optional[str] = None


@dataclass
class EvidencePack:
    """Ranked, filtered result set for one query"""
    items: List[EvidenceItem]
    query: QuerySpec
    total_items: int
    search_latency_ms: int


# ==================== Label Extraction ====================

def is_generic_text(text: Optional[str]) -> bool:
    return (text or "").strip().lower() in GENERIC_TEXTS


def _humanize(identifier: str) -> str:
    spaced = re.sub(r"([A-Z])", r" \1", identifier).replace("_", " ").replace("-", " ")
    return " ".join(spaced.lower().split())


def nearest_label_for_hidden(element: Element) -> Optional[str]:
    field_name = element.name or element.id
    if not field_name:
        return None
    for text in element.nearby_text:
        cleaned = (text or "").strip()
        if cleaned and cleaned.lower() not in HIDDEN_LABEL_SKIP:
            return cleaned
    readable = _humanize(field_name)
    return readable if len(readable) > 1 else None


def extract_element_label(element: Element) -> str:
    """
    Best human-readable label for an element.

    Direct label sources first, then nearby text, then hidden-field
    association, then selector heuristics, then "<role or tag> element".
    """
    direct = [
        element.accessible_name,
        element.label,
        element.placeholder,
        element.title,
        element.text,
        element.text_content,
    ]
    for candidate in direct:
        cleaned = (candidate or "").strip()
        if cleaned and not is_generic_text(cleaned):
            return cleaned

    for text in element.nearby_text:
        cleaned = (text or "").strip()
        if len(cleaned) > 2 and not is_generic_text(cleaned):
            return cleaned

    if element.is_hidden_input:
        nearest = nearest_label_for_hidden(element)
        if nearest:
            return f"{nearest} (hidden)"

    if element.candidate_selectors:
        selector = element.candidate_selectors[0]
        if "username" in selector or "user" in selector or "email" in selector:
            return "Username/Email Field"
        if "password" in selector or "pwd" in selector:
            return "Password Field"
        if "login" in selector or "submit" in selector:
            return "Login Button"
        name_match = re.search(r"name=['\"]([^'\"]+)['\"]", selector)
        if name_match:
            return f"{name_match.group(1)} field"
        id_match = re.search(r"id=['\"]([^'\"]+)['\"]", selector)
        if id_match:
            return f"{id_match.group(1)} element"

    return f"{element.role or element.tag or 'element'} element"


def _is_indexable(element: Element) -> bool:
    return (
        element.clickable
        or element.content_editable
        or element.tag in ("input", "textarea")
        or element.is_hidden_input
    )


# ==================== Vector Math ====================

def cosine_similarities(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of one vector against each row"""
    if matrix.size == 0:
        return np.zeros(0)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    norms[norms == 0] = 1.0
    return (matrix @ query) / norms


# ==================== Builder ====================

class SemanticIndexBuilder:
    """Builds and searches embedding indices for element graphs"""

    def __init__(
        self,
        embedder,
        batch_size: int = BATCH_SIZE,
        concurrency: int = CONCURRENT_BATCHES,
    ):
        # Any object with an async embed(texts) -> List[List[float]]
        self.embedder = embedder
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.embedding_cache: Dict[str, List[float]] = {}

    # ---------- Extraction ----------

    @staticmethod
    def extract_sections(graph: ElementGraph) -> List[SectionIndex]:
        sections = []
        for landmark in graph.landmark_structure:
            members = [
                e for e in graph.elements
                if e.section_title == landmark or any(landmark in t for t in e.nearby_text)
            ]
            sections.append(_section(landmark, members))

        if not sections:
            logger.debug("[SEMANTIC] No landmarks found, creating fallback page section")
            interactive = [
                e for e in graph.elements
                if e.clickable or e.content_editable or e.tag in ("input", "textarea")
            ]
            sections.append(_section(FALLBACK_SECTION_TITLE, interactive))
        return sections

    @staticmethod
    def extract_elements(graph: ElementGraph) -> List[ElementIndex]:
        indexed = []
        for element in graph.elements:
            if not _is_indexable(element):
                continue
            label = extract_element_label(element)
            if not label.strip():
                continue
            indexed.append(ElementIndex(
                label=label,
                role=element.role or element.tag,
                selector=element.candidate_selectors[0] if element.candidate_selectors else f"{element.tag}[data-unknown]",
                candidate_selectors=list(element.candidate_selectors),
                section=element.section_title,
                group=element.form_group,
                visible=element.visible,
                in_viewport=element.in_viewport,
                active_tab=element.is_in_active_tab,
                stability=element.stability.value,
                interaction_type=element.interaction_type.value,
            ))
        logger.debug(f"[SEMANTIC] Indexed {len(indexed)} of {len(graph.elements)} elements")
        return indexed

    # ---------- Embedding ----------

    async def embed_texts(self, texts: List[str]) -> Dict[str, List[float]]:
        """
        Embed unique non-empty texts with bounded batch fan-out.

        Returns text -> vector for every text that was embedded; texts in
        failed batches are simply absent.
        """
        unique = []
        for text in texts:
            cleaned = text.strip()
            if cleaned and cleaned not in unique:
                unique.append(cleaned)

        pending = [t for t in unique if t not in self.embedding_cache]
        batches = [pending[i:i + self.batch_size] for i in range(0, len(pending), self.batch_size)]
        if batches:
            logger.debug(
                f"[SEMANTIC] Embedding {len(pending)} unique texts in {len(batches)} batches "
                f"({len(texts)} before dedup)"
            )

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_batch(index: int, batch: List[str]):
            async with semaphore:
                try:
                    vectors = await self.embedder.embed([t[:MAX_EMBED_TEXT] for t in batch])
                except ProviderFailure as e:
                    logger.warning(f"[SEMANTIC] Failed to process batch {index + 1}/{len(batches)}: {e}")
                    return
                if len(vectors) != len(batch):
                    logger.warning(
                        f"[SEMANTIC] Batch {index + 1} returned {len(vectors)} vectors for {len(batch)} texts"
                    )
                for text, vector in zip(batch, vectors):
                    self.embedding_cache[text] = list(vector)

        await asyncio.gather(*(run_batch(i, b) for i, b in enumerate(batches)))
        return {t: self.embedding_cache[t] for t in unique if t in self.embedding_cache}

    async def build_index(self, graph: ElementGraph) -> SemanticIndex:
        start = time.time()
        sections = self.extract_sections(graph)
        elements = self.extract_elements(graph)

        vectors = await self.embed_texts([s.text for s in sections] + [e.text for e in elements])
        for section in sections:
            section.embedding = vectors.get(section.text.strip())
        for element in elements:
            element.embedding = vectors.get(element.text.strip())

        index = SemanticIndex(
            sections=sections,
            elements=elements,
            url=graph.url,
            fingerprint=graph.screen_fingerprint,
        )
        logger.info(
            f"[SEMANTIC] Built index with {len(sections)} sections, {len(elements)} elements "
            f"in {int((time.time() - start) * 1000)}ms"
        )
        return index

    # ---------- Search ----------

    async def search(self, query: QuerySpec, index: SemanticIndex) -> EvidencePack:
        """Nearest-neighbour search with keyword boost, filters and rerank"""
        start = time.time()
        k = query.k or DEFAULT_K

        query_vector = (await self.embed_texts([query.text])).get(query.text.strip())
        if query_vector is None:
            raise ProviderFailure("Query embedding unavailable")
        q = np.asarray(query_vector, dtype=float)

        evidence: List[EvidenceItem] = []
        if query.filters.section_hint:
            evidence.extend(self._search_sections(q, index, min(10, k)))
        evidence.extend(self._search_elements(q, query, index, k * 2))

        evidence = apply_filters(evidence, query)
        evidence = rerank(evidence, query)[:k]

        return EvidencePack(
            items=evidence,
            query=query,
            total_items=len(evidence),
            search_latency_ms=int((time.time() - start) * 1000),
        )

    @staticmethod
    def _search_sections(q: np.ndarray, index: SemanticIndex, limit: int) -> List[EvidenceItem]:
        embedded = [s for s in index.sections if s.embedding is not None]
        if not embedded:
            return []
        scores = cosine_similarities(q, np.asarray([s.embedding for s in embedded], dtype=float))
        order = np.argsort(-scores)[:limit]
        return [
            EvidenceItem(
                id=f"section_{re.sub(r'[^a-zA-Z0-9]', '_', embedded[i].title)}",
                label=embedded[i].title,
                role="section",
                snippet=embedded[i].text[:200],
                selector_candidates=list(embedded[i].anchor_selectors),
                section=embedded[i].title,
                score=float(scores[i]),
                type="section",
            )
            for i in order
        ]

    @staticmethod
    def _search_elements(q: np.ndarray, query: QuerySpec, index: SemanticIndex, limit: int) -> List[EvidenceItem]:
        embedded = [e for e in index.elements if e.embedding is not None]
        if not embedded:
            logger.debug("[SEMANTIC] No embedded elements to search")
            return []
        scores = cosine_similarities(q, np.asarray([e.embedding for e in embedded], dtype=float))
        order = np.argsort(-scores)[:limit]
        items = []
        for rank, i in enumerate(order):
            element = embedded[i]
            items.append(EvidenceItem(
                id=f"element_{re.sub(r'[^a-zA-Z0-9]', '_', element.label)}_{rank}",
                label=element.label,
                role=element.role,
                snippet=element.label,
                selector_candidates=[element.selector] + [
                    s for s in element.candidate_selectors if s != element.selector
                ],
                section=element.section,
                score=keyword_boost(float(scores[i]), element.label, query),
                type="element",
            ))
        return items


def _section(title: str, members: List[Element]) -> SectionIndex:
    labels = [extract_element_label(e) for e in members][:MAX_SECTION_LABELS]
    roles = []
    for e in members:
        if e.role and e.role not in roles:
            roles.append(e.role)
    anchors = [e.candidate_selectors[0] for e in members if e.candidate_selectors][:MAX_ANCHORS]
    return SectionIndex(
        title=title,
        text=f"{title}. {', '.join(labels)}",
        roles=roles,
        anchor_selectors=anchors,
    )


def keyword_boost(base: float, label: str, query: QuerySpec) -> float:
    """Exact +0.3, prefix +0.25, substring +0.2 per keyword, capped at 1.0"""
    if not query.keywords:
        return base
    label_lower = label.lower()
    boost = 0.0
    for keyword in query.keywords:
        kw = keyword.lower()
        if not kw:
            continue
        if label_lower == kw:
            boost += 0.3
        elif label_lower.startswith(kw):
            boost += 0.25
        elif kw in label_lower:
            boost += 0.2
    return min(1.0, base + boost)


def apply_filters(evidence: List[EvidenceItem], query: QuerySpec) -> List[EvidenceItem]:
    filtered = evidence
    if query.filters.role:
        filtered = [item for item in filtered if item.role in query.filters.role]
    if query.constraints.must_be_visible:
        filtered = [item for item in filtered if item.type == "section" or item.score > 0.3]
    if query.filters.negative:
        negatives = [n.lower() for n in query.filters.negative]
        filtered = [
            item for item in filtered
            if not any(n in item.label.lower() or n in item.role.lower() for n in negatives)
        ]
    return filtered


def rerank(evidence: List[EvidenceItem], query: QuerySpec) -> List[EvidenceItem]:
    """Stable sort by score plus intent affinity"""
    def adjusted(item: EvidenceItem) -> float:
        score = item.score
        if query.intent == "click" and item.type == "element":
            score += 0.1
        if query.intent == "type" and item.role == "textbox":
            score += 0.1
        if item.type == "element":
            score += 0.05
        return score

    return sorted(evidence, key=adjusted, reverse=True)


# ==================== Manager ====================

class SemanticIndexManager:
    """Caches one index per screen fingerprint, keeping the most recent three"""

    def __init__(self, builder: SemanticIndexBuilder, on_rebuilt: Optional[Callable[[str], Any]] = None):
        self.builder = builder
        self.on_rebuilt = on_rebuilt
        self.current: Optional[SemanticIndex] = None
        self._cache: Dict[str, SemanticIndex] = {}

    async def get_or_build(self, graph: ElementGraph) -> SemanticIndex:
        fingerprint = graph.screen_fingerprint
        cached = self._cache.get(fingerprint)
        if cached is not None:
            logger.debug(f"[SEMANTIC] Using cached index for {fingerprint}")
            self.current = cached
            return cached

        index = await self.builder.build_index(graph)
        self._cache[fingerprint] = index
        self.current = index
        if self.on_rebuilt:
            self.on_rebuilt(fingerprint)

        while len(self._cache) > INDEX_CACHE_SIZE:
            oldest = next(iter(self._cache))
            del self._cache[oldest]
        return index

    async def search(self, query: QuerySpec) -> EvidencePack:
        if self.current is None:
            raise RuntimeError("No semantic index available. Call get_or_build first.")
        return await self.builder.search(query, self.current)

    @property
    def cached_fingerprints(self) -> List[str]:
        return list(self._cache.keys())
