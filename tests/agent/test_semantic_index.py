"""
Unit tests for the semantic retrieval index.

Uses a deterministic keyword embedder so cosine scores are predictable.
"""

import pytest

from locator_agent.core.element_graph import Element
from locator_agent.errors import ProviderFailure
from locator_agent.knowledge.semantic_index import (
    SemanticIndexBuilder,
    SemanticIndexManager,
    QuerySpec,
    QueryFilters,
    QueryConstraints,
    EvidenceItem,
    FALLBACK_SECTION_TITLE,
    extract_element_label,
    keyword_boost,
    apply_filters,
    rerank,
)
from conftest import make_graph


class FailingEmbedder:
    """Embedder that fails for any batch containing a marker text."""

    def __init__(self, inner, marker):
        self.inner = inner
        self.marker = marker

    async def embed(self, texts):
        if any(self.marker in t for t in texts):
            raise ProviderFailure("embedding backend down", status_code=503)
        return await self.inner.embed(texts)


class TestLabelExtraction:
    """Test element label extraction."""

    def test_direct_label(self, email_input):
        """Test that the accessible name is preferred."""
        assert extract_element_label(email_input) == "E-Mail"

    def test_generic_text_skipped(self):
        """Test that generic texts fall through to nearby text."""
        element = Element(tag="button", text="Submit", nearby_text=["ok", "Newsletter signup"])

        assert extract_element_label(element) == "Newsletter signup"

    def test_hidden_input(self):
        """Test hidden inputs labelled from their field name."""
        element = Element(tag="input", type="hidden", name="countryCode")

        assert extract_element_label(element) == "country code (hidden)"

    def test_selector_heuristics(self):
        """Test labels inferred from the primary selector."""
        assert extract_element_label(Element(tag="input", candidate_selectors=["#pwd"])) == "Password Field"
        assert extract_element_label(Element(tag="input", candidate_selectors=['input[name="city"]'])) == "city field"

    def test_role_fallback(self):
        """Test the final role/tag fallback."""
        assert extract_element_label(Element(tag="div", role="switch")) == "switch element"
        assert extract_element_label(Element(tag="span")) == "span element"


class TestExtraction:
    """Test section and element extraction."""

    def test_sections_from_landmarks(self, login_graph):
        """Test that landmark sections collect their element labels."""
        sections = SemanticIndexBuilder.extract_sections(login_graph)

        assert [s.title for s in sections] == ["Sign in"]
        assert sections[0].text == "Sign in. E-Mail, Password, Sign in"
        assert sections[0].anchor_selectors == ["#email", "#password", '[data-testid="login-submit"]']

    def test_fallback_section(self, email_input):
        """Test the whole-page section when there are no landmarks."""
        sections = SemanticIndexBuilder.extract_sections(make_graph([email_input]))

        assert [s.title for s in sections] == [FALLBACK_SECTION_TITLE]

    def test_elements_indexed(self, login_graph):
        """Test element index entries and their embedding text."""
        elements = SemanticIndexBuilder.extract_elements(login_graph)

        assert [e.label for e in elements] == ["E-Mail", "Password", "Sign in"]
        assert elements[0].text == "E-Mail input Sign in"
        assert elements[2].text == "Sign in button"
        assert elements[0].group == "login-form"

    def test_non_interactive_skipped(self):
        """Test that plain text elements are not indexed."""
        graph = make_graph([Element(tag="p", text="Welcome back")])

        assert SemanticIndexBuilder.extract_elements(graph) == []


class TestEmbedding:
    """Test batched embedding."""

    @pytest.mark.asyncio
    async def test_dedupes_and_caches(self, keyword_embedder):
        """Test that duplicate and blank texts are embedded once."""
        builder = SemanticIndexBuilder(keyword_embedder)

        vectors = await builder.embed_texts(["login now", "login now", "  ", "search"])
        await builder.embed_texts(["login now"])

        assert set(vectors) == {"login now", "search"}
        assert keyword_embedder.calls == [["login now", "search"]]

    @pytest.mark.asyncio
    async def test_batches(self, keyword_embedder):
        """Test batch splitting."""
        builder = SemanticIndexBuilder(keyword_embedder, batch_size=2)

        await builder.embed_texts(["a1", "a2", "a3", "a4", "a5"])

        assert sorted(len(c) for c in keyword_embedder.calls) == [1, 2, 2]

    @pytest.mark.asyncio
    async def test_failed_batch_skipped(self, keyword_embedder):
        """Test that a failed batch does not prevent the others."""
        builder = SemanticIndexBuilder(FailingEmbedder(keyword_embedder, "broken"), batch_size=1)

        vectors = await builder.embed_texts(["login", "broken", "search"])

        assert set(vectors) == {"login", "search"}

    @pytest.mark.asyncio
    async def test_index_without_vectors_for_failed_batch(self, keyword_embedder, login_graph):
        """Test that entries from a failed batch stay unembedded."""
        builder = SemanticIndexBuilder(FailingEmbedder(keyword_embedder, "Password input"), batch_size=1)

        index = await builder.build_index(login_graph)

        by_label = {e.label: e for e in index.elements}
        assert by_label["Password"].embedding is None
        assert by_label["E-Mail"].embedding is not None
        assert index.fingerprint == login_graph.screen_fingerprint


async def built_index(embedder, graph):
    builder = SemanticIndexBuilder(embedder)
    return builder, await builder.build_index(graph)


class TestSearch:
    """Test index search."""

    @pytest.mark.asyncio
    async def test_best_element_first(self, keyword_embedder, login_graph):
        """Test that the keyword-matching element ranks first."""
        builder, built = await built_index(keyword_embedder, login_graph)

        pack = await builder.search(QuerySpec(intent="type", keywords=["password"]), built)

        assert pack.items[0].label == "Password"
        assert pack.items[0].score == 1.0
        assert pack.items[0].selector_candidates == ["#password", 'input[name="password"]']
        assert pack.total_items == 3

    @pytest.mark.asyncio
    async def test_visibility_constraint(self, keyword_embedder, login_graph):
        """Test that low-scoring elements are dropped when visibility is required."""
        builder, built = await built_index(keyword_embedder, login_graph)
        query = QuerySpec(intent="type", keywords=["password"],
                          constraints=QueryConstraints(must_be_visible=True))

        pack = await builder.search(query, built)

        assert [item.label for item in pack.items] == ["Password"]

    @pytest.mark.asyncio
    async def test_section_hint_adds_sections(self, keyword_embedder, login_graph):
        """Test that a section hint includes section evidence."""
        builder, built = await built_index(keyword_embedder, login_graph)
        query = QuerySpec(intent="click", keywords=["login"], filters=QueryFilters(section_hint="Sign in"))

        pack = await builder.search(query, built)

        assert any(item.type == "section" and item.label == "Sign in" for item in pack.items)

    @pytest.mark.asyncio
    async def test_k_truncates(self, keyword_embedder, login_graph):
        """Test that results are truncated to k."""
        builder, built = await built_index(keyword_embedder, login_graph)

        pack = await builder.search(QuerySpec(intent="type", keywords=["password"], k=1), built)

        assert len(pack.items) == 1

    @pytest.mark.asyncio
    async def test_missing_query_embedding_raises(self, login_graph):
        """Test that search fails when the query cannot be embedded."""
        class EmptyEmbedder:
            async def embed(self, texts):
                return []

        builder = SemanticIndexBuilder(EmptyEmbedder())
        built = await builder.build_index(login_graph)

        with pytest.raises(ProviderFailure):
            await builder.search(QuerySpec(intent="click", keywords=["login"]), built)


class TestScoringHelpers:
    """Test boost, filter and rerank helpers."""

    def test_keyword_boost(self):
        """Test exact, prefix and substring boosts."""
        query = QuerySpec(intent="click", keywords=["email"])

        assert keyword_boost(0.1, "Email", query) == pytest.approx(0.4)
        assert keyword_boost(0.1, "Email address", query) == pytest.approx(0.35)
        assert keyword_boost(0.1, "Your email", query) == pytest.approx(0.3)
        assert keyword_boost(0.9, "Email", query) == 1.0
        assert keyword_boost(0.1, "Email", QuerySpec(intent="click")) == 0.1

    def test_role_and_negative_filters(self):
        """Test role and negative filters."""
        items = [
            EvidenceItem(id="1", label="Subscribe", role="button", snippet="", selector_candidates=[], score=0.5, type="element"),
            EvidenceItem(id="2", label="Newsletter", role="button", snippet="", selector_candidates=[], score=0.5, type="element"),
            EvidenceItem(id="3", label="Email", role="input", snippet="", selector_candidates=[], score=0.5, type="element"),
        ]
        query = QuerySpec(intent="click", filters=QueryFilters(role=["button"], negative=["newsletter"]))

        assert [i.label for i in apply_filters(items, query)] == ["Subscribe"]

    def test_rerank_prefers_elements_for_click(self):
        """Test intent affinity in reranking."""
        section = EvidenceItem(id="s", label="Header", role="section", snippet="", selector_candidates=[], score=0.6, type="section")
        element = EvidenceItem(id="e", label="Menu", role="button", snippet="", selector_candidates=[], score=0.5, type="element")

        ranked = rerank([section, element], QuerySpec(intent="click"))

        assert [i.id for i in ranked] == ["e", "s"]


class TestManager:
    """Test per-fingerprint index caching."""

    @pytest.mark.asyncio
    async def test_cache_keeps_three(self, keyword_embedder):
        """Test that only the three most recent indices are kept."""
        rebuilt = []
        manager = SemanticIndexManager(SemanticIndexBuilder(keyword_embedder), on_rebuilt=rebuilt.append)
        graphs = [
            make_graph([Element(tag="button", text=f"Action {i}", clickable=True)], url=f"https://example.com/{i}")
            for i in range(4)
        ]

        for graph in graphs:
            await manager.get_or_build(graph)

        assert manager.cached_fingerprints == [g.screen_fingerprint for g in graphs[1:]]
        assert rebuilt == [g.screen_fingerprint for g in graphs]

    @pytest.mark.asyncio
    async def test_cached_index_reused(self, keyword_embedder, login_graph):
        """Test that an unchanged fingerprint does not rebuild."""
        rebuilt = []
        manager = SemanticIndexManager(SemanticIndexBuilder(keyword_embedder), on_rebuilt=rebuilt.append)

        first = await manager.get_or_build(login_graph)
        second = await manager.get_or_build(login_graph)

        assert first is second
        assert len(rebuilt) == 1

    @pytest.mark.asyncio
    async def test_search_without_index(self, keyword_embedder):
        """Test that searching before building fails."""
        manager = SemanticIndexManager(SemanticIndexBuilder(keyword_embedder))

        with pytest.raises(RuntimeError):
            await manager.search(QuerySpec(intent="click"))

    @pytest.mark.asyncio
    async def test_search_current(self, keyword_embedder, login_graph):
        """Test searching the current index."""
        manager = SemanticIndexManager(SemanticIndexBuilder(keyword_embedder))
        await manager.get_or_build(login_graph)

        pack = await manager.search(QuerySpec(intent="type", keywords=["password"]))

        assert pack.items[0].label == "Password"
