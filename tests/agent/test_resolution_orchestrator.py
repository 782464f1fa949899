"""
Unit tests for ResolutionOrchestrator.

Drives the full stage precedence (memory, heuristics, semantic, provider)
with a mocked page, graph builder and gateway.
"""

import pytest
from unittest.mock import AsyncMock, Mock

from locator_agent.brain.ai_gateway import AIResponse
from locator_agent.brain.selector_resolver import SelectorResolver
from locator_agent.context.session_context import SessionContextTracker
from locator_agent.core.element_graph import Element
from locator_agent.core.resolution_orchestrator import (
    ResolutionOrchestrator,
    ResolutionStage,
    Resolved,
    Unresolved,
)
from locator_agent.errors import GraphBuildFailure
from locator_agent.knowledge.semantic_index import SemanticIndexBuilder, SemanticIndexManager
from conftest import locator_counts, make_graph


def graph_builder_for(graph):
    return Mock(build=AsyncMock(return_value=graph))


@pytest.fixture
def tracker(clock):
    """Tracker driven by the fake clock."""
    return SessionContextTracker(clock=clock)


@pytest.fixture
def account_graph(email_input, password_input, submit_button):
    """Login form elements on a page that triggers no known flow."""
    return make_graph([email_input, password_input, submit_button],
                      url="https://example.com/account", title="Account")


def make_orchestrator(store, tracker, graph, gateway=None, **kwargs):
    resolver = SelectorResolver(gateway, provider_backoff_s=0, retry_delay_s=0) if gateway else None
    return ResolutionOrchestrator(
        store=store,
        tracker=tracker,
        graph_builder=graph_builder_for(graph),
        resolver=resolver,
        **kwargs,
    )


class TestMemoryStages:
    """Test static and learned memory short-circuits."""

    @pytest.mark.asyncio
    async def test_static_selector_skips_everything_else(self, memory_store, tracker, login_graph, mock_gateway, mock_page):
        """Test that a validating static selector never reaches graph or provider."""
        memory_store.add_static_selector("Login", "button", "#login")
        orchestrator = make_orchestrator(memory_store, tracker, login_graph, mock_gateway)

        outcome = await orchestrator.resolve(mock_page, "Login", "click")

        assert outcome == Resolved("#login", 1.0, (), ResolutionStage.STATIC)
        orchestrator.graph_builder.build.assert_not_called()
        mock_gateway.execute.assert_not_called()
        assert memory_store.get_config().learned_selectors == []

    @pytest.mark.asyncio
    async def test_static_fallback_used(self, memory_store, tracker, login_graph, mock_page):
        """Test that a static entry's fallback is tried after the primary fails."""
        memory_store.add_static_selector("Login", "button", "#login", fallbacks=["#login-alt"])
        locator_counts(mock_page, {"#login-alt": 1})
        orchestrator = make_orchestrator(memory_store, tracker, login_graph)

        outcome = await orchestrator.resolve(mock_page, "Login", "click")

        assert outcome.selector == "#login-alt"
        assert outcome.stage is ResolutionStage.STATIC
        assert tracker.failed_selectors == ["#login"]

    @pytest.mark.asyncio
    async def test_learned_selector_reinforced(self, memory_store, tracker, login_graph, mock_page):
        """Test that a learned hit bumps its usage without duplicating."""
        memory_store.add_learned_selector("E-Mail", "input", "#email", url_pattern="example.com")
        orchestrator = make_orchestrator(memory_store, tracker, login_graph)

        outcome = await orchestrator.resolve(mock_page, "E-Mail", "type")

        assert outcome.stage is ResolutionStage.LEARNED
        assert outcome.selector == "#email"
        learned = memory_store.get_config().learned_selectors
        assert len(learned) == 1
        assert learned[0].used_count == 2
        orchestrator.graph_builder.build.assert_not_called()

    @pytest.mark.asyncio
    async def test_learned_for_other_site_ignored(self, memory_store, tracker, account_graph, mock_page):
        """Test that learned entries for another domain are not used."""
        memory_store.add_learned_selector("E-Mail", "input", "#other", url_pattern="other.org")
        orchestrator = make_orchestrator(memory_store, tracker, account_graph)

        outcome = await orchestrator.resolve(mock_page, "E-Mail", "type")

        assert outcome.selector == "#email"
        assert outcome.stage is not ResolutionStage.LEARNED


class TestHeuristicStage:
    """Test heuristic routing and live validation."""

    @pytest.mark.asyncio
    async def test_direct_on_login_flow(self, memory_store, tracker, login_graph, mock_gateway, mock_page):
        """Test that the expected login field resolves directly."""
        orchestrator = make_orchestrator(memory_store, tracker, login_graph, mock_gateway)

        outcome = await orchestrator.resolve(mock_page, "E-Mail", "type")

        assert outcome.stage is ResolutionStage.DIRECT
        assert outcome.selector == "#email"
        assert outcome.fallbacks == ('input[name="email"]',)
        mock_gateway.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_try_top2_without_flow(self, memory_store, tracker, account_graph, mock_page):
        """Test medium confidence resolution through the top candidates."""
        orchestrator = make_orchestrator(memory_store, tracker, account_graph)

        outcome = await orchestrator.resolve(mock_page, "E-Mail", "type")

        assert outcome.stage is ResolutionStage.TOP2
        assert outcome.confidence == pytest.approx(0.71)

    @pytest.mark.asyncio
    async def test_success_is_learned(self, memory_store, tracker, login_graph, mock_page):
        """Test that a heuristic success is written to learned memory and the tracker."""
        orchestrator = make_orchestrator(memory_store, tracker, login_graph)

        await orchestrator.resolve(mock_page, "E-Mail", "type")

        entry = memory_store.get_config().learned_selectors[0]
        assert entry.selector == "#email"
        assert entry.element_type == "input"
        assert entry.url_pattern == "example.com"
        assert tracker.state.current_form_group == "login-form"

    @pytest.mark.asyncio
    async def test_second_resolution_uses_learned_memory(self, memory_store, tracker, login_graph, mock_page):
        """Test that a repeated request is served from learned memory."""
        orchestrator = make_orchestrator(memory_store, tracker, login_graph)

        await orchestrator.resolve(mock_page, "E-Mail", "type")
        outcome = await orchestrator.resolve(mock_page, "E-Mail", "type")

        assert outcome.stage is ResolutionStage.LEARNED
        assert orchestrator.graph_builder.build.await_count == 1

    @pytest.mark.asyncio
    async def test_graph_build_failure_propagates(self, memory_store, tracker, mock_page):
        """Test that page read failures reach the caller."""
        orchestrator = ResolutionOrchestrator(
            store=memory_store,
            tracker=tracker,
            graph_builder=Mock(build=AsyncMock(side_effect=GraphBuildFailure("Target closed"))),
        )

        with pytest.raises(GraphBuildFailure):
            await orchestrator.resolve(mock_page, "E-Mail", "type")


class TestEscalation:
    """Test semantic and provider escalation."""

    @pytest.mark.asyncio
    async def test_provider_after_validation_failures(self, memory_store, tracker, login_graph, mock_gateway, mock_page):
        """Test that failed heuristic selectors are passed on to the provider."""
        locator_counts(mock_page, {"#llm-choice": 1})
        orchestrator = make_orchestrator(memory_store, tracker, login_graph, mock_gateway)

        outcome = await orchestrator.resolve(mock_page, "E-Mail", "type")

        assert outcome == Resolved("#llm-choice", 0.9, (), ResolutionStage.LLM)
        prompt = mock_gateway.execute.await_args[0][1]
        assert "- #email" in prompt
        assert "HEURISTIC CANDIDATES" in prompt
        assert memory_store.get_config().learned_selectors[0].selector == "#llm-choice"

    @pytest.mark.asyncio
    async def test_unresolved_without_provider(self, memory_store, tracker, login_graph, mock_page):
        """Test the empty sentinel when every stage is exhausted."""
        locator_counts(mock_page, {})
        orchestrator = make_orchestrator(memory_store, tracker, login_graph)

        outcome = await orchestrator.resolve(mock_page, "E-Mail", "type")

        assert isinstance(outcome, Unresolved)
        assert outcome.selector == ""
        assert outcome.stage is ResolutionStage.UNRESOLVED
        assert "#email" in outcome.failed_selectors
        assert memory_store.get_config().learned_selectors == []

    @pytest.mark.asyncio
    async def test_llm_disabled(self, memory_store, tracker, login_graph, mock_gateway, mock_page):
        """Test that disabled escalation never calls the provider."""
        locator_counts(mock_page, {})
        orchestrator = make_orchestrator(memory_store, tracker, login_graph, mock_gateway, enable_llm=False)

        outcome = await orchestrator.resolve(mock_page, "E-Mail", "type")

        assert isinstance(outcome, Unresolved)
        mock_gateway.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_semantic_before_provider(self, memory_store, tracker, keyword_embedder, mock_gateway, mock_page):
        """Test that semantic evidence resolves low-confidence requests before the provider."""
        graph = make_graph(
            [Element(tag="div", clickable=True, text="Subscribe to newsletter", candidate_selectors=["#nl"])],
            url="https://example.com/news",
            title="News",
        )
        semantic = SemanticIndexManager(SemanticIndexBuilder(keyword_embedder))
        orchestrator = make_orchestrator(memory_store, tracker, graph, mock_gateway, semantic=semantic)

        outcome = await orchestrator.resolve(mock_page, "Newsletter", "click")

        assert outcome.stage is ResolutionStage.SEMANTIC
        assert outcome.selector == "#nl"
        mock_gateway.execute.assert_not_called()


class TestStats:
    """Test orchestrator statistics."""

    @pytest.mark.asyncio
    async def test_stage_hits(self, memory_store, tracker, login_graph, mock_gateway, mock_page):
        """Test per-stage counters and provider dependency."""
        memory_store.add_static_selector("Login", "button", "#login")
        orchestrator = make_orchestrator(memory_store, tracker, login_graph, mock_gateway)

        await orchestrator.resolve(mock_page, "Login", "click")
        locator_counts(mock_page, {"#llm-choice": 1})
        await orchestrator.resolve(mock_page, "E-Mail", "type")

        stats = orchestrator.get_stats()
        assert stats["total_resolutions"] == 2
        assert stats["stage_hits"]["static"] == 1
        assert stats["stage_hits"]["llm"] == 1
        assert stats["llm_dependency"] == 50.0

    @pytest.mark.asyncio
    async def test_step_recorded_in_tracker(self, memory_store, tracker, login_graph, mock_page):
        """Test that each request opens a tracker step."""
        orchestrator = make_orchestrator(memory_store, tracker, login_graph)

        await orchestrator.resolve(mock_page, "E-Mail", "type")

        step = tracker.state.recent_steps[-1]
        assert step.step_type == "type"
        assert step.label == "E-Mail"
        assert step.success is True


class TestSessionFailures:
    """Test failures carried across requests."""

    @pytest.mark.asyncio
    async def test_earlier_failure_in_provider_prompt(self, memory_store, tracker, login_graph, mock_gateway, mock_page):
        """Test that a selector failed in an earlier request is listed for the provider."""
        tracker.on_step_start(1, "click", "Login")
        tracker.on_interaction(None, "#stale-bad", False)
        locator_counts(mock_page, {"#llm-choice": 1})
        orchestrator = make_orchestrator(memory_store, tracker, login_graph, mock_gateway)

        outcome = await orchestrator.resolve(mock_page, "E-Mail", "type")

        assert outcome.stage is ResolutionStage.LLM
        prompt = mock_gateway.execute.await_args[0][1]
        assert "- #stale-bad" in prompt

    @pytest.mark.asyncio
    async def test_malformed_provider_reply_is_unresolved(self, memory_store, tracker, login_graph, mock_gateway, mock_page):
        """Test that a numeric selector from the provider ends as the empty sentinel."""
        mock_gateway.execute.return_value = AIResponse(
            content='{"selector": 123, "confidence": 0.9, "fallbacks": []}',
            model="test-model",
            provider="anthropic",
        )
        locator_counts(mock_page, {})
        orchestrator = make_orchestrator(memory_store, tracker, login_graph, mock_gateway)

        outcome = await orchestrator.resolve(mock_page, "E-Mail", "type")

        assert isinstance(outcome, Unresolved)
        assert outcome.selector == ""
