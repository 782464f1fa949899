"""
Unit tests for the element graph builder.

Tests live extraction through a mocked page, the markup fallback,
fingerprints and the Element record.
"""

import pytest
from unittest.mock import AsyncMock

from locator_agent.core.element_graph import (
    Element,
    ElementGraphBuilder,
    InteractionType,
    Stability,
    build_graph_from_html,
    content_hash,
    screen_fingerprint,
)
from locator_agent.errors import GraphBuildFailure


def find(graph, **attrs):
    for element in graph.elements:
        if all(getattr(element, k) == v for k, v in attrs.items()):
            return element
    raise AssertionError(f"No element with {attrs}")


class TestBuildFromMarkup:
    """Test graph construction from static markup."""

    def test_login_page_elements(self, login_markup):
        """Test that form controls are extracted with context."""
        graph = build_graph_from_html(login_markup, url="https://example.com/login")

        email = find(graph, tag="input", id="email")
        assert email.accessible_name == "E-Mail"
        assert email.form_group == "login-form"
        assert email.section_title == "Sign in"
        assert email.candidate_selectors == ["#email", 'input[name="email"]']
        assert email.stability is Stability.HIGH
        assert email.interaction_type is InteractionType.BOTH

    def test_hidden_inputs_skipped(self, login_markup):
        """Test that hidden inputs are not candidates in static graphs."""
        graph = build_graph_from_html(login_markup)

        assert all(e.name != "csrf_token" for e in graph.elements)

    def test_submit_button(self, login_markup):
        """Test button locators and primary detection."""
        graph = build_graph_from_html(login_markup)

        button = find(graph, tag="button")
        assert button.candidate_selectors[0] == '[data-testid="login-submit"]'
        assert button.is_primary is True
        assert button.is_submit is True
        assert button.clickable is True

    def test_navigation_links(self, login_markup):
        """Test that links in nav are flagged as navigation."""
        graph = build_graph_from_html(login_markup)

        profile = find(graph, tag="a", href="/settings/profile")
        assert profile.in_navigation is True
        assert 'a[href="/settings/profile"]' in profile.candidate_selectors

    def test_page_aggregates(self, login_markup):
        """Test title, landmarks and active forms."""
        graph = build_graph_from_html(login_markup, url="https://example.com/login")

        assert graph.title == "Login"
        assert graph.landmark_structure == ["Sign in"]
        assert graph.active_forms == ["login-form"]
        assert graph.screen_fingerprint.startswith("https://example.com/login:")

    def test_composite_container_replaces_trigger(self):
        """Test that a dropdown container becomes a single element."""
        markup = """
        <div data-testid="country-select">
          <div role="combobox" aria-haspopup="true">Germany</div>
          <input type="hidden" name="country" value="DE" id="country-input">
        </div>
        <label for="country-input">Country</label>
        """
        graph = build_graph_from_html(markup)

        container = find(graph, data_test_id="country-select")
        assert container.role == "combobox"
        assert container.value == "DE"
        assert container.label == "Country"
        assert container.widget_type == "dropdown"
        assert all(e.role != "combobox" or e is container for e in graph.elements)

    def test_disabled_and_modal(self):
        """Test disabled state and modal membership."""
        markup = '<div role="dialog" id="cookie-modal"><button disabled>Accept</button></div>'
        graph = build_graph_from_html(markup)

        button = find(graph, tag="button")
        assert button.enabled is False
        assert button.parent_modal_or_drawer == "cookie-modal"
        assert graph.active_modal == "cookie-modal"


class TestLiveBuild:
    """Test graph construction through a page."""

    @pytest.mark.asyncio
    async def test_builds_from_evaluation_result(self, mock_page):
        """Test that the extraction script result becomes Elements."""
        mock_page.evaluate = AsyncMock(return_value={
            "elements": [{
                "tag": "INPUT",
                "id": "email",
                "name": "email",
                "accessibleName": "E-Mail",
                "formGroup": "login-form",
                "candidateSelectors": ["#email"],
                "stability": "high",
                "visible": True,
            }],
            "activeModal": None,
            "activeForms": ["login-form"],
            "landmarkStructure": ["Sign in"],
        })

        graph = await ElementGraphBuilder().build(mock_page)

        assert len(graph.elements) == 1
        element = graph.elements[0]
        assert element.tag == "input"
        assert element.accessible_name == "E-Mail"
        assert element.stability is Stability.HIGH
        assert graph.url == "https://example.com/test"
        assert graph.title == "Test Page"
        assert graph.active_forms == ["login-form"]

    @pytest.mark.asyncio
    async def test_passes_patterns_to_script(self, mock_page):
        """Test that configured DOM query patterns reach the page script."""
        builder = ElementGraphBuilder({"landmarkQuery": "h1"})

        await builder.build(mock_page)

        args = mock_page.evaluate.call_args[0]
        assert args[1]["landmarkQuery"] == "h1"
        assert "modalSelectors" in args[1]

    @pytest.mark.asyncio
    async def test_page_error_raises_graph_build_failure(self, mock_page):
        """Test that page access errors abort the build."""
        mock_page.evaluate = AsyncMock(side_effect=RuntimeError("Target closed"))

        with pytest.raises(GraphBuildFailure):
            await ElementGraphBuilder().build(mock_page)

    @pytest.mark.asyncio
    async def test_markup_fallback_when_script_returns_nothing(self, mock_page, login_markup):
        """Test that a non-object script result falls back to markup parsing."""
        mock_page.evaluate = AsyncMock(return_value=None)
        mock_page.content = AsyncMock(return_value=login_markup)

        graph = await ElementGraphBuilder().build(mock_page)

        assert find(graph, tag="input", id="email").form_group == "login-form"


class TestFingerprint:
    """Test screen fingerprints."""

    def test_same_content_same_fingerprint(self):
        """Test that identical screens fingerprint identically."""
        a = [Element(tag="button", text_content="Save")]
        b = [Element(tag="button", text_content="Save")]

        assert screen_fingerprint("u", a, ["H"]) == screen_fingerprint("u", b, ["H"])

    def test_text_change_changes_fingerprint(self):
        """Test that visible text changes the content hash."""
        a = [Element(tag="button", text_content="Save")]
        b = [Element(tag="button", text_content="Delete")]

        assert content_hash(a) != content_hash(b)

    def test_invisible_text_ignored(self):
        """Test that invisible elements do not affect the hash."""
        a = [Element(tag="button", text_content="Save")]
        b = a + [Element(tag="div", text_content="Hidden", visible=False)]

        assert content_hash(a) == content_hash(b)

    def test_heading_path(self):
        """Test that the main heading and heading path are included."""
        fingerprint = screen_fingerprint("https://x.test/", [], ["Main", "Sub", "Third", "Fourth"])

        assert fingerprint.endswith(":Main:Main|Sub|Third")


class TestElementRecord:
    """Test Element properties."""

    def test_interaction_types(self):
        """Test interaction classification."""
        assert Element(tag="input", type="hidden").interaction_type is InteractionType.HIDDEN
        assert Element(tag="textarea").interaction_type is InteractionType.TYPE
        assert Element(tag="button", clickable=True).interaction_type is InteractionType.CLICK

    def test_context_summary(self):
        """Test the context summary string."""
        element = Element(
            tag="input",
            section_title="Account",
            form_group="profile",
            parent_modal_or_drawer="edit-modal",
            nearby_text=["First", "Second", "Third"],
        )

        assert element.context_summary() == "Section: Account | Form: profile | Modal: edit-modal | Nearby: First, Second"

    def test_elements_compare_by_identity(self):
        """Test that equal-looking elements stay distinct."""
        assert Element(tag="button", text="Submit") != Element(tag="button", text="Submit")
