"""
Pytest configuration and shared fixtures for locator agent tests.
"""

import pytest
import sys
from pathlib import Path
from unittest.mock import Mock, AsyncMock, MagicMock
from typing import List

# Make the package importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent))

from locator_agent.brain.ai_gateway import AIResponse
from locator_agent.core.element_graph import Element, ElementGraph, Stability, screen_fingerprint
from locator_agent.knowledge.selector_memory import SelectorMemoryStore


# ==================== Mock Page Fixture ====================

@pytest.fixture
def mock_page():
    """Create a mock Playwright page object."""
    page = AsyncMock()

    # Basic properties
    page.url = "https://example.com/test"

    # Content
    page.content = AsyncMock(return_value="<html><body><div id='test'>Test</div></body></html>")
    page.title = AsyncMock(return_value="Test Page")

    # Evaluation
    page.evaluate = AsyncMock(return_value={})

    # Locators: every selector matches one element unless a test says otherwise
    mock_locator = AsyncMock()
    mock_locator.first = mock_locator
    mock_locator.count = AsyncMock(return_value=1)
    mock_locator.is_visible = AsyncMock(return_value=True)
    mock_locator.is_enabled = AsyncMock(return_value=True)

    page.locator = Mock(return_value=mock_locator)

    return page


def locator_counts(page, counts):
    """Make page.locator(selector).first.count() return counts.get(selector, 0)."""
    def make_locator(selector):
        locator = AsyncMock()
        locator.first = locator
        locator.count = AsyncMock(return_value=counts.get(selector, 0))
        return locator

    page.locator = Mock(side_effect=make_locator)
    return page


# ==================== Provider Fixtures ====================

@pytest.fixture
def mock_gateway():
    """Create a mock AI gateway."""
    gateway = MagicMock()
    gateway.execute = AsyncMock(return_value=AIResponse(
        content='{"selector": "#llm-choice", "confidence": 0.9, "fallbacks": []}',
        model="test-model",
        provider="anthropic",
        tokens_used=42,
    ))
    gateway.embed = AsyncMock(return_value=[])
    gateway.get_stats = Mock(return_value={"api_calls": 0})
    return gateway


class KeywordEmbedder:
    """Deterministic embedder: one dimension per vocabulary word."""

    def __init__(self, vocabulary: List[str]):
        self.vocabulary = [w.lower() for w in vocabulary]
        self.calls: List[List[str]] = []

    async def embed(self, texts):
        self.calls.append(list(texts))
        vectors = []
        for text in texts:
            lowered = text.lower()
            vector = [1.0 if word in lowered else 0.0 for word in self.vocabulary]
            vector.append(0.1)
            vectors.append(vector)
        return vectors


@pytest.fixture
def keyword_embedder():
    """Embedder that maps texts onto a small keyword vocabulary."""
    return KeywordEmbedder(["email", "password", "login", "search", "newsletter", "type", "click"])


# ==================== Clock Fixture ====================

class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    """Manually advanced clock for TTL tests."""
    return FakeClock()


# ==================== Store Fixture ====================

@pytest.fixture
def memory_store(tmp_path):
    """Create a selector memory store in a temporary directory."""
    return SelectorMemoryStore(str(tmp_path / "data" / "selector-heuristics.json"))


# ==================== Sample Graphs ====================

def make_graph(elements, url="https://example.com/login", title="Login", landmarks=None, active_forms=None):
    """Build an ElementGraph around a list of elements."""
    landmarks = landmarks or []
    return ElementGraph(
        elements=list(elements),
        url=url,
        title=title,
        screen_fingerprint=screen_fingerprint(url, list(elements), landmarks),
        landmark_structure=landmarks,
        active_forms=active_forms or [],
    )


@pytest.fixture
def email_input():
    """Email input with stable id and name inside a login form."""
    return Element(
        tag="input",
        type="email",
        id="email",
        name="email",
        accessible_name="E-Mail",
        form_group="login-form",
        section_title="Sign in",
        nearby_text=["E-Mail"],
        focusable=True,
        candidate_selectors=["#email", 'input[name="email"]'],
        stability=Stability.HIGH,
    )


@pytest.fixture
def password_input():
    """Password input inside the login form."""
    return Element(
        tag="input",
        type="password",
        id="password",
        name="password",
        accessible_name="Password",
        form_group="login-form",
        section_title="Sign in",
        focusable=True,
        candidate_selectors=["#password", 'input[name="password"]'],
        stability=Stability.HIGH,
    )


@pytest.fixture
def submit_button():
    """Primary submit button of the login form."""
    return Element(
        tag="button",
        type="submit",
        text="Sign in",
        accessible_name="Sign in",
        data_test_id="login-submit",
        form_group="login-form",
        section_title="Sign in",
        clickable=True,
        is_primary=True,
        is_submit=True,
        candidate_selectors=['[data-testid="login-submit"]', 'button:has-text("Sign in")'],
        stability=Stability.HIGH,
    )


@pytest.fixture
def login_graph(email_input, password_input, submit_button):
    """Login screen graph with email, password and submit."""
    return make_graph(
        [email_input, password_input, submit_button],
        landmarks=["Sign in"],
        active_forms=["login-form"],
    )


LOGIN_MARKUP = """
<html>
<head><title>Login</title><style>.x { color: red; }</style></head>
<body>
  <nav><a href="/home">Home</a><a href="/settings/profile">Profile</a></nav>
  <main>
    <h1>Sign in</h1>
    <form id="login-form">
      <label for="email">E-Mail</label>
      <input id="email" name="email" type="email">
      <label for="password">Password</label>
      <input id="password" name="password" type="password">
      <input type="hidden" name="csrf_token" value="abc">
      <button type="submit" data-testid="login-submit">Sign in</button>
    </form>
  </main>
  <script>console.log("noise")</script>
</body>
</html>
"""


@pytest.fixture
def login_markup():
    """Static login page markup."""
    return LOGIN_MARKUP
