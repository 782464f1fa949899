"""
Unit tests for the provider-bound HTML cleaner.
"""

from locator_agent.core.html_cleaner import clean_html


class TestCleanHtml:
    """Test markup reduction."""

    def test_strips_scripts_and_styles(self, login_markup):
        """Test that script and style blocks are removed."""
        cleaned = clean_html(login_markup)

        assert "console.log" not in cleaned
        assert "color: red" not in cleaned
        assert 'id="login-form"' in cleaned
        assert "<title>" not in cleaned

    def test_drops_inline_style_and_generated_classes(self):
        """Test attribute cleanup."""
        cleaned = clean_html('<div class="card css-1x2y3z jss42" style="color: red">x</div>')

        assert cleaned == '<div class="card">x</div>'

    def test_removes_class_attribute_when_all_generated(self):
        """Test that an all-generated class list disappears."""
        assert clean_html('<span class="jss7">x</span>') == "<span>x</span>"

    def test_blanks_base64_images(self):
        """Test that inline image payloads are dropped."""
        cleaned = clean_html('<img src="data:image/png;base64,AAAA" alt="logo">')

        assert "base64" not in cleaned
        assert 'alt="logo"' in cleaned

    def test_truncates(self):
        """Test the length cap."""
        cleaned = clean_html("<p>" + "a" * 500 + "</p>", max_chars=100)

        assert len(cleaned) == 100

    def test_empty_markup(self):
        """Test that empty input gives empty output."""
        assert clean_html("") == ""
