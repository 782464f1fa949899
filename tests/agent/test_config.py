"""
Unit tests for resolver configuration.
"""

import pytest
from pathlib import Path

from locator_agent.config import ResolverConfig, llm_disabled_by_env


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove configuration variables from the environment."""
    for name in ("USE_LLM", "DISABLE_LLM", "ENABLE_EMBEDDINGS", "AI_PROVIDER",
                 "SELECTOR_HEURISTICS_PATH", "LOCATOR_AGENT_DATA_DIR", "EMBEDDING_MODEL",
                 "ANTHROPIC_API_KEY", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)


class TestEnvFlags:
    """Test LLM kill switches."""

    @pytest.mark.parametrize("name,value,disabled", [
        ("USE_LLM", "false", True),
        ("USE_LLM", "0", True),
        ("USE_LLM", "true", False),
        ("DISABLE_LLM", "yes", True),
        ("DISABLE_LLM", "1", True),
        ("DISABLE_LLM", "no", False),
    ])
    def test_llm_flags(self, monkeypatch, name, value, disabled):
        """Test USE_LLM and DISABLE_LLM parsing."""
        monkeypatch.setenv(name, value)

        assert llm_disabled_by_env() is disabled

    def test_defaults(self):
        """Test that escalation is on when no flag is set."""
        assert llm_disabled_by_env() is False


class TestFromEnv:
    """Test building configuration from the environment."""

    def test_reads_environment(self, monkeypatch, tmp_path):
        """Test provider, paths and feature flags."""
        monkeypatch.setenv("AI_PROVIDER", "OpenAI")
        monkeypatch.setenv("LOCATOR_AGENT_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("ENABLE_EMBEDDINGS", "true")
        monkeypatch.setenv("DISABLE_LLM", "true")

        config = ResolverConfig.from_env(env_file=str(tmp_path / "missing.env"))

        assert config.provider == "openai"
        assert config.enable_embeddings is True
        assert config.enable_llm is False
        assert config.store_path == tmp_path / "selector-heuristics.json"

    def test_explicit_heuristics_path(self, monkeypatch, tmp_path):
        """Test that an explicit store path wins over the data dir."""
        monkeypatch.setenv("SELECTOR_HEURISTICS_PATH", str(tmp_path / "custom.json"))

        config = ResolverConfig.from_env(env_file=str(tmp_path / "missing.env"))

        assert config.store_path == Path(tmp_path / "custom.json")


class TestCredentials:
    """Test provider credential checks."""

    def test_ollama_needs_no_key(self):
        """Test that local providers are always available."""
        assert ResolverConfig(provider="ollama").has_provider_credentials()

    def test_keys_per_provider(self, monkeypatch):
        """Test key lookup per provider."""
        assert not ResolverConfig(provider="anthropic").has_provider_credentials()
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        assert ResolverConfig(provider="openai").has_provider_credentials()
