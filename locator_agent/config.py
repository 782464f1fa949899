"""
Resolver Configuration

Runtime settings for a resolution session. Values come from the
environment (optionally a .env file) with sensible defaults.
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_TRUTHY = ("1", "true", "yes", "on")


def _env_flag(name: str) -> Optional[bool]:
    """Read a boolean env var, None when unset"""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip().lower() in _TRUTHY


def llm_disabled_by_env() -> bool:
    """USE_LLM=false|0 or DISABLE_LLM=true|1|yes turns escalation off"""
    use_llm = (os.getenv("USE_LLM") or "").strip().lower()
    disable_llm = (os.getenv("DISABLE_LLM") or "").strip().lower()
    return use_llm in ("false", "0") or disable_llm in ("true", "1", "yes")


@dataclass
class ResolverConfig:
    """Configuration for a resolution session"""
    data_dir: str = "data/locator_agent"
    heuristics_path: Optional[str] = None
    provider: str = "anthropic"
    enable_llm: bool = True
    enable_embeddings: bool = False
    # Disambiguation
    max_disambiguation_retries: int = 2  # extra attempts after the first
    retry_delay_s: float = 0.5
    provider_call_attempts: int = 3
    provider_backoff_s: float = 1.0
    max_candidates_for_llm: int = 8
    max_html_chars: int = 60000
    # Live validation
    validation_timeout_ms: int = 5000
    # Semantic layer
    semantic_k: int = 30
    embedding_batch_size: int = 20
    embedding_concurrency: int = 3
    embedding_model: Optional[str] = None

    @property
    def store_path(self) -> Path:
        """Location of the persisted selector heuristics file"""
        if self.heuristics_path:
            return Path(self.heuristics_path)
        return Path(self.data_dir) / "selector-heuristics.json"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "ResolverConfig":
        """Build a config from environment variables"""
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        config = cls(
            data_dir=os.getenv("LOCATOR_AGENT_DATA_DIR", cls.data_dir),
            heuristics_path=os.getenv("SELECTOR_HEURISTICS_PATH") or None,
            provider=os.getenv("AI_PROVIDER", cls.provider).lower(),
            embedding_model=os.getenv("EMBEDDING_MODEL") or None,
        )

        if llm_disabled_by_env():
            logger.info("LLM escalation disabled via environment flag (USE_LLM/DISABLE_LLM)")
            config.enable_llm = False

        embeddings = _env_flag("ENABLE_EMBEDDINGS")
        if embeddings is not None:
            config.enable_embeddings = embeddings

        return config

    def has_provider_credentials(self) -> bool:
        """Check whether the configured provider can be reached"""
        if self.provider == "ollama":
            return True
        if self.provider == "openai":
            return bool(os.getenv("OPENAI_API_KEY"))
        return bool(os.getenv("ANTHROPIC_API_KEY"))
