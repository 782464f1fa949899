"""
Provider Layer

AI gateway (chat completion and embeddings over HTTP) and the selector
resolver that asks a provider to disambiguate when heuristics are unsure.
"""

from .ai_gateway import AIGateway, AIProvider, AIResponse
from .selector_resolver import SelectorResolver, SelectorResult, parse_ai_response

__all__ = [
    "AIGateway",
    "AIProvider",
    "AIResponse",
    "SelectorResolver",
    "SelectorResult",
    "parse_ai_response",
]
