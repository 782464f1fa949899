"""
Session Context

Tracks navigation, interactions and detected flows within one
automation session.
"""

from .session_context import SessionContextTracker, FlowContext

__all__ = ["SessionContextTracker", "FlowContext"]
