"""
Resolution Errors

Failure taxonomy for the locator resolution pipeline. Only
GraphBuildFailure is surfaced to callers of the orchestrator; the
others are raised and absorbed inside the pipeline and logged.
"""

from typing import Optional


class LocatorAgentError(Exception):
    """Base class for all resolution errors"""


class GraphBuildFailure(LocatorAgentError):
    """The page could not be read; no partial graph is returned"""


class NoCandidates(LocatorAgentError):
    """Filtering and scoring produced no candidate"""


class ParseFailure(LocatorAgentError):
    """A provider response could not be interpreted as a selector result"""


class ValidationFailure(LocatorAgentError):
    """A locator matched zero live elements or failed to evaluate"""

    def __init__(self, selector: str, reason: str = "no elements"):
        super().__init__(f"{selector}: {reason}")
        self.selector = selector
        self.reason = reason


class ProviderFailure(LocatorAgentError):
    """A disambiguation or embedding provider call failed"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        """Rate limits and server errors are worth another try"""
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500
