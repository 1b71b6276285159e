"""
Error types for the harvester.

Only ConfigurationError and SessionUnavailableError are fatal to a run.
Everything else is handled locally by the orchestrator.
"""
from typing import Optional


class HarvesterError(Exception):
    """Base class for all harvester errors."""


class ConfigurationError(HarvesterError):
    """Invalid run configuration. Raised before any navigation happens."""


class SessionUnavailableError(HarvesterError):
    """No browser session could be obtained from the pool."""


class NavigationError(HarvesterError):
    """Navigation to a page failed (network error, timeout, bad status)."""

    def __init__(self, url: str, message: str, status: Optional[int] = None):
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status = status


class PageBlockedError(NavigationError):
    """The site answered with an access-denied page for this session."""


class ChallengeUnresolvedError(HarvesterError):
    """An anti-bot interstitial did not clear within the cycle ceiling."""

    def __init__(self, url: str, cycles: int):
        super().__init__(f"Challenge not cleared after {cycles} cycles ({url})")
        self.url = url
        self.cycles = cycles


class MalformedNodeError(HarvesterError):
    """A raw node could not be mapped to a JobRecord."""
