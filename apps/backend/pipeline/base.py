"""
Base interface for extraction strategies.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)


class PageContext:
    """
    Everything a strategy may look at for one loaded page.

    The soup is parsed lazily and shared between strategies. ``page`` is the
    live browser page when available; strategies must work without it.
    """

    def __init__(self, url: str, html: str, page: Optional[Any] = None):
        self.url = url
        self.html = html or ""
        self.page = page
        self._soup: Optional[BeautifulSoup] = None

    @property
    def soup(self) -> BeautifulSoup:
        if self._soup is None:
            self._soup = BeautifulSoup(self.html, 'lxml')
        return self._soup


class ExtractionStrategy(ABC):
    """
    One way of finding job listings on a page.

    Strategies never raise for partial failure: a broken script block or card
    is skipped and the strategy returns fewer nodes.
    """

    name = "base"

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.name}")

    @abstractmethod
    async def extract(self, context: PageContext) -> List[Dict]:
        """
        Extract raw job nodes.

        Args:
            context: Loaded page

        Returns:
            List of strategy-specific job dicts (possibly empty)
        """

    def __repr__(self):
        return f"<{self.__class__.__name__}(name={self.name})>"
