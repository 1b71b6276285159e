"""
Main extraction pipeline.

Runs extraction strategies in a fixed order and stops at the first one that
yields at least one job node:
1. Structured data (JSON-LD JobPosting)
2. Embedded application state (inline scripts / window globals)
3. DOM heuristics (job cards)
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from .base import ExtractionStrategy, PageContext
from .jsonld import StructuredDataStrategy
from .app_state import EmbeddedStateStrategy
from .heuristics import DomHeuristicStrategy
from . import __version__

logger = logging.getLogger(__name__)


class ExtractionOutcome:
    """
    Result of running the pipeline on one page.

    ``method`` is the name of the strategy that produced ``nodes``, or None
    when every strategy came back empty. ``attempted`` lists the strategies
    that ran, in order.
    """

    def __init__(self, nodes: Optional[List[Dict]] = None, method: Optional[str] = None,
                 attempted: Optional[List[str]] = None):
        self.nodes = nodes or []
        self.method = method
        self.attempted = attempted or []

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    def to_dict(self) -> Dict:
        return {
            "method": self.method,
            "node_count": len(self.nodes),
            "attempted": list(self.attempted),
            "pipeline_version": __version__,
        }

    def __repr__(self):
        return f"<ExtractionOutcome(method={self.method}, nodes={len(self.nodes)})>"


def default_strategies(max_cards: int = 100, base_url: str = "https://www.upwork.com") -> List[ExtractionStrategy]:
    return [
        StructuredDataStrategy(),
        EmbeddedStateStrategy(),
        DomHeuristicStrategy(max_cards=max_cards, base_url=base_url),
    ]


class ExtractionPipeline:
    """Ordered fallback over extraction strategies."""

    def __init__(self, strategies: Optional[Sequence[ExtractionStrategy]] = None):
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        logger.debug(f"[extractor] Pipeline order: {[s.name for s in self.strategies]}")

    async def extract(self, url: str, html: str, page: Any = None) -> ExtractionOutcome:
        """
        Extract raw job nodes from a loaded page.

        Args:
            url: Page URL, used to resolve relative links
            html: Page content after challenge handling
            page: Live browser page, if any

        Returns:
            ExtractionOutcome; empty (method None) when no strategy found jobs
        """
        context = PageContext(url, html, page=page)
        attempted: List[str] = []

        for strategy in self.strategies:
            attempted.append(strategy.name)
            try:
                nodes = await strategy.extract(context)
            except Exception as e:
                # A broken strategy counts as empty so the next one still runs
                logger.warning(f"[extractor] Strategy {strategy.name} failed on {url}: {e}")
                nodes = []

            if nodes:
                logger.info(f"[extractor] {strategy.name} yielded {len(nodes)} nodes on {url}")
                return ExtractionOutcome(nodes, strategy.name, attempted)

        logger.warning(f"[extractor] No strategy found jobs on {url} (tried {', '.join(attempted)})")
        return ExtractionOutcome([], None, attempted)
