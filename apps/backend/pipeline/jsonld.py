"""
JSON-LD extractor.

Finds Schema.org JobPosting objects in ``application/ld+json`` blocks.
"""

import json
import logging
from typing import Any, Dict, List

from .base import ExtractionStrategy, PageContext

logger = logging.getLogger(__name__)


class StructuredDataStrategy(ExtractionStrategy):
    """Extracts job postings from JSON-LD structured data."""

    name = "structured-data"

    async def extract(self, context: PageContext) -> List[Dict]:
        postings: List[Dict] = []

        scripts = context.soup.find_all('script', type='application/ld+json')
        for script in scripts:
            raw = script.string or script.get_text()
            if not raw or not raw.strip():
                continue
            try:
                data = json.loads(raw.strip())
            except (json.JSONDecodeError, TypeError) as e:
                logger.debug(f"[jsonld] Failed to parse JSON-LD block: {e}")
                continue

            for item in self._flatten_jsonld(data):
                if self._is_job_posting(item):
                    postings.append(item)

        if postings:
            logger.debug(f"[jsonld] Found {len(postings)} JobPosting objects on {context.url}")
        return postings

    def _flatten_jsonld(self, data: Any, depth: int = 0) -> List[Dict]:
        """Flatten JSON-LD structure to a list of candidate items."""
        if depth > 4:
            return []
        items: List[Dict] = []

        if isinstance(data, list):
            for entry in data:
                items.extend(self._flatten_jsonld(entry, depth + 1))
        elif isinstance(data, dict):
            if self._is_job_posting(data):
                items.append(data)
            elif isinstance(data.get('@graph'), list):
                for entry in data['@graph']:
                    items.extend(self._flatten_jsonld(entry, depth + 1))
            elif isinstance(data.get('itemListElement'), list):
                for element in data['itemListElement']:
                    if isinstance(element, dict) and isinstance(element.get('item'), dict):
                        items.extend(self._flatten_jsonld(element['item'], depth + 1))
                    else:
                        items.extend(self._flatten_jsonld(element, depth + 1))

        return items

    def _is_job_posting(self, item: Dict) -> bool:
        """Check if JSON-LD item is a JobPosting."""
        item_type = item.get('@type', '')
        if isinstance(item_type, str):
            return 'JobPosting' in item_type
        elif isinstance(item_type, list):
            return any('JobPosting' in str(t) for t in item_type)
        return False
