"""
DOM heuristic extractor.

Last-resort strategy: find repeated job cards in the rendered DOM and read
each field through an ordered list of CSS selectors. Produces raw nodes in
the same shape the embedded state uses, so the normalizer treats both alike.
"""

import re
import logging
from typing import Dict, List, Optional, Sequence
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from .base import ExtractionStrategy, PageContext

logger = logging.getLogger(__name__)

# Card container candidates, most specific first
CARD_SELECTORS = (
    'article[data-test="JobTile"]',
    '[data-test="job-tile"]',
    'article.job-tile',
    'section[class*="job-tile"]',
    '[class*="JobSearchCard"]',
    'article',
)

FIELD_SELECTORS: Dict[str, Sequence[str]] = {
    'title': ('h2 a', 'h3 a', '[data-test="job-title"]', '[class*="job-title"]', 'a[class*="title"]'),
    'link': ('a[href*="/jobs/"]',),
    'description': (
        '[data-test="job-description"]', '[data-test="UpCLineClamp JobDescription"]',
        '[class*="description"]', 'p[class*="text"]', 'span[class*="description"]',
    ),
    'budget': (
        '[data-test="budget"]', '[data-test="job-type-label"]', '[class*="budget"]',
        '[data-test="is-fixed-price"]', '[class*="rate"]',
    ),
    'skills': ('[data-test="token"]', '[class*="skill"]', 'span[class*="tag"]', 'a[class*="skill"]'),
    'experience': ('[data-test="experience-level"]', '[data-test="experience"]', '[class*="experience"]'),
    'job_type': ('[data-test="job-type"]', '[data-test="contract-type"]', '[class*="contract-type"]'),
    'duration': ('[data-test="duration"]', '[data-test="duration-label"]', '[class*="duration"]'),
    'posted': ('time', '[data-test="posted-on"]', '[class*="posted"]'),
    'client_location': ('[data-test="client-country"]', '[data-test="location"]', '[class*="client-location"]'),
    'client_spent': ('[data-test="client-spendings"]', '[data-test="total-spent"]', '[class*="spent"]'),
    'client_rating': ('[data-test="client-rating"]', '[class*="rating"]'),
    'client_verified': ('[data-test="payment-verified"]', '[data-test="payment-verification-status"]'),
    'proposals': ('[data-test="proposals"]', '[data-test="proposals-tier"]', '[class*="proposal"]'),
}

DESCRIPTION_LIMIT = 500
MAX_CARD_SKILLS = 10

JOB_ID_PATTERNS = (
    re.compile(r'~([a-f0-9]+)'),
    re.compile(r'/jobs/([^/?#]+)'),
)


def extract_job_id(href: Optional[str]) -> Optional[str]:
    """Pull the job id out of a listing link; None rather than a made-up id."""
    if not href:
        return None
    for pattern in JOB_ID_PATTERNS:
        match = pattern.search(href)
        if match:
            return match.group(1)
    return None


def _text(element: Optional[Tag]) -> Optional[str]:
    if element is None:
        return None
    text = re.sub(r'\s+', ' ', element.get_text(' ')).strip()
    return text or None


def _first(card: Tag, selectors: Sequence[str]) -> Optional[Tag]:
    for selector in selectors:
        element = card.select_one(selector)
        if element is not None:
            return element
    return None


def _first_text(card: Tag, selectors: Sequence[str]) -> Optional[str]:
    for selector in selectors:
        text = _text(card.select_one(selector))
        if text:
            return text
    return None


class DomHeuristicStrategy(ExtractionStrategy):
    """Extracts jobs from repeated card elements in the rendered DOM."""

    name = "dom-heuristic"

    def __init__(self, max_cards: int = 100, base_url: str = "https://www.upwork.com"):
        super().__init__()
        self.max_cards = max_cards
        self.base_url = base_url

    async def extract(self, context: PageContext) -> List[Dict]:
        cards = self.find_cards(context.soup)
        if not cards:
            return []

        nodes = []
        for index, card in enumerate(cards):
            try:
                node = self.parse_card(card, context.url)
            except Exception as e:
                self.logger.debug(f"[heuristics] Skipping card {index} on {context.url}: {e}")
                continue
            if node:
                nodes.append(node)

        logger.info(f"[heuristics] Parsed {len(nodes)}/{len(cards)} cards on {context.url}")
        return nodes

    def find_cards(self, soup: BeautifulSoup) -> List[Tag]:
        """Return cards from the first selector with a plausible match count."""
        for selector in CARD_SELECTORS:
            cards = soup.select(selector)
            if 0 < len(cards) <= self.max_cards:
                logger.debug(f"[heuristics] Selector {selector!r} matched {len(cards)} cards")
                return cards
            if cards:
                logger.debug(f"[heuristics] Selector {selector!r} matched {len(cards)} cards, over limit")
        return []

    def parse_card(self, card: Tag, page_url: str) -> Optional[Dict]:
        """
        Build a raw node from one card.

        Returns None when the card has no title.
        """
        title = _first_text(card, FIELD_SELECTORS['title'])
        if not title:
            return None

        link = _first(card, FIELD_SELECTORS['link'])
        if link is None:
            title_el = _first(card, FIELD_SELECTORS['title'])
            if title_el is not None and title_el.name == 'a':
                link = title_el
        href = link.get('href') if link is not None else None
        url = urljoin(page_url or self.base_url, href) if href else None
        job_id = extract_job_id(href)

        node: Dict = {'title': title}
        if job_id:
            node['id'] = job_id
            node['ciphertext'] = job_id
        if url:
            node['url'] = url

        description = _first_text(card, FIELD_SELECTORS['description'])
        if description:
            node['description'] = description[:DESCRIPTION_LIMIT]

        budget = _first_text(card, FIELD_SELECTORS['budget'])
        if budget:
            if re.search(r'hourly|/hr', budget, re.IGNORECASE):
                node['hourlyBudgetText'] = budget
                node.setdefault('jobType', 'Hourly')
            else:
                node['budget'] = budget

        skills = []
        for selector in FIELD_SELECTORS['skills']:
            for element in card.select(selector):
                text = _text(element)
                if text and text not in skills:
                    skills.append(text)
            if skills:
                break
        if skills:
            node['skills'] = [{'prettyName': s} for s in skills[:MAX_CARD_SKILLS]]

        experience = _first_text(card, FIELD_SELECTORS['experience'])
        if experience:
            node['experienceLevel'] = experience

        job_type = _first_text(card, FIELD_SELECTORS['job_type'])
        if job_type:
            node['jobType'] = job_type

        duration = _first_text(card, FIELD_SELECTORS['duration'])
        if duration:
            node['duration'] = duration

        posted = _first(card, FIELD_SELECTORS['posted'])
        if posted is not None:
            node['createdOn'] = posted.get('datetime') or _text(posted)

        proposals = _first_text(card, FIELD_SELECTORS['proposals'])
        if proposals:
            digits = re.search(r'\d+', proposals)
            node['totalApplicants'] = int(digits.group(0)) if digits else proposals

        client = self._parse_client(card)
        if client:
            node['client'] = client

        return node

    def _parse_client(self, card: Tag) -> Dict:
        client: Dict = {}
        location = _first_text(card, FIELD_SELECTORS['client_location'])
        if location:
            client['location'] = {'country': location}
        spent = _first_text(card, FIELD_SELECTORS['client_spent'])
        if spent:
            client['totalSpent'] = spent.replace(' spent', '').strip()
        rating = _first_text(card, FIELD_SELECTORS['client_rating'])
        if rating:
            client['totalFeedback'] = rating
        verified = _first(card, FIELD_SELECTORS['client_verified'])
        if verified is not None:
            text = (_text(verified) or '').lower()
            client['paymentVerified'] = 'unverified' not in text and 'not verified' not in text
        return client
