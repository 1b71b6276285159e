"""
Pagination for search result listings.
"""
import logging
from typing import Optional
from urllib.parse import urlparse, parse_qsl, urlencode, urlunparse

from bs4 import BeautifulSoup, Tag

from core.models import PageRequest

logger = logging.getLogger(__name__)

# "Next" controls, most specific first
NEXT_SELECTORS = (
    'button[aria-label="Next"]',
    '[data-test="pagination-next"]',
    '[data-ev-label="pagination_next_page"]',
    'a[aria-label="Next"]',
    '[aria-label="Next page"]',
    'a[rel="next"]',
    'li.next > a',
    'button:-soup-contains("Next")',
)


def is_disabled(control: Tag) -> bool:
    """True if a pagination control is disabled or hidden."""
    for element in (control, control.parent):
        if element is None or not isinstance(element, Tag):
            continue
        if element.has_attr('disabled') or element.has_attr('hidden'):
            return True
        if str(element.get('aria-disabled', '')).lower() == 'true':
            return True
        classes = element.get('class') or []
        if any('disabled' in c.lower() for c in classes):
            return True
        style = str(element.get('style', '')).replace(' ', '').lower()
        if 'display:none' in style or 'visibility:hidden' in style:
            return True
    return False


def set_query_param(url: str, name: str, value) -> str:
    """Return ``url`` with query parameter ``name`` set to ``value``."""
    parsed = urlparse(url)
    params = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k != name]
    params.append((name, str(value)))
    return urlunparse(parsed._replace(query=urlencode(params)))


class PaginationController:
    """Decides whether and where to go after a listing page."""

    def __init__(self, max_pages: int = 20, results_wanted: int = 100, mode: str = "page",
                 page_param: str = "page", offset_param: str = "offset", page_size: int = 10):
        self.max_pages = max_pages
        self.results_wanted = results_wanted
        self.mode = mode
        self.page_param = page_param
        self.offset_param = offset_param
        self.page_size = page_size

    @classmethod
    def from_config(cls, config) -> "PaginationController":
        return cls(
            max_pages=config.max_pages,
            results_wanted=config.results_wanted,
            mode=config.pagination_mode,
            page_param=config.page_param,
            offset_param=config.offset_param,
            page_size=config.page_size,
        )

    def find_next_control(self, soup: BeautifulSoup) -> Optional[Tag]:
        """First enabled next control, or None."""
        for selector in NEXT_SELECTORS:
            for control in soup.select(selector):
                if not is_disabled(control):
                    return control
        return None

    def next_url(self, url: str, next_page: int) -> str:
        if self.mode == "offset":
            return set_query_param(url, self.offset_param, (next_page - 1) * self.page_size)
        return set_query_param(url, self.page_param, next_page)

    def next_request(self, soup: BeautifulSoup, request: PageRequest, saved: int = 0) -> Optional[PageRequest]:
        """
        Build the request for the page after ``request``.

        Args:
            soup: Parsed DOM of the current page
            request: The request that produced it
            saved: Records saved so far in this run

        Returns:
            PageRequest, or None when the cap or page limit is reached or there
            is no enabled next control
        """
        if saved >= self.results_wanted:
            logger.debug(f"[pagination] Result cap {self.results_wanted} reached")
            return None
        if request.page >= self.max_pages:
            logger.info(f"[pagination] Reached max pages ({self.max_pages})")
            return None
        if self.find_next_control(soup) is None:
            logger.info(f"[pagination] No enabled next control on page {request.page}")
            return None

        next_page = request.page + 1
        url = self.next_url(request.url, next_page)
        logger.debug(f"[pagination] Next page {next_page}: {url}")
        return PageRequest(url=url, page=next_page)
