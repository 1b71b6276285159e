"""
Shared fixtures: an in-memory site and browser doubles for crawler tests.
"""
import asyncio
import re
from typing import Callable, Dict, List, Optional, Union

import pytest
from bs4 import BeautifulSoup

from core.config import CrawlConfig
from core.errors import NavigationError, SessionUnavailableError
from core.models import SessionQuality


CHALLENGE_HTML = """
<html><head><title>Just a moment...</title></head>
<body><div id="challenge-running">Checking your browser before accessing the site.</div>
<iframe src="https://challenges.cloudflare.com/turnstile/v0/widget"></iframe></body></html>
"""

BLOCKED_HTML = "<html><head><title>Access Denied</title></head><body>Access Denied</body></html>"


def ld_json_page(*titles: str, next_control: bool = False) -> str:
    """Search page with one ld+json block holding a JobPosting per title."""
    postings = ",".join(
        '{"@type": "JobPosting", "title": "%s", "description": "<p>About %s</p>"}' % (t, t)
        for t in titles
    )
    nav = '<button aria-label="Next">Next</button>' if next_control else ''
    return f"""
    <html><head><title>Jobs</title>
    <script type="application/ld+json">[{postings}]</script>
    </head><body><main>{nav}</main></body></html>
    """


def card_page(cards: List[Dict], next_control: bool = False) -> str:
    """Search page with DOM job cards. A card without 'title' renders untitled."""
    parts = []
    for card in cards:
        title = card.get('title')
        job_id = card.get('id')
        heading = f'<h2><a href="/jobs/Job_~{job_id}/">{title}</a></h2>' if title else ''
        parts.append(f"""
        <article data-test="JobTile">
          {heading}
          <p data-test="job-description">{card.get('description', '')}</p>
          <span data-test="budget">{card.get('budget', '')}</span>
        </article>
        """)
    nav = '<button aria-label="Next">Next</button>' if next_control else ''
    return f"<html><head><title>Jobs</title></head><body>{''.join(parts)}{nav}</body></html>"


class FakeResponse:
    def __init__(self, url: str, status: int):
        self.url = url
        self.status = status


class FakeSite:
    """
    Serves HTML by URL.

    ``pages`` maps a URL to HTML, a list of HTML (one per visit, last one
    repeats) or a callable ``(url, visit_number) -> html``. A value that is
    an exception instance is raised from navigate().
    """

    def __init__(self, pages: Optional[Dict[str, Union[str, list, Callable]]] = None,
                 default: Optional[Callable] = None, status: int = 200, hang_secs: float = 0):
        self.pages = pages or {}
        self.default = default
        self.status = status
        self.hang_secs = hang_secs
        self.visits: List[str] = []

    def render(self, url: str):
        visit = self.visits.count(url)
        value = self.pages.get(url, self.default)
        if value is None:
            raise NavigationError(url, "Not found", 404)
        if callable(value):
            value = value(url, visit)
        if isinstance(value, list):
            value = value[min(visit - 1, len(value) - 1)]
        if isinstance(value, Exception):
            raise value
        return value


class FakePage:
    """BrowserPage double. ``idle_sequence`` swaps content on each wait_for_idle."""

    def __init__(self, site: Optional[FakeSite] = None, html: str = "",
                 idle_sequence: Optional[List[str]] = None, clickable: Optional[List[str]] = None,
                 evaluate_result=None, session=None):
        self.site = site
        self.session = session
        self.html = html
        self._url = "https://example.com/"
        self.idle_sequence = list(idle_sequence or [])
        self.clickable = set(clickable or [])
        self.evaluate_result = evaluate_result
        self.clicks: List[tuple] = []
        self.waits: List[float] = []
        self.idle_waits = 0
        self.pointer_moves = 0
        self.scrolls = 0
        self.closed = False
        self.response_handlers = []

    @property
    def url(self) -> str:
        return self._url

    async def navigate(self, url: str, timeout_secs: Optional[float] = None) -> Optional[int]:
        self.site.visits.append(url)
        self._url = url
        if self.site.hang_secs:
            await asyncio.sleep(self.site.hang_secs)
        self.html = self.site.render(url)
        for handler in self.response_handlers:
            handler(FakeResponse(url, self.site.status))
        return self.site.status

    async def content(self) -> str:
        return self.html

    async def title(self) -> str:
        match = re.search(r'<title>(.*?)</title>', self.html, re.S)
        return match.group(1).strip() if match else ""

    async def evaluate(self, script: str, arg=None):
        return self.evaluate_result

    async def query(self, selector: str) -> bool:
        return BeautifulSoup(self.html, 'lxml').select_one(selector) is not None

    async def click(self, selector: str, frame_pattern: Optional[str] = None, timeout_ms: int = 3000) -> bool:
        self.clicks.append((selector, frame_pattern))
        return selector in self.clickable

    async def move_pointer(self, x: float, y: float):
        self.pointer_moves += 1

    async def scroll_by(self, dy: int):
        self.scrolls += 1

    async def wait(self, ms: float):
        self.waits.append(ms)

    async def wait_for_idle(self, timeout_ms: int = 10000) -> bool:
        self.idle_waits += 1
        if self.idle_sequence:
            self.html = self.idle_sequence.pop(0)
        return True

    async def viewport(self):
        return 1920, 1080

    def on_response(self, handler):
        self.response_handlers.append(handler)

    async def close(self):
        self.closed = True
        if self.session is not None:
            self.session.open_pages -= 1


class FakeSession:
    def __init__(self, site: FakeSite, max_usage: int = 5):
        self.site = site
        self.max_usage = max_usage
        self.usage_count = 0
        self.in_flight = 0
        self.open_pages = 0
        self.peak_open_pages = 0
        self.quality = SessionQuality.UNKNOWN

    @property
    def is_usable(self) -> bool:
        return self.quality != SessionQuality.BAD and self.usage_count < self.max_usage

    def mark_good(self):
        if self.quality != SessionQuality.BAD:
            self.quality = SessionQuality.GOOD

    def mark_bad(self):
        self.quality = SessionQuality.BAD

    async def new_page(self) -> FakePage:
        self.open_pages += 1
        self.peak_open_pages = max(self.peak_open_pages, self.open_pages)
        return FakePage(self.site, session=self)


class FakePool:
    """BrowserPool double leasing idle FakeSessions over one FakeSite."""

    def __init__(self, site: FakeSite, fail_acquire: bool = False):
        self.site = site
        self.fail_acquire = fail_acquire
        self.sessions: List[FakeSession] = []
        self.leased = 0
        self.peak_leased = 0
        self.created: List[FakeSession] = []
        self.started = False
        self.closed = False

    async def start(self):
        self.started = True

    async def acquire(self) -> FakeSession:
        if self.fail_acquire:
            raise SessionUnavailableError("no browser")
        idle = [s for s in self.sessions if s.is_usable and s.in_flight == 0]
        if idle:
            session = idle[0]
        else:
            session = FakeSession(self.site)
            self.sessions.append(session)
            self.created.append(session)
        session.usage_count += 1
        session.in_flight += 1
        self.leased += 1
        self.peak_leased = max(self.peak_leased, self.leased)
        return session

    async def release(self, session: FakeSession):
        session.in_flight -= 1
        self.leased -= 1
        if not session.is_usable and session.in_flight == 0 and session in self.sessions:
            self.sessions.remove(session)

    async def close(self):
        self.closed = True


@pytest.fixture
def fast_config():
    """Config with all delays zeroed and no disk output."""
    def _make(**overrides) -> CrawlConfig:
        values = dict(
            start_url="https://example.com/search?q=test",
            results_wanted=5,
            max_pages=20,
            humanize=False,
            settle_delay_ms=(0, 0),
            next_page_delay_ms=(0, 0),
            challenge_delay_ms=(0, 0),
            output_path=None,
            snapshot_dir=None,
        )
        values.update(overrides)
        return CrawlConfig(**values)
    return _make
