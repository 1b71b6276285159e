"""
Run configuration.

A run is configured from an actor-style input mapping (``keyword``,
``startUrl``, ``results_wanted``, ...) and/or ``HARVESTER_*`` environment
variables. Missing or invalid numbers fall back to the defaults below;
structural mistakes raise ConfigurationError before any navigation.
"""
import math
import os
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode, urlparse

from core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://www.upwork.com"
SEARCH_PATH = "/nx/search/jobs/"

DEFAULT_RESULTS_WANTED = 100
DEFAULT_MAX_PAGES = 20
DEFAULT_MAX_CONCURRENCY = 1
DEFAULT_MAX_REQUEST_RETRIES = 5
DEFAULT_NAVIGATION_TIMEOUT_SECS = 90.0
DEFAULT_REQUEST_HANDLER_TIMEOUT_SECS = 180.0
DEFAULT_CHALLENGE_MAX_CYCLES = 6
DEFAULT_PAGE_SIZE = 10
DEFAULT_MAX_POOL_SIZE = 20
DEFAULT_MAX_SESSION_USAGE = 5
DEFAULT_MAX_CARDS = 100

PAGINATION_MODES = ("page", "offset")
TITLE_POLICIES = ("key", "keep")
PROXY_SCHEMES = ("http", "https", "socks5")

# Search filter values accepted in the input mapping
JOB_TYPE_PARAMS = {"hourly": "0", "fixed": "1"}
EXPERIENCE_PARAMS = {"entry": "1", "intermediate": "2", "expert": "3"}

ENV_PREFIX = "HARVESTER_"


def coerce_int(value: Any, default: int, minimum: int = 1, name: str = "value") -> int:
    """Parse an integer input, falling back to ``default`` when missing or invalid."""
    if value is None or value == "":
        return default
    try:
        parsed = float(value)
        if not math.isfinite(parsed):
            raise ValueError("not a finite number")
        number = int(parsed)
    except (TypeError, ValueError, OverflowError):
        logger.warning(f"[config] Invalid {name}={value!r}, using default {default}")
        return default
    if number < minimum:
        logger.warning(f"[config] {name}={number} below minimum, clamping to {minimum}")
        return minimum
    return number


def coerce_float(value: Any, default: float, minimum: float = 0.0, name: str = "value") -> float:
    if value is None or value == "":
        return default
    try:
        number = float(value)
        if not math.isfinite(number):
            raise ValueError("not a finite number")
    except (TypeError, ValueError, OverflowError):
        logger.warning(f"[config] Invalid {name}={value!r}, using default {default}")
        return default
    return max(minimum, number)


def coerce_bool(value: Any, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def build_search_url(
    keyword: Optional[str],
    base_url: str = DEFAULT_BASE_URL,
    location: Optional[str] = None,
    job_type: Optional[str] = None,
    experience_level: Optional[str] = None,
    hourly_rate_min: Optional[int] = None,
    hourly_rate_max: Optional[int] = None,
) -> str:
    """Build the first search results URL from keyword and filters."""
    params = {}
    if keyword and str(keyword).strip():
        params["q"] = str(keyword).strip()
    if location:
        params["location"] = location
    if job_type and job_type.lower() in JOB_TYPE_PARAMS:
        params["t"] = JOB_TYPE_PARAMS[job_type.lower()]
    if experience_level and experience_level.lower() in EXPERIENCE_PARAMS:
        params["contractor_tier"] = EXPERIENCE_PARAMS[experience_level.lower()]
    if hourly_rate_min is not None or hourly_rate_max is not None:
        low = hourly_rate_min if hourly_rate_min is not None else ""
        high = hourly_rate_max if hourly_rate_max is not None else ""
        params["hourly_rate"] = f"{low}-{high}"

    url = base_url.rstrip("/") + SEARCH_PATH
    if params:
        url += "?" + urlencode(params)
    return url


@dataclass
class CrawlConfig:
    """Everything a crawl run needs to know."""

    # Seed
    keyword: str = "web scraping"
    start_url: Optional[str] = None
    location: Optional[str] = None
    job_type: Optional[str] = None
    experience_level: Optional[str] = None
    hourly_rate_min: Optional[int] = None
    hourly_rate_max: Optional[int] = None

    # Limits
    results_wanted: int = DEFAULT_RESULTS_WANTED
    max_pages: int = DEFAULT_MAX_PAGES

    # Concurrency and retries
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    max_request_retries: int = DEFAULT_MAX_REQUEST_RETRIES
    navigation_timeout_secs: float = DEFAULT_NAVIGATION_TIMEOUT_SECS
    request_handler_timeout_secs: float = DEFAULT_REQUEST_HANDLER_TIMEOUT_SECS

    # Challenge handling
    challenge_max_cycles: int = DEFAULT_CHALLENGE_MAX_CYCLES
    challenge_delay_ms: Tuple[int, int] = (1000, 3000)
    humanize: bool = True

    # Pagination
    pagination_mode: str = "page"
    page_param: str = "page"
    offset_param: str = "offset"
    page_size: int = DEFAULT_PAGE_SIZE
    next_page_delay_ms: Tuple[int, int] = (3000, 6000)

    # Extraction and normalization
    max_cards: int = DEFAULT_MAX_CARDS
    title_policy: str = "key"
    base_url: str = DEFAULT_BASE_URL
    source_tag: str = "upwork"
    settle_delay_ms: Tuple[int, int] = (2000, 4000)

    # Sessions and browser
    proxy_urls: List[str] = field(default_factory=list)
    max_pool_size: int = DEFAULT_MAX_POOL_SIZE
    max_session_usage: int = DEFAULT_MAX_SESSION_USAGE
    headless: bool = True

    # Outputs
    output_path: Optional[str] = "output/jobs.jsonl"
    snapshot_dir: Optional[str] = "snapshots"

    @property
    def seed_url(self) -> str:
        if self.start_url:
            return self.start_url
        return build_search_url(
            self.keyword,
            base_url=self.base_url,
            location=self.location,
            job_type=self.job_type,
            experience_level=self.experience_level,
            hourly_rate_min=self.hourly_rate_min,
            hourly_rate_max=self.hourly_rate_max,
        )

    def validate(self) -> "CrawlConfig":
        """Raise ConfigurationError for settings a run cannot start with."""
        parsed = urlparse(self.seed_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(f"Seed URL must be an absolute http(s) URL: {self.seed_url!r}")
        if self.pagination_mode not in PAGINATION_MODES:
            raise ConfigurationError(
                f"Unknown pagination mode {self.pagination_mode!r} (expected one of {PAGINATION_MODES})"
            )
        if self.title_policy not in TITLE_POLICIES:
            raise ConfigurationError(
                f"Unknown title dedup policy {self.title_policy!r} (expected one of {TITLE_POLICIES})"
            )
        for proxy in self.proxy_urls:
            parsed_proxy = urlparse(proxy)
            if parsed_proxy.scheme not in PROXY_SCHEMES or not parsed_proxy.netloc:
                raise ConfigurationError(f"Proxy URL must look like scheme://host:port: {proxy!r}")
        return self

    @classmethod
    def from_input(cls, data: Optional[Dict[str, Any]] = None) -> "CrawlConfig":
        """
        Build a config from an input mapping.

        Accepts both the actor-style camelCase keys (``startUrl``,
        ``proxyConfiguration``) and snake_case keys.
        """
        data = dict(data or {})

        def pick(*keys):
            for key in keys:
                if key in data and data[key] not in (None, ""):
                    return data[key]
            return None

        proxy_conf = pick("proxyConfiguration", "proxy_configuration") or {}
        proxy_urls = pick("proxy_urls") or proxy_conf.get("proxyUrls") or []
        if isinstance(proxy_urls, str):
            proxy_urls = [p.strip() for p in proxy_urls.split(",") if p.strip()]

        rate_min = pick("hourlyRateMin", "hourly_rate_min")
        rate_max = pick("hourlyRateMax", "hourly_rate_max")

        config = cls(
            keyword=str(pick("keyword") or cls.keyword),
            start_url=pick("startUrl", "start_url"),
            location=pick("location"),
            job_type=pick("jobType", "job_type"),
            experience_level=pick("experienceLevel", "experience_level"),
            hourly_rate_min=coerce_int(rate_min, None, minimum=0, name="hourlyRateMin") if rate_min is not None else None,
            hourly_rate_max=coerce_int(rate_max, None, minimum=0, name="hourlyRateMax") if rate_max is not None else None,
            results_wanted=coerce_int(pick("results_wanted", "resultsWanted"), DEFAULT_RESULTS_WANTED, name="results_wanted"),
            max_pages=coerce_int(pick("max_pages", "maxPages"), DEFAULT_MAX_PAGES, name="max_pages"),
            max_concurrency=coerce_int(pick("max_concurrency", "maxConcurrency"), DEFAULT_MAX_CONCURRENCY, name="max_concurrency"),
            max_request_retries=coerce_int(
                pick("max_request_retries", "maxRequestRetries"), DEFAULT_MAX_REQUEST_RETRIES,
                minimum=0, name="max_request_retries",
            ),
            navigation_timeout_secs=coerce_float(
                pick("navigation_timeout_secs", "navigationTimeoutSecs"), DEFAULT_NAVIGATION_TIMEOUT_SECS,
                minimum=1.0, name="navigation_timeout_secs",
            ),
            request_handler_timeout_secs=coerce_float(
                pick("request_handler_timeout_secs", "requestHandlerTimeoutSecs"), DEFAULT_REQUEST_HANDLER_TIMEOUT_SECS,
                minimum=1.0, name="request_handler_timeout_secs",
            ),
            challenge_max_cycles=coerce_int(
                pick("challenge_max_cycles", "challengeMaxCycles"), DEFAULT_CHALLENGE_MAX_CYCLES,
                name="challenge_max_cycles",
            ),
            humanize=coerce_bool(pick("humanize"), True),
            pagination_mode=str(pick("pagination_mode", "paginationMode") or "page").lower(),
            page_param=str(pick("page_param", "pageParam") or "page"),
            offset_param=str(pick("offset_param", "offsetParam") or "offset"),
            page_size=coerce_int(pick("page_size", "pageSize"), DEFAULT_PAGE_SIZE, name="page_size"),
            max_cards=coerce_int(pick("max_cards", "maxCards"), DEFAULT_MAX_CARDS, name="max_cards"),
            title_policy=str(pick("title_policy", "titlePolicy") or "key").lower(),
            base_url=str(pick("base_url", "baseUrl") or DEFAULT_BASE_URL),
            source_tag=str(pick("source_tag", "sourceTag") or "upwork"),
            proxy_urls=list(proxy_urls),
            max_pool_size=coerce_int(pick("max_pool_size", "maxPoolSize"), DEFAULT_MAX_POOL_SIZE, name="max_pool_size"),
            max_session_usage=coerce_int(
                pick("max_session_usage", "maxSessionUsage"), DEFAULT_MAX_SESSION_USAGE, name="max_session_usage",
            ),
            headless=coerce_bool(pick("headless"), True),
            output_path=pick("output_path", "outputPath") or "output/jobs.jsonl",
            snapshot_dir=pick("snapshot_dir", "snapshotDir") or "snapshots",
        )
        return config

    @classmethod
    def from_env(cls, overrides: Optional[Dict[str, Any]] = None) -> "CrawlConfig":
        """Build a config from HARVESTER_* environment variables plus overrides."""
        data: Dict[str, Any] = {}
        for key in (
            "keyword", "start_url", "location", "job_type", "experience_level",
            "hourly_rate_min", "hourly_rate_max", "results_wanted", "max_pages",
            "max_concurrency", "max_request_retries", "navigation_timeout_secs",
            "request_handler_timeout_secs", "challenge_max_cycles", "humanize",
            "pagination_mode", "page_param", "offset_param", "page_size",
            "max_cards", "title_policy", "base_url", "source_tag", "proxy_urls",
            "max_pool_size", "max_session_usage", "headless", "output_path",
            "snapshot_dir",
        ):
            value = os.getenv(ENV_PREFIX + key.upper())
            if value is not None and value != "":
                data[key] = value
        if overrides:
            data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_input(data)
