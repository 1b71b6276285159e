"""
Tests for run configuration loading and validation.
"""
import json
import os
from unittest.mock import patch

import pytest

from core.config import CrawlConfig, build_search_url, coerce_float, coerce_int
from core.errors import ConfigurationError


class TestDefaults:

    def test_defaults(self):
        config = CrawlConfig()
        assert config.keyword == "web scraping"
        assert config.results_wanted == 100
        assert config.max_pages == 20
        assert config.max_concurrency == 1
        assert config.max_request_retries == 5
        assert config.navigation_timeout_secs == 90.0
        assert config.request_handler_timeout_secs == 180.0
        assert config.challenge_max_cycles == 6
        assert config.max_pool_size == 20
        assert config.max_session_usage == 5
        assert config.seed_url == "https://www.upwork.com/nx/search/jobs/?q=web+scraping"

    def test_search_url_filters(self):
        url = build_search_url("python", job_type="hourly", experience_level="Expert",
                               hourly_rate_min=20, hourly_rate_max=50)
        assert "q=python" in url
        assert "t=0" in url
        assert "contractor_tier=3" in url
        assert "hourly_rate=20-50" in url


class TestFromInput:

    def test_camel_case_input(self):
        config = CrawlConfig.from_input({
            "startUrl": "https://example.com/search?q=x",
            "results_wanted": "25",
            "maxPages": 3,
            "proxyConfiguration": {"proxyUrls": ["http://user:pw@proxy:8000"]},
        })
        assert config.seed_url == "https://example.com/search?q=x"
        assert config.results_wanted == 25
        assert config.max_pages == 3
        assert config.proxy_urls == ["http://user:pw@proxy:8000"]

    def test_invalid_numbers_fall_back(self):
        config = CrawlConfig.from_input({"results_wanted": "lots", "max_pages": ""})
        assert config.results_wanted == 100
        assert config.max_pages == 20

    @pytest.mark.parametrize("value", ["inf", "-Infinity", "nan", float("inf"), 10 ** 400])
    def test_non_finite_numbers_fall_back(self, value):
        assert coerce_int(value, 100, name="results_wanted") == 100
        assert coerce_float(value, 90.0, minimum=1.0, name="navigation_timeout_secs") == 90.0

    def test_infinite_json_input_falls_back(self):
        data = json.loads('{"results_wanted": Infinity, "navigation_timeout_secs": NaN}')
        config = CrawlConfig.from_input(data)
        assert config.results_wanted == 100
        assert config.navigation_timeout_secs == 90.0

    def test_below_minimum_clamped(self):
        assert coerce_int("0", 5, minimum=1) == 1

    def test_proxy_string_split(self):
        config = CrawlConfig.from_input({"proxy_urls": "http://a:1, http://b:2"})
        assert config.proxy_urls == ["http://a:1", "http://b:2"]


class TestValidate:

    @pytest.mark.parametrize("overrides", [
        {"start_url": "ftp://example.com/jobs"},
        {"start_url": "/relative/path"},
        {"pagination_mode": "cursor"},
        {"title_policy": "merge"},
        {"proxy_urls": ["proxy.example.com:8000"]},
    ])
    def test_structural_errors(self, overrides):
        with pytest.raises(ConfigurationError):
            CrawlConfig(**overrides).validate()

    def test_valid_returns_self(self):
        config = CrawlConfig(start_url="https://example.com/search")
        assert config.validate() is config


class TestFromEnv:

    def test_env_prefix(self):
        env = {
            "HARVESTER_KEYWORD": "data entry",
            "HARVESTER_RESULTS_WANTED": "7",
            "HARVESTER_HEADLESS": "false",
            "HARVESTER_PAGINATION_MODE": "OFFSET",
        }
        with patch.dict(os.environ, env):
            config = CrawlConfig.from_env()
        assert config.keyword == "data entry"
        assert config.results_wanted == 7
        assert config.headless is False
        assert config.pagination_mode == "offset"

    def test_overrides_win(self):
        with patch.dict(os.environ, {"HARVESTER_MAX_PAGES": "9"}):
            config = CrawlConfig.from_env({"max_pages": 2})
        assert config.max_pages == 2
