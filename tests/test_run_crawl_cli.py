"""
Unit tests for the run_crawl command line entry point.
Tests argument parsing, input file merging and exit codes.
"""
import json
import os
import pytest
from unittest.mock import patch
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "apps" / "backend"))

from scripts.run_crawl import build_config, main, parse_args


def test_flags_override_input_file(tmp_path):
    """Flags win over the JSON input file."""
    input_file = tmp_path / "input.json"
    input_file.write_text(json.dumps({"keyword": "from file", "maxPages": 4, "results_wanted": 30}))

    args = parse_args(["--input", str(input_file), "--keyword", "from flag", "--headful"])
    config = build_config(args)

    assert config.keyword == "from flag"
    assert config.max_pages == 4
    assert config.results_wanted == 30
    assert config.headless is False


def test_repeatable_proxy_flag():
    """--proxy may be given several times."""
    args = parse_args(["--proxy", "http://a.test:1", "--proxy", "http://b.test:2"])
    assert build_config(args).proxy_urls == ["http://a.test:1", "http://b.test:2"]


def test_invalid_config_exit_code():
    """A structural config error exits with 2 before any crawl."""
    with patch("scripts.run_crawl.CrawlOrchestrator") as orchestrator:
        code = main(["--start-url", "ftp://example.com/"])
    assert code == 2
    orchestrator.assert_not_called()


@pytest.mark.parametrize("content", [None, "{not json", "[1, 2]"])
def test_unreadable_input_file_exit_code(tmp_path, content):
    """A missing, malformed or non-object input file is a config error."""
    input_file = tmp_path / "input.json"
    if content is not None:
        input_file.write_text(content)

    with patch("scripts.run_crawl.CrawlOrchestrator") as orchestrator:
        code = main(["--input", str(input_file)])
    assert code == 2
    orchestrator.assert_not_called()


def test_env_defaults_used():
    """HARVESTER_* variables feed the config."""
    with patch.dict(os.environ, {"HARVESTER_MAX_CONCURRENCY": "3"}):
        config = build_config(parse_args([]))
    assert config.max_concurrency == 3
