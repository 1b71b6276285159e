#!/usr/bin/env python3
"""
Run one crawl from the command line.

Settings come from HARVESTER_* environment variables (and .env), then an
optional JSON input file, then command-line flags.

Usage:
    python scripts/run_crawl.py --keyword "web scraping" --results-wanted 50
    python scripts/run_crawl.py --input input.json --output output/jobs.jsonl
"""
import os
import sys
import json
import asyncio
import logging
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from core.config import CrawlConfig
from core.errors import ConfigurationError, SessionUnavailableError
from orchestrator import CrawlOrchestrator

logger = logging.getLogger("run_crawl")


def parse_args(argv=None):
    import argparse

    parser = argparse.ArgumentParser(description="Crawl a job search listing into JSONL")
    parser.add_argument("--input", help="JSON input file (camelCase or snake_case keys)")
    parser.add_argument("--keyword", help="Search keyword")
    parser.add_argument("--start-url", dest="start_url", help="Seed URL (overrides keyword)")
    parser.add_argument("--results-wanted", dest="results_wanted", type=int, help="Stop after this many records")
    parser.add_argument("--max-pages", dest="max_pages", type=int, help="Maximum listing pages to visit")
    parser.add_argument("--concurrency", dest="max_concurrency", type=int, help="Concurrent pages")
    parser.add_argument("--proxy", dest="proxy_urls", action="append", help="Proxy URL (repeatable)")
    parser.add_argument("--output", dest="output_path", help="JSONL output path")
    parser.add_argument("--snapshot-dir", dest="snapshot_dir", help="Diagnostic snapshot directory")
    parser.add_argument("--headful", action="store_true", help="Show the browser window")
    parser.add_argument("--log-level", default=os.getenv("HARVESTER_LOG_LEVEL", "INFO"))
    return parser.parse_args(argv)


def build_config(args) -> CrawlConfig:
    overrides = {}
    if args.input:
        try:
            with open(args.input, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read input file {args.input!r}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Input file {args.input!r} must hold a JSON object")
        overrides.update(data)
    for key in ("keyword", "start_url", "results_wanted", "max_pages", "max_concurrency",
                "proxy_urls", "output_path", "snapshot_dir"):
        value = getattr(args, key)
        if value is not None:
            overrides[key] = value
    if args.headful:
        overrides["headless"] = False
    return CrawlConfig.from_env(overrides)


def main(argv=None) -> int:
    load_dotenv()
    args = parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = build_config(args).validate()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    try:
        stats = asyncio.run(CrawlOrchestrator(config).run())
    except SessionUnavailableError as e:
        logger.error(f"Browser unavailable: {e}")
        return 1

    print(json.dumps(stats.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
