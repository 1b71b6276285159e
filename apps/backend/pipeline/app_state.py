"""
Embedded application state extractor.

Single-page search apps ship their first page of results inside inline
scripts: a hydration payload (``__NEXT_DATA__``), a global assignment
(``window.__INITIAL_STATE__ = {...}``) or a bare ``"jobs":[...]`` fragment
inside a larger bundle. This strategy cuts the JSON out of those scripts and
looks for a job array under the key names the site has used over time.
"""

import json
import logging
import re
from typing import Any, Dict, Iterator, List, Optional

from .base import ExtractionStrategy, PageContext

logger = logging.getLogger(__name__)

# Script ids / types that carry a whole JSON document
HYDRATION_SCRIPT_IDS = ('__NEXT_DATA__', '__NUXT_DATA__', '__APP_STATE__', 'initial-state')
HYDRATION_SCRIPT_TYPES = ('application/json',)

# window.X = {...}
GLOBAL_ASSIGNMENT = re.compile(
    r'(?:window\.|var\s+|let\s+|const\s+)?'
    r'(__INITIAL_STATE__|__INITIAL_DATA__|__NUXT__|__APOLLO_STATE__|__PRELOADED_STATE__|__NEXT_DATA__)'
    r'\s*=\s*'
)

# Bare fragments inside larger scripts, most specific first
FRAGMENT_PATTERNS = (
    re.compile(r'"searchResults"\s*:\s*(?=\{)'),
    re.compile(r'"jobSearchResults"\s*:\s*(?=[\[{])'),
    re.compile(r'"jobs"\s*:\s*(?=\[)'),
)

# Dotted paths to a job array, tried in order before the recursive search
JOB_ARRAY_PATHS = (
    'searchResults.jobs',
    'props.pageProps.jobs',
    'props.pageProps.searchResults.jobs',
    'data.jobs',
    'data.search.universalSearchNuxt.userJobSearchV1.results',
    'state.jobsSearch.jobs',
    'jobSearchResults.jobs',
    'jobs',
    'results',
)

JOB_ARRAY_KEYS = ('jobs', 'results', 'jobSearchResults', 'searchResults', 'jobTiles', 'items')
TITLE_KEYS = ('title', 'jobTitle')

MAX_SEARCH_DEPTH = 8

GLOBALS_SCRIPT = """() => {
    const w = window;
    const state = w.__INITIAL_STATE__ || w.__INITIAL_DATA__ || w.__NEXT_DATA__ || w.__NUXT__ || null;
    try { return state ? JSON.stringify(state) : null; } catch (e) { return null; }
}"""


def balanced_json(text: str, start: int) -> Optional[str]:
    """
    Return the JSON object/array literal starting at ``text[start]``.

    Brackets inside string literals are ignored. Returns None if the literal
    is not closed.
    """
    if start >= len(text) or text[start] not in '{[':
        return None
    closing = {'{': '}', '[': ']'}
    stack = [closing[text[start]]]
    in_string = False
    escaped = False
    for i in range(start + 1, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in '{[':
            stack.append(closing[ch])
        elif ch in '}]':
            if not stack or ch != stack[-1]:
                return None
            stack.pop()
            if not stack:
                return text[start:i + 1]
    return None


def _get_path(data: Any, path: str) -> Any:
    current = data
    for part in path.split('.'):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _looks_like_jobs(value: Any) -> bool:
    if not isinstance(value, list) or not value:
        return False
    dicts = [v for v in value if isinstance(v, dict)]
    if not dicts:
        return False
    return any(any(k in d for k in TITLE_KEYS) for d in dicts)


def find_job_array(data: Any, depth: int = 0) -> List[Dict]:
    """Locate a job array in a parsed state payload."""
    if depth == 0:
        if _looks_like_jobs(data):
            return [d for d in data if isinstance(d, dict)]
        for path in JOB_ARRAY_PATHS:
            value = _get_path(data, path)
            if _looks_like_jobs(value):
                return [d for d in value if isinstance(d, dict)]

    if depth > MAX_SEARCH_DEPTH:
        return []

    if isinstance(data, dict):
        for key in JOB_ARRAY_KEYS:
            value = data.get(key)
            if _looks_like_jobs(value):
                return [d for d in value if isinstance(d, dict)]
            if isinstance(value, dict) and _looks_like_jobs(value.get('jobs')):
                return [d for d in value['jobs'] if isinstance(d, dict)]
        for value in data.values():
            if isinstance(value, (dict, list)):
                found = find_job_array(value, depth + 1)
                if found:
                    return found
    elif isinstance(data, list):
        for value in data:
            if isinstance(value, (dict, list)):
                found = find_job_array(value, depth + 1)
                if found:
                    return found
    return []


class EmbeddedStateStrategy(ExtractionStrategy):
    """Extracts jobs from state embedded in inline scripts."""

    name = "embedded-state"

    async def extract(self, context: PageContext) -> List[Dict]:
        for label, payload in self._candidate_payloads(context):
            try:
                data = json.loads(payload)
            except (json.JSONDecodeError, ValueError) as e:
                logger.debug(f"[app_state] Unparseable {label} payload: {e}")
                continue
            jobs = find_job_array(data)
            if jobs:
                logger.info(f"[app_state] Found {len(jobs)} jobs in {label}")
                return jobs

        if context.page is not None:
            jobs = await self._from_window_globals(context)
            if jobs:
                return jobs
        return []

    def _candidate_payloads(self, context: PageContext) -> Iterator[tuple]:
        """Yield (label, json_text) candidates in priority order."""
        inline_scripts = [s for s in context.soup.find_all('script') if not s.get('src')]

        # 1. Hydration payloads
        for script in inline_scripts:
            script_id = script.get('id') or ''
            script_type = (script.get('type') or '').lower()
            if script_id in HYDRATION_SCRIPT_IDS or script_type in HYDRATION_SCRIPT_TYPES:
                text = (script.string or script.get_text() or '').strip()
                if text:
                    yield f"hydration:{script_id or script_type}", text

        # 2. Global state assignments
        for script in inline_scripts:
            text = script.string or script.get_text() or ''
            for match in GLOBAL_ASSIGNMENT.finditer(text):
                literal = balanced_json(text, match.end())
                if literal:
                    yield f"global:{match.group(1)}", literal

        # 3. Raw job-array fragments
        for script in inline_scripts:
            text = script.string or script.get_text() or ''
            if 'jobs' not in text and 'searchResults' not in text:
                continue
            for pattern in FRAGMENT_PATTERNS:
                for match in pattern.finditer(text):
                    literal = balanced_json(text, match.end())
                    if literal:
                        key = pattern.pattern.split('"')[1]
                        yield f"fragment:{key}", '{"%s": %s}' % (key, literal)

    async def _from_window_globals(self, context: PageContext) -> List[Dict]:
        try:
            raw = await context.page.evaluate(GLOBALS_SCRIPT)
        except Exception as e:
            logger.debug(f"[app_state] Could not read window globals: {e}")
            return []
        if not raw:
            return []
        try:
            jobs = find_job_array(json.loads(raw))
        except (json.JSONDecodeError, TypeError) as e:
            logger.debug(f"[app_state] Unparseable window state: {e}")
            return []
        if jobs:
            logger.info(f"[app_state] Found {len(jobs)} jobs in window globals")
        return jobs
