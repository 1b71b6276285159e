"""
Snapshot manager.

Saves raw HTML plus a structural summary for pages that produced no jobs,
so selector drift and new challenge pages can be diagnosed after a run.
"""

import os
import json
import hashlib
import logging
from pathlib import Path
from typing import Dict, Optional
from datetime import datetime, timezone
from urllib.parse import urlparse

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)


def summarize_html(html: str) -> Dict:
    """Count the structures the extraction strategies look for."""
    soup = BeautifulSoup(html or "", 'lxml')
    scripts = soup.find_all('script')
    title = soup.title.get_text(strip=True) if soup.title else None
    return {
        "title": title,
        "scripts": len(scripts),
        "inline_scripts": sum(1 for s in scripts if not s.get('src')),
        "ld_json_blocks": len(soup.find_all('script', type='application/ld+json')),
        "articles": len(soup.find_all('article')),
        "anchors": len(soup.find_all('a')),
        "job_links": len(soup.select('a[href*="/jobs/"]')),
        "iframes": len(soup.find_all('iframe')),
        "has_challenge_marker": bool(soup.select_one('#challenge-running, #challenge-form, .cf-challenge')),
    }


class SnapshotManager:
    """Manages diagnostic snapshots of pages."""

    def __init__(self, base_path: Optional[str] = None):
        self.base_path = Path(base_path or os.getenv('HARVESTER_SNAPSHOT_DIR', 'snapshots'))
        self.base_path.mkdir(parents=True, exist_ok=True)

        logger.info(f"Snapshot manager initialized: {self.base_path}")

    def _paths(self, url: str):
        domain = urlparse(url).netloc.replace('www.', '') or 'unknown'
        url_hash = hashlib.sha256(url.encode()).hexdigest()
        domain_dir = self.base_path / domain
        return domain_dir, domain_dir / f"{url_hash}.html", domain_dir / f"{url_hash}.meta.json"

    async def save_snapshot(self, url: str, html: str, reason: str, extra: Optional[Dict] = None) -> Optional[Path]:
        """
        Save HTML snapshot and metadata.

        Failures are logged and never propagate into the crawl.

        Returns:
            Path of the saved HTML file, or None if saving failed
        """
        try:
            domain_dir, html_path, meta_path = self._paths(url)
            domain_dir.mkdir(parents=True, exist_ok=True)

            with open(html_path, 'w', encoding='utf-8') as f:
                f.write(html or "")

            metadata = {
                "url": url,
                "reason": reason,
                "snapshot_at": datetime.now(timezone.utc).isoformat(),
                "html_size": len(html or ""),
                "summary": summarize_html(html),
            }
            if extra:
                metadata.update(extra)

            with open(meta_path, 'w', encoding='utf-8') as f:
                json.dump(metadata, f, indent=2, ensure_ascii=False, default=str)

            logger.info(f"[snapshot] Saved {reason} snapshot for {url}: {html_path}")
            return html_path
        except Exception as e:
            logger.error(f"Failed to save snapshot: {e}")
            return None

    def retrieve_snapshot(self, url: str) -> Optional[Dict]:
        """Retrieve snapshot metadata for a URL."""
        try:
            _, _, meta_path = self._paths(url)
            if meta_path.exists():
                with open(meta_path, 'r', encoding='utf-8') as f:
                    return json.load(f)
        except Exception as e:
            logger.error(f"Failed to retrieve snapshot: {e}")

        return None
