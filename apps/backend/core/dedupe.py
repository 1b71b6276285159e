"""
Per-run deduplication of job records.

Identity key priority: job_id, then url, then title. Cross-run dedup is
left to the record sink.
"""
import logging
from typing import Optional, Set

from core.models import JobRecord

logger = logging.getLogger(__name__)

# Policies for records that have neither job_id nor url
TITLE_AS_KEY = "key"
ALWAYS_KEEP = "keep"


def identity_key(record: JobRecord) -> Optional[str]:
    """Return the identity key for a record, or None if it has none."""
    for value in (record.job_id, record.url, record.title):
        if value and str(value).strip():
            return str(value).strip()
    return None


class Deduplicator:
    """
    Tracks identity keys already emitted in this run.

    Not synchronized on its own: the orchestrator only calls it while holding
    the run lock.
    """

    def __init__(self, title_policy: str = TITLE_AS_KEY):
        if title_policy not in (TITLE_AS_KEY, ALWAYS_KEEP):
            raise ValueError(f"Unknown title policy: {title_policy}")
        self.title_policy = title_policy
        self._seen: Set[str] = set()

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, key: str) -> bool:
        return key in self._seen

    def is_new(self, key: str) -> bool:
        """Insert ``key`` and return True, or return False if already seen."""
        if key in self._seen:
            return False
        self._seen.add(key)
        return True

    def accept(self, record: JobRecord) -> bool:
        """Decide whether a record is new, applying the title-only policy."""
        if not record.job_id and not record.url and self.title_policy == ALWAYS_KEEP:
            return True
        key = identity_key(record)
        if key is None:
            logger.debug("[dedupe] Record has no identity key, skipping")
            return False
        return self.is_new(key)
