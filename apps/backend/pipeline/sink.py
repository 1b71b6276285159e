"""
Record sinks.

The orchestrator pushes accepted JobRecords here while holding its run lock,
so sinks see records one at a time in admission order.
"""

import os
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from core.models import JobRecord

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_PATH = os.getenv('HARVESTER_OUTPUT_PATH', 'output/jobs.jsonl')


class RecordSink:
    """Destination for accepted records."""

    def push(self, record: JobRecord) -> None:
        raise NotImplementedError

    def push_many(self, records: Sequence[JobRecord]) -> int:
        for record in records:
            self.push(record)
        return len(records)

    def close(self) -> None:
        pass


class MemorySink(RecordSink):
    """Keeps records in a list. Used by the API and tests."""

    def __init__(self):
        self.records: List[JobRecord] = []

    def push(self, record: JobRecord) -> None:
        self.records.append(record)

    def to_dicts(self) -> List[Dict]:
        return [r.to_dict() for r in self.records]

    def __len__(self):
        return len(self.records)


class JsonlSink(RecordSink):
    """Appends one JSON object per line to a file."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or DEFAULT_OUTPUT_PATH)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = None
        self.count = 0
        logger.info(f"[sink] Writing records to {self.path}")

    def push(self, record: JobRecord) -> None:
        if self._handle is None:
            self._handle = open(self.path, 'a', encoding='utf-8')
        self._handle.write(json.dumps(record.to_dict(), ensure_ascii=False) + "\n")
        self._handle.flush()
        self.count += 1

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None
            logger.info(f"[sink] Wrote {self.count} records to {self.path}")
