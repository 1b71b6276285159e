"""
Data model shared by the crawler, the extraction pipeline and the orchestrator.
"""
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Union


class ChallengeState(Enum):
    """State of an anti-bot interstitial for one page visit."""
    CLEAN = "clean"
    CHALLENGED = "challenged"
    BYPASSED = "bypassed"
    FAILED = "failed"


class SessionQuality(Enum):
    """Quality feedback attached to a browser session."""
    UNKNOWN = "unknown"
    GOOD = "good"
    BAD = "bad"


@dataclass
class PageRequest:
    """One listing page waiting in the frontier."""
    url: str
    page: int = 1
    retry_count: int = 0
    unique_key: str = ""

    def __post_init__(self):
        if not self.unique_key:
            self.unique_key = self.url

    def retried(self) -> "PageRequest":
        """Copy of this request with the retry counter bumped."""
        return PageRequest(
            url=self.url,
            page=self.page,
            retry_count=self.retry_count + 1,
            unique_key=self.unique_key,
        )


@dataclass(frozen=True)
class ClientInfo:
    """Metadata about the client who posted a job."""
    rating: Optional[float] = None
    reviews: Optional[int] = None
    jobs_posted: Optional[int] = None
    hire_rate: Optional[Union[int, float, str]] = None
    location: Optional[str] = None
    payment_verified: bool = False
    total_spent: Optional[str] = None


@dataclass(frozen=True)
class JobRecord:
    """Canonical job posting. Immutable once built by the normalizer."""
    title: Optional[str]
    job_id: Optional[str] = None
    description: Optional[str] = None
    description_html: Optional[str] = None
    company: str = "Not specified"
    skills: tuple = ()
    location: str = "Worldwide"
    job_type: Optional[str] = None
    experience_level: Optional[str] = None
    budget: Optional[str] = None
    hourly_rate: Optional[str] = None
    duration: Optional[str] = None
    date_posted: Optional[str] = None
    proposals: Optional[Union[int, str]] = None
    client: ClientInfo = field(default_factory=ClientInfo)
    url: Optional[str] = None
    source: str = "upwork"
    extraction_method: Optional[str] = None
    captured_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def has_title(self) -> bool:
        return bool(self.title and self.title.strip())

    def to_dict(self) -> Dict:
        """Flat output row, as written to the record sink."""
        return {
            "job_id": self.job_id,
            "title": self.title,
            "company": self.company,
            "description_text": self.description,
            "description_html": self.description_html,
            "skills": list(self.skills),
            "location": self.location,
            "job_type": self.job_type,
            "experience_level": self.experience_level,
            "budget": self.budget,
            "hourly_rate": self.hourly_rate,
            "duration": self.duration,
            "date_posted": self.date_posted,
            "proposals": self.proposals,
            "client_rating": self.client.rating,
            "client_reviews": self.client.reviews,
            "client_jobs_posted": self.client.jobs_posted,
            "client_hire_rate": self.client.hire_rate,
            "client_location": self.client.location,
            "client_spent": self.client.total_spent,
            "payment_verified": self.client.payment_verified,
            "url": self.url,
            "extraction_method": self.extraction_method,
            "captured_at": self.captured_at,
            "_source": self.source,
        }


@dataclass
class CrawlStats:
    """Run-wide counters. Mutated only while holding the run lock."""
    pages_processed: int = 0
    pages_failed: int = 0
    requests_dropped: int = 0
    challenges_seen: int = 0
    challenges_bypassed: int = 0
    total_saved: int = 0
    extraction_method: Optional[str] = None
    method_counts: Dict[str, int] = field(default_factory=dict)
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    dropped_urls: List[str] = field(default_factory=list)

    def record_method(self, method: str):
        self.extraction_method = method
        self.method_counts[method] = self.method_counts.get(method, 0) + 1

    def finalize(self) -> "CrawlStats":
        """Stamp the finish time. Later calls keep the first stamp."""
        if self.finished_at is None:
            self.finished_at = time.time()
        return self

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.time()
        return round(end - self.started_at, 3)

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["duration_seconds"] = self.duration_seconds
        return data
