"""
Crawl orchestrator for search result listings.

Owns the page frontier and the shared run state, and drives each page through
navigation, block and challenge handling, extraction, normalization,
deduplication and pagination.
"""
import asyncio
import logging
import random
from typing import Dict, List, Optional, Set

from bs4 import BeautifulSoup

from core.config import CrawlConfig
from core.dedupe import Deduplicator
from core.errors import (
    ChallengeUnresolvedError,
    NavigationError,
    PageBlockedError,
    SessionUnavailableError,
)
from core.models import ChallengeState, CrawlStats, JobRecord, PageRequest
from core.normalize import RecordNormalizer
from crawler.browser_crawler import BrowserPool
from crawler.challenge import ChallengeResolver, detect_block
from crawler.human import jittered_delay_ms, materialize_lazy_content, simulate_human_behavior
from crawler.pagination import PaginationController
from pipeline.extractor import ExtractionPipeline, default_strategies
from pipeline.sink import JsonlSink, RecordSink
from pipeline.snapshot import SnapshotManager

logger = logging.getLogger(__name__)


class RunState:
    """
    State shared by all workers of one run.

    Every mutation happens under ``lock``; admission of a batch of records
    (cap check, dedup, sink push, counter update) is a single critical section.
    """

    def __init__(self, results_wanted: int, title_policy: str = "key"):
        self.lock = asyncio.Lock()
        self.results_wanted = results_wanted
        self.dedupe = Deduplicator(title_policy)
        self.saved = 0
        self.stats = CrawlStats()
        self.enqueued_keys: Set[str] = set()

    @property
    def cap_reached(self) -> bool:
        return self.saved >= self.results_wanted

    async def admit(self, records: List[JobRecord], sink: RecordSink) -> int:
        """Push new records to the sink without exceeding the cap; returns how many were accepted."""
        accepted = 0
        async with self.lock:
            for record in records:
                if self.saved >= self.results_wanted:
                    break
                if not record.has_title():
                    continue
                if not self.dedupe.accept(record):
                    continue
                sink.push(record)
                self.saved += 1
                accepted += 1
            self.stats.total_saved = self.saved
        return accepted

    async def claim(self, request: PageRequest) -> bool:
        """Register a new request key; False if it was already enqueued."""
        async with self.lock:
            if request.unique_key in self.enqueued_keys:
                return False
            self.enqueued_keys.add(request.unique_key)
            return True


class CrawlOrchestrator:
    """Runs one crawl over a paginated search listing."""

    def __init__(
        self,
        config: CrawlConfig,
        pool=None,
        sink: Optional[RecordSink] = None,
        snapshot_manager: Optional[SnapshotManager] = None,
        pipeline: Optional[ExtractionPipeline] = None,
        resolver: Optional[ChallengeResolver] = None,
        paginator: Optional[PaginationController] = None,
        normalizer: Optional[RecordNormalizer] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self._owns_pool = pool is None
        self.pool = pool if pool is not None else BrowserPool.from_config(config)
        self.sink = sink if sink is not None else JsonlSink(config.output_path)
        if snapshot_manager is None and config.snapshot_dir:
            snapshot_manager = SnapshotManager(config.snapshot_dir)
        self.snapshots = snapshot_manager
        self.pipeline = pipeline or ExtractionPipeline(
            default_strategies(max_cards=config.max_cards, base_url=config.base_url)
        )
        self.resolver = resolver or ChallengeResolver.from_config(config)
        self.paginator = paginator or PaginationController.from_config(config)
        self.normalizer = normalizer or RecordNormalizer(base_url=config.base_url, source=config.source_tag)
        self.rng = rng or random.Random()

        self.state: Optional[RunState] = None
        self.frontier: Optional[asyncio.Queue] = None

    async def run(self) -> CrawlStats:
        """
        Crawl until the frontier drains.

        Raises:
            ConfigurationError: before any navigation, for an invalid config
            SessionUnavailableError: if the browser pool cannot serve pages
        """
        self.config.validate()
        self.state = RunState(self.config.results_wanted, self.config.title_policy)
        self.frontier = asyncio.Queue()

        logger.info(
            f"[orchestrator] Starting crawl: seed={self.config.seed_url} "
            f"results_wanted={self.config.results_wanted} max_pages={self.config.max_pages} "
            f"concurrency={self.config.max_concurrency}"
        )

        await self.pool.start()
        try:
            await self._enqueue(PageRequest(url=self.config.seed_url, page=1))
            await self._drain()
        finally:
            self.state.stats.finalize()
            self.sink.close()
            if self._owns_pool:
                await self.pool.close()

        stats = self.state.stats
        logger.info(
            f"[orchestrator] Crawl finished: saved={stats.total_saved} pages={stats.pages_processed} "
            f"failed={stats.pages_failed} dropped={stats.requests_dropped} "
            f"challenges={stats.challenges_seen}/{stats.challenges_bypassed} bypassed "
            f"in {stats.duration_seconds}s"
        )
        return stats

    async def _drain(self):
        workers = [
            asyncio.create_task(self._worker(i))
            for i in range(max(1, self.config.max_concurrency))
        ]
        join_task = asyncio.create_task(self.frontier.join())
        try:
            await asyncio.wait([join_task, *workers], return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in workers:
                task.cancel()
            join_task.cancel()
            await asyncio.gather(*workers, join_task, return_exceptions=True)

        # Workers only finish on their own after a fatal error
        for task in workers:
            if not task.cancelled() and task.exception():
                raise task.exception()

    async def _worker(self, worker_id: int):
        while True:
            request = await self.frontier.get()
            try:
                await self._process(request)
            finally:
                self.frontier.task_done()

    async def _enqueue(self, request: PageRequest) -> bool:
        if not await self.state.claim(request):
            logger.debug(f"[orchestrator] Already enqueued: {request.url}")
            return False
        await self.frontier.put(request)
        return True

    async def _process(self, request: PageRequest):
        try:
            paginated = await asyncio.wait_for(
                self._handle(request), timeout=self.config.request_handler_timeout_secs
            )
        except SessionUnavailableError:
            raise
        except ChallengeUnresolvedError as e:
            logger.warning(f"[orchestrator] Abandoning page {request.page}: {e}")
            async with self.state.lock:
                self.state.stats.pages_failed += 1
        except asyncio.TimeoutError:
            await self._retry_or_drop(
                request, f"handler timed out after {self.config.request_handler_timeout_secs}s"
            )
        except NavigationError as e:
            await self._retry_or_drop(request, str(e))
        except Exception as e:
            logger.exception(f"[orchestrator] Unexpected error on {request.url}")
            await self._retry_or_drop(request, f"{type(e).__name__}: {e}")
        else:
            if paginated:
                await asyncio.sleep(jittered_delay_ms(*self.config.next_page_delay_ms, rng=self.rng) / 1000)

    async def _retry_or_drop(self, request: PageRequest, reason: str):
        async with self.state.lock:
            self.state.stats.pages_failed += 1
            if request.retry_count >= self.config.max_request_retries:
                self.state.stats.requests_dropped += 1
                self.state.stats.dropped_urls.append(request.url)
                drop = True
            else:
                drop = False

        if drop:
            logger.error(
                f"[orchestrator] Dropping {request.url} after {request.retry_count + 1} attempts: {reason}"
            )
            return
        logger.warning(
            f"[orchestrator] Retrying {request.url} "
            f"({request.retry_count + 1}/{self.config.max_request_retries}): {reason}"
        )
        await self.frontier.put(request.retried())

    async def _handle(self, request: PageRequest) -> bool:
        session = await self.pool.acquire()
        page = None
        try:
            page = await session.new_page()
            return await self._handle_page(page, session, request)
        finally:
            if page is not None:
                await page.close()
            await self.pool.release(session)

    async def _handle_page(self, page, session, request: PageRequest) -> bool:
        """Process one loaded page; return True when a next page was enqueued."""
        error_responses: List[Dict] = []

        def on_response(response):
            if response.status >= 400:
                error_responses.append({'status': response.status, 'url': response.url})

        page.on_response(on_response)

        logger.info(f"[orchestrator] Page {request.page}: {request.url}")
        status = await page.navigate(request.url, timeout_secs=self.config.navigation_timeout_secs)
        await page.wait(jittered_delay_ms(*self.config.settle_delay_ms, rng=self.rng))

        title = await page.title()
        html = await page.content()
        blocked = detect_block(html, title)
        if blocked:
            session.mark_bad()
            raise PageBlockedError(request.url, f"Access blocked: {blocked}", status)

        challenge = await self.resolver.resolve(page)
        if challenge.seen:
            async with self.state.lock:
                self.state.stats.challenges_seen += 1
                if challenge.state == ChallengeState.BYPASSED:
                    self.state.stats.challenges_bypassed += 1
        if challenge.state == ChallengeState.FAILED:
            session.mark_bad()
            await self._snapshot(page, request, 'challenge-failed', {
                'challenge_flags': challenge.flags,
                'challenge_cycles': challenge.cycles,
                'error_responses': error_responses,
            })
            raise ChallengeUnresolvedError(request.url, challenge.cycles)

        if challenge.state == ChallengeState.CLEAN and status is not None and status >= 400:
            raise NavigationError(request.url, f"HTTP {status}", status)

        if self.config.humanize:
            await simulate_human_behavior(page, rng=self.rng)
        await materialize_lazy_content(page, rng=self.rng)

        html = await page.content()
        outcome = await self.pipeline.extract(request.url, html, page=page)

        records: List[JobRecord] = []
        if outcome.is_empty:
            await self._snapshot(page, request, 'no-data', {
                'extraction': outcome.to_dict(),
                'challenge_flags': challenge.flags,
                'error_responses': error_responses,
            }, html=html)
        else:
            normalized = self.normalizer.normalize_many(outcome.nodes, outcome.method)
            records = [r for r in normalized if r.has_title()]
            if len(records) < len(outcome.nodes):
                logger.info(
                    f"[orchestrator] Discarded {len(outcome.nodes) - len(records)} "
                    f"untitled or malformed nodes on page {request.page}"
                )
            session.mark_good()

        accepted = await self.state.admit(records, self.sink)
        async with self.state.lock:
            self.state.stats.pages_processed += 1
            if outcome.method:
                self.state.stats.record_method(outcome.method)
            saved = self.state.saved

        logger.info(
            f"[orchestrator] Page {request.page}: {len(outcome.nodes)} nodes via "
            f"{outcome.method or 'none'}, {accepted} new, {saved}/{self.config.results_wanted} saved"
        )

        if self.state.cap_reached:
            logger.info("[orchestrator] Result cap reached, no further pagination")
            return False

        next_request = self.paginator.next_request(BeautifulSoup(html, 'lxml'), request, saved)
        return next_request is not None and await self._enqueue(next_request)

    async def _snapshot(self, page, request: PageRequest, reason: str, extra: Dict, html: Optional[str] = None):
        if self.snapshots is None:
            return
        if html is None:
            try:
                html = await page.content()
            except Exception as e:
                logger.debug(f"[orchestrator] Could not read page for snapshot: {e}")
                html = ""
        await self.snapshots.save_snapshot(request.url, html, reason, extra)


async def run_crawl(config: CrawlConfig, sink: Optional[RecordSink] = None) -> CrawlStats:
    """Run a crawl with a fresh browser pool."""
    orchestrator = CrawlOrchestrator(config, sink=sink)
    return await orchestrator.run()
