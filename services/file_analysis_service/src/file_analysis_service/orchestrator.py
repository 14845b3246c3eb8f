from __future__ import annotations

import asyncio
import datetime as dt
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable

from antiplagiarism_common.correlation import current_correlation_id, set_correlation_id
from antiplagiarism_common.errors import (
    ConflictError,
    OverloadError,
    ServiceError,
    UpstreamError,
    UpstreamUnavailableError,
)
from antiplagiarism_common.schemas import WorkMeta

from .clients import FileStoringClient
from .models import ACTIVE_STATUSES, ReportStatus
from .plagiarism import MAX_DETAILED_COMPARISONS, check, prior_candidates
from .store import ReportStore
from .wordcloud import WordCloudClient

logger = logging.getLogger(__name__)

ANALYSIS_STARTED = "analysis_started"
ALREADY_ANALYZED = "already_analyzed"


@dataclass
class AnalysisJob:
    report_id: int
    work: WorkMeta
    correlation_id: str | None = None


@dataclass
class AnalysisStart:
    report_id: int
    work_id: int
    status: str


class AdmissionGate:
    """Counting semaphore with a bounded wait; callers that cannot get a slot in time are rejected."""

    def __init__(self, permits: int, timeout: float):
        self.permits = permits
        self.timeout = timeout
        self._semaphore = asyncio.Semaphore(permits)

    @asynccontextmanager
    async def admit(self) -> AsyncIterator[None]:
        acquire = asyncio.ensure_future(self._semaphore.acquire())
        try:
            await asyncio.wait({acquire}, timeout=self.timeout)
        except asyncio.CancelledError:
            self._abandon(acquire)
            raise
        if not acquire.done():
            self._abandon(acquire)
            raise OverloadError(f"Concurrent analysis limit reached (max. {self.permits})")
        try:
            yield
        finally:
            self._semaphore.release()

    def _abandon(self, acquire: asyncio.Future) -> None:
        # a permit granted while the wait was ending goes straight back
        if acquire.done() and not acquire.cancelled():
            self._semaphore.release()
        else:
            acquire.cancel()


class AnalysisWorkerPool:
    """Bounded queue of analysis jobs consumed by a fixed number of worker tasks.

    The queue lives in memory only. Jobs cut short by ``stop`` and jobs still
    waiting in the queue are handed to ``abandon`` so their reports can be
    closed instead of staying active.
    """

    def __init__(
        self,
        handler: Callable[[AnalysisJob], Awaitable[None]],
        workers: int,
        queue_size: int,
        abandon: Callable[[AnalysisJob, str], None] | None = None,
    ):
        self._handler = handler
        self._abandon = abandon
        self._workers = workers
        self._queue: asyncio.Queue[AnalysisJob] = asyncio.Queue(maxsize=queue_size)
        self._tasks: list[asyncio.Task] = []

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def submit(self, job: AnalysisJob) -> None:
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            raise OverloadError("Analysis queue is full") from None

    async def start(self) -> None:
        if self._tasks:
            return
        # a fresh queue binds to the running loop; carry over anything submitted earlier
        queue: asyncio.Queue[AnalysisJob] = asyncio.Queue(maxsize=self._queue.maxsize)
        while not self._queue.empty():
            queue.put_nowait(self._queue.get_nowait())
        self._queue = queue
        self._tasks = [asyncio.create_task(self._work(i), name=f"analysis-worker-{i}") for i in range(self._workers)]
        logger.info("Started %d analysis workers", self._workers)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        dropped = 0
        while not self._queue.empty():
            job = self._queue.get_nowait()
            self._give_up(job, "Analysis was not started before the service stopped")
            self._queue.task_done()
            dropped += 1
        if dropped:
            logger.warning("Dropped %d queued analyses on shutdown", dropped)

    async def drain(self) -> None:
        await self._queue.join()

    def _give_up(self, job: AnalysisJob, reason: str) -> None:
        if self._abandon is None:
            return
        try:
            self._abandon(job, reason)
        except Exception:
            logger.exception("Could not close report %s", job.report_id)

    async def _work(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            set_correlation_id(job.correlation_id)
            try:
                await self._handler(job)
            except asyncio.CancelledError:
                self._give_up(job, "Analysis was interrupted by service shutdown")
                raise
            except Exception:
                logger.exception("Worker %d failed on report %s", index, job.report_id)
            finally:
                self._queue.task_done()


class AnalysisOrchestrator:
    def __init__(
        self,
        reports: ReportStore,
        files: FileStoringClient,
        word_cloud: WordCloudClient,
        *,
        max_concurrent: int = 10,
        admission_timeout: float = 1.0,
        workers: int = 4,
        queue_size: int = 100,
        compare_prior_content: bool = False,
    ):
        self.reports = reports
        self.files = files
        self.word_cloud = word_cloud
        self.compare_prior_content = compare_prior_content
        self.gate = AdmissionGate(max_concurrent, admission_timeout)
        self.pool = AnalysisWorkerPool(self.run_analysis, workers, queue_size, abandon=self.abandon)

    @staticmethod
    def estimated_completion() -> dt.datetime:
        return dt.datetime.now(dt.timezone.utc) + dt.timedelta(seconds=10)

    async def start_analysis(self, work_id: int) -> AnalysisStart:
        async with self.gate.admit():
            existing = self.reports.find_latest_by_work_id(work_id)
            if existing is not None:
                if existing.status == ReportStatus.DONE.value:
                    logger.info("Work %s already analyzed (report %s)", work_id, existing.id)
                    return AnalysisStart(existing.id, work_id, ALREADY_ANALYZED)
                if existing.status in ACTIVE_STATUSES:
                    raise ConflictError(
                        f"Work {work_id} is already being analyzed (report {existing.id})",
                        extra={"reportId": existing.id},
                    )

            try:
                work = await self.files.get_work_meta_with_retry(work_id)
            except (UpstreamUnavailableError, UpstreamError) as e:
                report = self.reports.create(work_id, details="Fetching submission metadata")
                self.reports.transition_to_error(report.id, f"Failed to fetch submission metadata: {e.details}")
                e.extra["reportId"] = report.id
                raise

            report = self.reports.create(work_id, work.student_id, work.assignment_id)
            try:
                self.pool.submit(AnalysisJob(report.id, work, current_correlation_id()))
            except OverloadError as e:
                self.reports.transition_to_error(report.id, "Analysis was not started: queue is full")
                e.extra["reportId"] = report.id
                raise

            logger.info("Analysis of work %s queued as report %s", work_id, report.id)
            return AnalysisStart(report.id, work_id, ANALYSIS_STARTED)

    async def run_analysis(self, job: AnalysisJob) -> None:
        report_id, work = job.report_id, job.work
        try:
            self.reports.mark_processing(report_id)
        except ServiceError as e:
            logger.error("Report %s cannot be processed: %s", report_id, e.details)
            return

        text = None
        try:
            text = await self.files.download_text(work.work_id)
        except Exception as e:
            logger.warning("Content of work %s unavailable, checking metadata only: %s", work.work_id, e)

        try:
            submissions = await self.files.list_assignment_works(work.assignment_id)
            prior_texts = None
            if self.compare_prior_content and text:
                prior_texts = await self._prior_texts(work, submissions)
            result = check(work, submissions, text, prior_texts)
        except Exception as e:
            logger.exception("Plagiarism check failed for report %s", report_id)
            self.reports.transition_to_error(report_id, f"Analysis failed: {e}")
            return

        details = result.details
        word_cloud_url = None
        if text:
            try:
                word_cloud_url = await self.word_cloud.generate(text)
            except Exception as e:
                logger.warning("Word cloud generation failed for report %s: %s", report_id, e)
                details += f"\nWord cloud generation failed: {e}"

        try:
            self.reports.transition_to_done(report_id, result.is_plagiarism, result.sources, details, word_cloud_url)
        except ServiceError as e:
            logger.error("Report %s was closed elsewhere: %s", report_id, e.details)
            return
        except Exception as e:
            logger.exception("Could not save the result of report %s", report_id)
            self.reports.transition_to_error(report_id, f"Analysis failed: {e}")
            return
        logger.info("Analysis finished for report %s (plagiarism=%s)", report_id, result.is_plagiarism)

    def abandon(self, job: AnalysisJob, reason: str) -> None:
        try:
            self.reports.transition_to_error(job.report_id, reason)
        except ServiceError as e:
            logger.info("Report %s left as is: %s", job.report_id, e.details)

    async def _prior_texts(self, work: WorkMeta, submissions: list[WorkMeta]) -> dict[int, str]:
        texts = {}
        for candidate in prior_candidates(work, submissions)[:MAX_DETAILED_COMPARISONS]:
            try:
                texts[candidate.work_id] = await self.files.download_text(candidate.work_id)
            except ServiceError as e:
                logger.warning("Content of prior work %s unavailable: %s", candidate.work_id, e.details)
        return texts
