"""Claim and execute due jobs."""

import logging
import signal
import threading
import time
import traceback
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, Optional
from .errors import ContentCtlError, GenerationError, GenerationTimeoutError, InvalidTransitionError
from .generator import ContentGenerator
from .models import Artifact, CampaignConfig, ExecutionReport, Job, JobStatus
from .queue import JobQueue

logger = logging.getLogger(__name__)


class Worker:
    """Executes claimed jobs against the content generator.

    Per-job errors never escape: whatever the generator raises ends up on
    the job and in the returned ExecutionReport.
    """

    def __init__(
        self,
        queue: JobQueue,
        generator: ContentGenerator,
        timeout: Optional[float] = 300.0,
        concurrency: int = 1,
        worker_id: int = 1,
    ):
        self.queue = queue
        self.generator = generator
        self.timeout = timeout
        self.concurrency = max(1, concurrency)
        self.worker_id = worker_id
        self.running = True

    def run_due_jobs(self, campaign: CampaignConfig, limit: int) -> ExecutionReport:
        """Claim and run up to ``limit`` due jobs, oldest first."""
        due = self.queue.get_due_jobs(limit)
        return self.execute(campaign, [job.id for job in due])

    def execute(self, campaign: CampaignConfig, job_ids: Iterable[str]) -> ExecutionReport:
        """Run the given jobs, claiming each one just before it starts."""
        report = ExecutionReport()
        job_ids = list(job_ids)
        if self.concurrency == 1 or len(job_ids) <= 1:
            finished = [self._run_one(campaign, job_id) for job_id in job_ids]
        else:
            with ThreadPoolExecutor(max_workers=min(self.concurrency, len(job_ids))) as pool:
                finished = list(pool.map(lambda job_id: self._run_one(campaign, job_id), job_ids))

        for job in finished:
            if job is None:
                report.skipped += 1
                continue
            report.attempted += 1
            report.job_ids.append(job.id)
            if job.status == JobStatus.COMPLETED:
                report.succeeded += 1
            else:
                report.failed += 1
        return report

    def _run_one(self, campaign: CampaignConfig, job_id: str) -> Optional[Job]:
        """Claim and execute one job. Returns None if it was not ours to run.

        A store error is logged and the job is reported as failed; it stays
        in_progress until stuck recovery fails it.
        """
        job = None
        try:
            job = self.queue.claim(job_id)
            if job is None:
                logger.info("[Worker %d] Job %s already claimed, skipping", self.worker_id, job_id)
                return None
            return self._execute_job(campaign, job)
        except (ContentCtlError, OSError):
            logger.exception("[Worker %d] Store error while running job %s", self.worker_id, job_id)
            return job

    def _generate(self, title_text: str, campaign: CampaignConfig) -> Artifact:
        if self.timeout is None:
            return self.generator.generate(title_text, campaign, None)

        outcome = {}

        def target():
            try:
                outcome["artifact"] = self.generator.generate(title_text, campaign, self.timeout)
            except Exception as e:
                outcome["error"] = e

        # Daemon thread: an overrunning generator is abandoned and never joined at exit.
        thread = threading.Thread(target=target, name=f"generate-{self.worker_id}", daemon=True)
        thread.start()
        thread.join(self.timeout)
        if thread.is_alive():
            raise GenerationTimeoutError(f"Generation timed out after {self.timeout}s")
        if "error" in outcome:
            raise outcome["error"]
        if "artifact" not in outcome:
            raise GenerationError("Generator exited without a result")
        return outcome["artifact"]

    def _execute_job(self, campaign: CampaignConfig, job: Job) -> Job:
        """Execute a single claimed job."""
        logger.info("[Worker %d] Processing job %s: %s", self.worker_id, job.id, job.title_text)
        try:
            artifact = self._generate(job.title_text, campaign)
        except Exception as e:
            error_msg = str(e) or type(e).__name__
            logger.warning("[Worker %d] Job %s failed: %s", self.worker_id, job.id, error_msg)
            return self._resolve(job, lambda: self.queue.fail(job.id, error_msg, traceback.format_exc()))

        job = self._resolve(job, lambda: self.queue.complete(job.id, artifact))
        if job.status == JobStatus.COMPLETED:
            logger.info("[Worker %d] Job %s completed in %sms", self.worker_id, job.id, job.execution_time_ms)
        return job

    def _resolve(self, job: Job, transition: Callable[[], Job]) -> Job:
        try:
            return transition()
        except InvalidTransitionError as e:
            # e.g. stuck recovery already failed this job from another tick
            logger.warning("[Worker %d] %s", self.worker_id, e)
            return self.queue.storage.require_job(job.id)

    def _handle_shutdown(self, signum, frame):
        """Handle shutdown signal gracefully."""
        logger.info("[Worker %d] Shutdown requested, finishing current tick", self.worker_id)
        self.running = False

    def run(self, tick: Callable[[], object], poll_interval: float = 60.0) -> None:
        """Call ``tick`` every ``poll_interval`` seconds until signalled."""
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        signal.signal(signal.SIGINT, self._handle_shutdown)
        logger.info("[Worker %d] Started", self.worker_id)
        while self.running:
            try:
                tick()
            except Exception:
                logger.exception("[Worker %d] Tick failed", self.worker_id)
            deadline = time.monotonic() + poll_interval
            while self.running and time.monotonic() < deadline:
                time.sleep(min(1.0, poll_interval))
        logger.info("[Worker %d] Stopped", self.worker_id)
