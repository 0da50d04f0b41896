from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed

from .evaluator import Run
from .executor import JobExecutor, JobResult
from .expansion import Job
from .state_machine import JobState
from .tracker import RunReport, RunTracker

logger = logging.getLogger(__name__)


def _run_job(tracker: RunTracker, job: Job, executor: JobExecutor) -> None:
    if not tracker.job_started(job.index):
        logger.debug("Job skipped after abort", extra={"job": job.name})
        return

    try:
        result = executor.execute(job, tracker.cancel_token)
    except Exception as e:
        logger.exception(
            "Job executor failed",
            extra={"run_id": tracker.run.run_id, "job": job.name, "target": job.target},
        )
        result = JobResult(state=JobState.INFRA_ERROR, message=str(e))

    tracker.record(job.index, result)


def execute_run(
    run: Run,
    executor: JobExecutor,
    *,
    max_workers: int | None = None,
    tracker: RunTracker | None = None,
) -> RunReport:
    """Run every job of `run` in parallel and block until the run is terminal.

    Each job gets its own worker; with fail-fast enabled the first failure
    cancels jobs that have not started and signals in-flight ones through the
    run's cancellation token.
    """

    tracker = tracker or RunTracker(run)
    tracker.start()
    workers = max_workers or max(1, len(run.jobs))

    logger.info(
        "Run started",
        extra={"run_id": run.run_id, "job_count": len(run.jobs), "max_workers": workers},
    )

    with ThreadPoolExecutor(
        max_workers=workers, thread_name_prefix=f"run-{run.run_id[:8]}"
    ) as pool:
        futures: dict[Future[None], Job] = {
            pool.submit(_run_job, tracker, job, executor): job for job in run.jobs
        }
        for fut in as_completed(futures):
            if fut.cancelled():
                continue
            fut.result()
            if tracker.cancel_token.cancelled:
                for other in futures:
                    other.cancel()

    return tracker.report()
