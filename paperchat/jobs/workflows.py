"""Step-based execution of extraction and citation-check jobs.

A workflow is an ordered list of step labels plus one handler per label.
The runner executes the handlers in order on a worker pool, reports each
step to the job pipeline, completes the job with the last handler's
result, and fails it on the first exception. Nothing is retried: a
caller who wants a retry submits again.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Mapping, Sequence

from paperchat.config import JobsConfig
from paperchat.jobs.pipeline import Job, JobKind, JobPipeline, JobState
from paperchat.monitoring import LatencyTracker, metrics

logger = logging.getLogger(__name__)

DONE_STEP = "Done"

EXTRACTION_STEPS = ("Upload", "Parse", "StructureExtraction")
CITATION_CHECK_STEPS = ("Parsing", "EvidenceSearch", "IssueDetection")

WORKFLOW_STEPS: dict[JobKind, tuple[str, ...]] = {
    JobKind.EXTRACTION: EXTRACTION_STEPS,
    JobKind.CITATION_CHECK: CITATION_CHECK_STEPS,
}

# A handler receives the shared step context: {"payload": ..., "<step label>": result, ...}
StepHandler = Callable[[dict[str, Any]], Any]


def build_steps(kind: JobKind, handlers: Mapping[str, StepHandler]) -> list[tuple[str, StepHandler]]:
    """Order handlers by the workflow's step labels, checking none are missing."""
    labels = WORKFLOW_STEPS[JobKind(kind)]
    missing = [label for label in labels if label not in handlers]
    if missing:
        raise ValueError(f"Missing handlers for {JobKind(kind).value} steps: {missing}")
    unknown = sorted(set(handlers) - set(labels))
    if unknown:
        raise ValueError(f"Unknown {JobKind(kind).value} steps: {unknown}")
    return [(label, handlers[label]) for label in labels]


class JobRunner:
    """Runs workflow jobs in the background on a thread pool."""

    def __init__(self, pipeline: JobPipeline, config: JobsConfig | None = None) -> None:
        self.pipeline = pipeline
        self.config = config or pipeline.config
        self._executor = ThreadPoolExecutor(
            max_workers=max(self.config.max_workers, 1),
            thread_name_prefix="paperchat-job",
        )
        self._scheduled: dict[str, Future] = {}
        self._lock = threading.Lock()

    def submit(
        self,
        kind: JobKind | str,
        subject_id: str,
        payload: Any,
        handlers: Mapping[str, StepHandler],
    ) -> Job:
        """Submit a job and schedule it unless an identical job is already active.

        Returns:
            Snapshot of the submitted (or deduplicated) job.
        """
        kind = JobKind(kind)
        steps = build_steps(kind, handlers)
        job = self.pipeline.submit(kind, subject_id, payload)

        future = None
        with self._lock:
            if job.id not in self._scheduled and job.state == JobState.SUBMITTED:
                future = self._executor.submit(self.run, job.id, payload, steps)
                self._scheduled[job.id] = future

        # Outside the lock: the callback runs inline when the future is already done
        if future is not None:
            future.add_done_callback(lambda _, job_id=job.id: self._forget(job_id))
        return job

    def run(self, job_id: str, payload: Any, steps: Sequence[tuple[str, StepHandler]]) -> Job:
        """Execute a job's steps synchronously.

        Progress before step ``i`` of ``n`` is ``100 * i // n``; completion
        sets 100. The context passed to each handler accumulates earlier
        step results under their labels.
        """
        context: dict[str, Any] = {"payload": payload}
        result: Any = None
        current = ""

        try:
            job = self.pipeline.start(job_id)
            with LatencyTracker(metrics, f"job.{job.kind.value}"):
                for index, (label, handler) in enumerate(steps):
                    current = label
                    self.pipeline.advance(job_id, label, 100 * index // len(steps))
                    result = handler(context)
                    context[label] = result
            return self.pipeline.complete(job_id, result, step=DONE_STEP)
        except Exception as e:
            snapshot = self.pipeline.poll(job_id)
            if snapshot.is_terminal:
                # Already failed elsewhere, e.g. by the stale-job sweep
                logger.warning(
                    "Job %s was %s before it could finish (%s): %s",
                    job_id,
                    snapshot.state.value,
                    current or "not started",
                    e,
                )
                return snapshot
            logger.exception("Job %s failed during step %s", job_id, current)
            return self.pipeline.fail(job_id, f"{current}: {e}")

    def wait(self, job_id: str, timeout: float | None = None) -> Job:
        """Block until a job scheduled by this runner finishes, then return its snapshot.

        Jobs this runner is not (or no longer) executing are returned as they
        are without waiting.
        """
        with self._lock:
            future = self._scheduled.get(job_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.pipeline.poll(job_id)

    def _forget(self, job_id: str) -> None:
        with self._lock:
            self._scheduled.pop(job_id, None)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def run_extraction(
    runner: JobRunner,
    document_id: str,
    payload: Any,
    handlers: Mapping[str, StepHandler],
) -> Job:
    """Submit a document extraction job (Upload, Parse, StructureExtraction)."""
    return runner.submit(JobKind.EXTRACTION, document_id, payload, handlers)


def run_citation_check(
    runner: JobRunner,
    document_id: str,
    payload: Any,
    handlers: Mapping[str, StepHandler],
) -> Job:
    """Submit a citation check job (Parsing, EvidenceSearch, IssueDetection)."""
    return runner.submit(JobKind.CITATION_CHECK, document_id, payload, handlers)
