"""Generic state machine for long-running analysis jobs.

Both document extraction and citation checking run as jobs that move
through ``submitted -> running -> done | failed`` while reporting a step
label and a monotonically non-decreasing progress percentage. Clients
poll job snapshots; callers drive transitions.

Concurrency:
    - ``submit`` checks for an active job with the same fingerprint and
      inserts a new one under a single registry lock.
    - Mutations of one job are serialized by a per-job lock.
    - ``poll`` returns a copy and never blocks on running work.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from paperchat.config import JobsConfig
from paperchat.monitoring import metrics

logger = logging.getLogger(__name__)


class JobKind(str, Enum):
    EXTRACTION = "extraction"
    CITATION_CHECK = "citation_check"


class JobState(str, Enum):
    SUBMITTED = "submitted"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.SUBMITTED: frozenset({JobState.RUNNING, JobState.FAILED}),
    JobState.RUNNING: frozenset({JobState.DONE, JobState.FAILED}),
    JobState.DONE: frozenset(),
    JobState.FAILED: frozenset(),
}

TERMINAL_STATES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)


class JobNotFoundError(KeyError):
    """Raised when a job id is not in the registry."""


class InvalidTransitionError(ValueError):
    """Raised when a job operation is not allowed in the job's current state."""


@dataclass
class Job:
    """A long-running task record."""

    id: str
    kind: JobKind
    subject_id: str
    fingerprint: str
    state: JobState = JobState.SUBMITTED
    progress_percent: int = 0
    current_step: str = ""
    error: str | None = None
    result: Any = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_status(self) -> dict:
        """Status payload polled by clients; field names are a stable contract."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "subjectId": self.subject_id,
            "state": self.state.value,
            "currentStep": self.current_step,
            "progressPercent": self.progress_percent,
            "error": self.error,
        }

    def to_receipt(self) -> dict:
        return {"jobId": self.id, "state": self.state.value}


def content_hash(payload: Any) -> str:
    """Stable sha256 of a submission payload (bytes, text, or JSON-able data)."""
    if payload is None:
        raw = b""
    elif isinstance(payload, bytes):
        raw = payload
    elif isinstance(payload, str):
        raw = payload.encode()
    else:
        raw = json.dumps(payload, sort_keys=True, default=str).encode()
    return hashlib.sha256(raw).hexdigest()


def compute_fingerprint(kind: JobKind | str, subject_id: str, payload_hash: str) -> str:
    raw = f"{JobKind(kind).value}::{subject_id}::{payload_hash}"
    return hashlib.sha256(raw.encode()).hexdigest()[:32]


class JobPipeline:
    """In-process registry and state machine for jobs."""

    def __init__(self, config: JobsConfig | None = None) -> None:
        self.config = config or JobsConfig()
        self._jobs: dict[str, Job] = {}
        self._active_by_fingerprint: dict[str, str] = {}
        self._job_locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def submit(self, kind: JobKind | str, subject_id: str, payload: Any = None) -> Job:
        """Create a job, or return the active job with the same fingerprint.

        A failed or finished job never blocks resubmission, and neither does
        an active job that has gone stale (see ``fail_stale_jobs``).

        Returns:
            Snapshot of the new or existing job.
        """
        kind = JobKind(kind)
        fingerprint = compute_fingerprint(kind, subject_id, content_hash(payload))

        with self._registry_lock:
            existing_id = self._active_by_fingerprint.get(fingerprint)
            if existing_id is not None:
                existing = self._jobs[existing_id]
                if not self._is_stale(existing):
                    logger.info("Deduplicated %s submission for %s -> job %s", kind.value, subject_id, existing_id)
                    metrics.increment("jobs.deduplicated", labels={"kind": kind.value})
                    return copy.copy(existing)

            job = Job(id=uuid.uuid4().hex, kind=kind, subject_id=subject_id, fingerprint=fingerprint)
            self._jobs[job.id] = job
            self._job_locks[job.id] = threading.Lock()
            self._active_by_fingerprint[fingerprint] = job.id

        if existing_id is not None and existing_id != job.id:
            self._expire(existing_id)

        logger.info("Submitted %s job %s for %s", kind.value, job.id, subject_id)
        metrics.increment("jobs.submitted", labels={"kind": kind.value})
        return copy.copy(job)

    def start(self, job_id: str, step: str = "") -> Job:
        """Move a submitted job to running."""
        with self._locked(job_id) as job:
            self._transition(job, JobState.RUNNING)
            if step:
                job.current_step = step
            return copy.copy(job)

    def advance(self, job_id: str, step: str, progress_percent: int) -> Job:
        """Record progress of a running job.

        Progress never moves backwards: a lower value than the current one is
        clamped to the current value, and values outside 0-100 are clamped.
        """
        with self._locked(job_id) as job:
            if job.state != JobState.RUNNING:
                raise InvalidTransitionError(
                    f"Cannot advance job {job_id} in state {job.state.value}"
                )

            requested = int(progress_percent)
            progress = min(max(requested, job.progress_percent, 0), 100)
            if progress != requested:
                logger.warning(
                    "Clamped progress for job %s from %d to %d", job_id, requested, progress
                )

            job.progress_percent = progress
            job.current_step = step
            job.updated_at = time.time()
            logger.debug("Job %s at %d%%: %s", job_id, progress, step)
            return copy.copy(job)

    def complete(self, job_id: str, result: Any = None, step: str = "Done") -> Job:
        """Finish a running job successfully."""
        with self._locked(job_id) as job:
            self._transition(job, JobState.DONE)
            job.progress_percent = 100
            job.current_step = step
            job.result = result
            snapshot = copy.copy(job)

        self._release_fingerprint(snapshot)
        logger.info("Job %s completed in %.1fs", job_id, snapshot.updated_at - snapshot.created_at)
        metrics.increment("jobs.completed", labels={"kind": snapshot.kind.value})
        return snapshot

    def fail(self, job_id: str, error: str) -> Job:
        """Mark a submitted or running job as failed. Failure is terminal."""
        with self._locked(job_id) as job:
            self._transition(job, JobState.FAILED)
            job.error = error or "Unknown error"
            snapshot = copy.copy(job)

        self._release_fingerprint(snapshot)
        logger.warning("Job %s failed at step '%s': %s", job_id, snapshot.current_step, snapshot.error)
        metrics.increment("jobs.failed", labels={"kind": snapshot.kind.value})
        return snapshot

    def cancel(self, job_id: str, reason: str = "Cancelled") -> Job:
        """Cancel a submitted or running job by failing it.

        A workflow already running stops before its next step.
        """
        logger.info("Cancelling job %s", job_id)
        return self.fail(job_id, reason)

    def poll(self, job_id: str) -> Job:
        """Read-only snapshot of a job."""
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return copy.copy(job)

    def list_jobs(self, subject_id: str | None = None, kind: JobKind | str | None = None) -> list[Job]:
        """Snapshots of known jobs, oldest first, optionally filtered."""
        kind = JobKind(kind) if kind is not None else None
        jobs = [
            copy.copy(j)
            for j in list(self._jobs.values())
            if (subject_id is None or j.subject_id == subject_id) and (kind is None or j.kind == kind)
        ]
        return sorted(jobs, key=lambda j: j.created_at)

    def fail_stale_jobs(self) -> list[Job]:
        """Fail every active job not updated within ``stale_after_seconds``.

        This is an administrative sweep for stuck jobs; nothing calls it on
        a timer. Returns snapshots of the jobs it failed.
        """
        stale_ids = [j.id for j in list(self._jobs.values()) if not j.is_terminal and self._is_stale(j)]
        failed = [job for job in (self._expire(job_id) for job_id in stale_ids) if job is not None]
        if failed:
            logger.warning("Failed %d stale jobs", len(failed))
        return failed

    def _expire(self, job_id: str) -> Job | None:
        try:
            return self.fail(
                job_id,
                f"Timed out: no progress for more than {self.config.stale_after_seconds:.0f}s",
            )
        except InvalidTransitionError:
            # Finished concurrently
            return None

    def _is_stale(self, job: Job) -> bool:
        return time.time() - job.updated_at > self.config.stale_after_seconds

    def _release_fingerprint(self, job: Job) -> None:
        with self._registry_lock:
            if self._active_by_fingerprint.get(job.fingerprint) == job.id:
                del self._active_by_fingerprint[job.fingerprint]

    @staticmethod
    def _transition(job: Job, target: JobState) -> None:
        if target not in TRANSITIONS[job.state]:
            raise InvalidTransitionError(
                f"Job {job.id} cannot move from {job.state.value} to {target.value}"
            )
        logger.debug("Job %s: %s -> %s", job.id, job.state.value, target.value)
        job.state = target
        job.updated_at = time.time()

    def _locked(self, job_id: str) -> _JobGuard:
        lock = self._job_locks.get(job_id)
        job = self._jobs.get(job_id)
        if lock is None or job is None:
            raise JobNotFoundError(job_id)
        return _JobGuard(job, lock)


class _JobGuard:
    """Holds a job's lock for the duration of a ``with`` block."""

    def __init__(self, job: Job, lock: threading.Lock) -> None:
        self.job = job
        self.lock = lock

    def __enter__(self) -> Job:
        self.lock.acquire()
        return self.job

    def __exit__(self, *args) -> None:
        self.lock.release()
