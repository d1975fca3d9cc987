"""Tests for step-based job execution."""

import json
import logging
import threading

import pytest

from paperchat.config import JobsConfig
from paperchat.data.content_store import JsonContentStore
from paperchat.data.models import ContentUnit, PaperMetadata
from paperchat.jobs.pipeline import JobKind, JobPipeline, JobState
from paperchat.jobs.workflows import (
    CITATION_CHECK_STEPS,
    EXTRACTION_STEPS,
    JobRunner,
    build_steps,
    run_citation_check,
    run_extraction,
)


@pytest.fixture
def pipeline():
    return JobPipeline(JobsConfig(max_workers=2))


@pytest.fixture
def runner(pipeline):
    runner = JobRunner(pipeline)
    yield runner
    runner.shutdown()


def _recording_handlers(labels, progress_log, pipeline, job_ref):
    def make(label):
        def handler(context):
            job = pipeline.poll(job_ref["id"])
            progress_log.append((job.current_step, job.progress_percent))
            return f"{label}-result"
        return handler

    return {label: make(label) for label in labels}


class TestBuildSteps:
    def test_orders_by_workflow(self):
        handlers = {label: (lambda context: None) for label in reversed(EXTRACTION_STEPS)}
        assert [label for label, _ in build_steps(JobKind.EXTRACTION, handlers)] == list(EXTRACTION_STEPS)

    def test_missing_handler(self):
        with pytest.raises(ValueError, match="Missing"):
            build_steps(JobKind.EXTRACTION, {"Upload": lambda context: None})

    def test_unknown_handler(self):
        handlers = {label: (lambda context: None) for label in CITATION_CHECK_STEPS}
        handlers["Translate"] = lambda context: None
        with pytest.raises(ValueError, match="Unknown"):
            build_steps(JobKind.CITATION_CHECK, handlers)


class TestJobRunnerRun:
    def test_reports_each_step(self, pipeline, runner):
        job = pipeline.submit(JobKind.CITATION_CHECK, "doc-1", b"x")
        log = []
        handlers = _recording_handlers(CITATION_CHECK_STEPS, log, pipeline, {"id": job.id})

        done = runner.run(job.id, b"x", build_steps(JobKind.CITATION_CHECK, handlers))

        assert log == [("Parsing", 0), ("EvidenceSearch", 33), ("IssueDetection", 66)]
        assert done.state == JobState.DONE
        assert done.progress_percent == 100
        assert done.current_step == "Done"
        assert done.result == "IssueDetection-result"

    def test_context_accumulates_results(self, pipeline, runner):
        job = pipeline.submit(JobKind.EXTRACTION, "doc-1", "raw")
        handlers = {
            "Upload": lambda context: context["payload"].upper(),
            "Parse": lambda context: context["Upload"] + "-parsed",
            "StructureExtraction": lambda context: [context["Upload"], context["Parse"]],
        }

        done = runner.run(job.id, "raw", build_steps(JobKind.EXTRACTION, handlers))

        assert done.result == ["RAW", "RAW-parsed"]

    def test_failure_names_step(self, pipeline, runner):
        job = pipeline.submit(JobKind.EXTRACTION, "doc-1", b"x")
        calls = []

        def parse(context):
            raise ValueError("unreadable PDF")

        handlers = {
            "Upload": lambda context: calls.append("Upload"),
            "Parse": parse,
            "StructureExtraction": lambda context: calls.append("StructureExtraction"),
        }

        failed = runner.run(job.id, b"x", build_steps(JobKind.EXTRACTION, handlers))

        assert failed.state == JobState.FAILED
        assert failed.error == "Parse: unreadable PDF"
        assert failed.current_step == "Parse"
        assert calls == ["Upload"]

    def test_job_failed_elsewhere_stays_failed(self, pipeline, runner):
        job = pipeline.submit(JobKind.EXTRACTION, "doc-1", b"x")

        def upload(context):
            pipeline.fail(job.id, "Timed out")
            return None

        handlers = {
            "Upload": upload,
            "Parse": lambda context: None,
            "StructureExtraction": lambda context: None,
        }

        result = runner.run(job.id, b"x", build_steps(JobKind.EXTRACTION, handlers))

        assert result.state == JobState.FAILED
        assert result.error == "Timed out"

    def test_job_failed_before_start(self, pipeline, runner, caplog):
        job = pipeline.submit(JobKind.EXTRACTION, "doc-1", b"x")
        pipeline.fail(job.id, "Timed out")
        calls = []
        handlers = {label: (lambda context, label=label: calls.append(label)) for label in EXTRACTION_STEPS}

        with caplog.at_level(logging.WARNING, logger="paperchat.jobs.workflows"):
            result = runner.run(job.id, b"x", build_steps(JobKind.EXTRACTION, handlers))

        assert result.state == JobState.FAILED
        assert result.error == "Timed out"
        assert calls == []
        assert "not started" in caplog.text


class TestJobRunnerSubmit:
    def test_identical_submission_runs_once(self, pipeline, runner):
        release = threading.Event()
        calls = []

        def upload(context):
            calls.append("Upload")
            release.wait(timeout=5)
            return context["payload"]

        handlers = {
            "Upload": upload,
            "Parse": lambda context: None,
            "StructureExtraction": lambda context: "ok",
        }

        first = run_extraction(runner, "doc-1", b"bytes", handlers)
        second = run_extraction(runner, "doc-1", b"bytes", handlers)
        release.set()
        runner.wait(first.id, timeout=5)

        assert first.id == second.id
        assert calls == ["Upload"]
        assert pipeline.poll(first.id).state == JobState.DONE

    def test_citation_check_runs_in_background(self, pipeline, runner):
        handlers = {label: (lambda context, label=label: label) for label in CITATION_CHECK_STEPS}

        job = run_citation_check(runner, "doc-1", {"claims": ["c1"]}, handlers)
        runner.wait(job.id, timeout=5)

        done = pipeline.poll(job.id)
        assert done.kind == JobKind.CITATION_CHECK
        assert done.result == "IssueDetection"

    def test_extraction_publishes_to_content_store(self, pipeline, runner, tmp_path):
        store = JsonContentStore(data_dir=tmp_path)
        document = {
            "metadata": {"title": "Block Routing", "authors": ["Ada Lovelace"], "year": 2024},
            "units": [
                {"id": "u1", "paper_id": "doc-9", "kind": "section", "text": "Intro", "structural_tag": "introduction"},
            ],
        }

        def structure(context):
            data = context["Parse"]
            metadata = PaperMetadata.from_dict({"paper_id": "doc-9", **data["metadata"]})
            units = [ContentUnit.from_dict(u) for u in data["units"]]
            return str(store.save_paper(metadata, units))

        handlers = {
            "Upload": lambda context: context["payload"],
            "Parse": lambda context: json.loads(context["Upload"]),
            "StructureExtraction": structure,
        }

        job = run_extraction(runner, "doc-9", json.dumps(document).encode(), handlers)
        runner.wait(job.id, timeout=5)

        assert pipeline.poll(job.id).state == JobState.DONE
        assert (tmp_path / "doc-9.json").exists()
        assert [u.id for u in store.get_content_units("doc-9")] == ["u1"]
        assert store.get_paper_metadata("doc-9").title == "Block Routing"


class TestJobRunnerQueue:
    def test_stale_queued_job_is_not_started(self, pipeline, caplog):
        runner = JobRunner(pipeline, JobsConfig(max_workers=1))
        release = threading.Event()
        calls = []

        def blocking(context):
            release.wait(timeout=5)
            return "done"

        first = run_citation_check(
            runner, "doc-1", b"a", {label: blocking for label in CITATION_CHECK_STEPS},
        )
        queued = run_citation_check(
            runner, "doc-2", b"b", {label: (lambda context: calls.append(context)) for label in CITATION_CHECK_STEPS},
        )
        pipeline._jobs[queued.id].updated_at -= 10_000

        with caplog.at_level(logging.WARNING, logger="paperchat.jobs.workflows"):
            assert [j.id for j in pipeline.fail_stale_jobs()] == [queued.id]
            release.set()
            result = runner.wait(queued.id, timeout=5)
            runner.shutdown()

        assert result.state == JobState.FAILED
        assert "Timed out" in result.error
        assert calls == []
        assert pipeline.poll(first.id).state == JobState.DONE
        assert queued.id in caplog.text

    def test_finished_jobs_are_released(self, pipeline, runner):
        handlers = {label: (lambda context: None) for label in EXTRACTION_STEPS}
        jobs = [run_extraction(runner, f"doc-{i}", b"x", handlers) for i in range(3)]

        runner.shutdown(wait=True)

        assert all(pipeline.poll(j.id).state == JobState.DONE for j in jobs)
        assert runner._scheduled == {}
        assert runner.wait(jobs[0].id).state == JobState.DONE
