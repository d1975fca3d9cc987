"""Metrics and health reporting for the question-answering and job paths.

Counters, gauges and latency histograms are kept in memory by a
thread-safe collector, exportable as a JSON summary or in Prometheus
text format.
"""

import json
import logging
import os
import time
from collections import defaultdict
from pathlib import Path
from threading import Lock
from typing import Any

from paperchat.config import PROJECT_ROOT

logger = logging.getLogger(__name__)

QUANTILES = (0.5, 0.9, 0.99)


def _percentile(sorted_vals: list[float], q: float) -> float:
    return sorted_vals[min(int(len(sorted_vals) * q), len(sorted_vals) - 1)]


class MetricsCollector:
    """Thread-safe metrics collector.

    Tracks:
        - Stage latency (classification, ranking, assembly, generation, jobs)
        - Questions per query type
        - Job submissions, deduplications, completions and failures
        - Model call failures
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: dict[str, float] = defaultdict(float)
        self._histograms: dict[str, list[float]] = defaultdict(list)
        self._gauges: dict[str, float] = {}

    def increment(self, name: str, value: float = 1.0, labels: dict[str, str] | None = None) -> None:
        key = self._key(name, labels)
        with self._lock:
            self._counters[key] += value

    def observe(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        key = self._key(name, labels)
        with self._lock:
            self._histograms[key].append(value)

    def set_gauge(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        key = self._key(name, labels)
        with self._lock:
            self._gauges[key] = value

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
            self._gauges.clear()

    def get_summary(self) -> dict[str, Any]:
        """Counters, gauges and per-histogram count/mean/min/max/quantiles."""
        with self._lock:
            histograms = {}
            for name, values in self._histograms.items():
                if not values:
                    continue
                sorted_vals = sorted(values)
                stats = {
                    "count": len(sorted_vals),
                    "mean": sum(sorted_vals) / len(sorted_vals),
                    "min": sorted_vals[0],
                    "max": sorted_vals[-1],
                }
                for q in QUANTILES:
                    stats[f"p{int(q * 100)}"] = _percentile(sorted_vals, q)
                histograms[name] = stats

            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": histograms,
            }

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus text exposition format."""
        summary = self.get_summary()
        lines = []
        for metric_type, values in (("counter", summary["counters"]), ("gauge", summary["gauges"])):
            for name, value in values.items():
                metric_name = self._metric_name(name)
                lines.append(f"# TYPE {metric_name.split('{')[0]} {metric_type}")
                lines.append(f"{metric_name} {value}")

        for name, stats in summary["histograms"].items():
            metric_name = self._metric_name(name)
            lines.append(f"# TYPE {metric_name} summary")
            for q in QUANTILES:
                lines.append(f'{metric_name}{{quantile="{q}"}} {stats[f"p{int(q * 100)}"]}')
            lines.append(f"{metric_name}_count {stats['count']}")
            lines.append(f"{metric_name}_sum {stats['mean'] * stats['count']}")

        return "\n".join(lines)

    def save_snapshot(self, path: str | None = None) -> Path:
        """Save current metrics to a JSON file."""
        output = Path(path) if path else PROJECT_ROOT / "logs" / "metrics_snapshot.json"
        output.parent.mkdir(parents=True, exist_ok=True)

        summary = self.get_summary()
        summary["exported_at"] = time.time()
        with open(output, "w") as f:
            json.dump(summary, f, indent=2)

        logger.info("Metrics snapshot saved to %s", output)
        return output

    @staticmethod
    def _metric_name(name: str) -> str:
        base, brace, labels = name.partition("{")
        return base.replace(".", "_").replace("-", "_") + brace + labels

    @staticmethod
    def _key(name: str, labels: dict[str, str] | None = None) -> str:
        if not labels:
            return name
        label_str = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


class LatencyTracker:
    """Context manager recording an operation's latency and call count."""

    def __init__(self, collector: MetricsCollector, operation: str) -> None:
        self.collector = collector
        self.operation = operation
        self._start: float = 0

    def __enter__(self) -> "LatencyTracker":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args) -> None:
        elapsed_ms = (time.perf_counter() - self._start) * 1000
        self.collector.observe(f"latency_ms.{self.operation}", elapsed_ms)
        self.collector.increment(f"requests.{self.operation}")


# Global metrics instance
metrics = MetricsCollector()


def health_check(content_dir: str | Path | None = None, job_pipeline=None) -> dict[str, Any]:
    """Report readiness of the content store, model credentials and job registry.

    Args:
        content_dir: Directory of extracted content; defaults to ``data/content``.
        job_pipeline: Optional JobPipeline whose active job count is reported.

    Returns:
        Health status dict with per-component readiness.
    """
    content_path = Path(content_dir) if content_dir else PROJECT_ROOT / "data" / "content"
    components: dict[str, Any] = {
        "content_store": {
            "status": "ready" if content_path.exists() else "empty",
            "path": str(content_path),
        },
        "anthropic_api": {
            "status": "configured" if os.getenv("ANTHROPIC_API_KEY") else "missing_key",
        },
    }

    if job_pipeline is not None:
        jobs = job_pipeline.list_jobs()
        components["jobs"] = {
            "status": "ready",
            "active": sum(1 for j in jobs if not j.is_terminal),
            "total": len(jobs),
        }

    degraded = any(c["status"] in ("empty", "missing_key") for c in components.values())
    return {
        "status": "degraded" if degraded else "healthy",
        "timestamp": time.time(),
        "components": components,
    }
