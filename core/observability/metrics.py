"""
Metrics Collection for the Reconciliation Service

Collects and exposes metrics for:
- Run lifecycle (started, completed, rejected, failed)
- Rows (kept, dropped) and results per status
- Collaborator fallbacks (column inference, transliteration)
- Processing times per stage (average, p95)

Metrics are kept in memory for the lifetime of the process.
"""

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, List, Optional


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class RunMetrics:
    """Metrics for reconciliation runs."""
    started: int = 0
    completed: int = 0
    rejected: int = 0
    failed: int = 0

    # Rejections by error code
    rejected_by_code: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class RowMetrics:
    """Metrics for processed rows."""
    kept: int = 0
    dropped: int = 0
    by_status: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class TimingMetrics:
    """Processing time metrics."""
    max_samples: int = 1000

    # By stage
    by_stage: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))

    def add_sample(self, duration_ms: float, stage: str):
        """Add a timing sample."""
        samples = self.by_stage[stage]
        samples.append(duration_ms)
        if len(samples) > self.max_samples:
            self.by_stage[stage] = samples[-self.max_samples:]

    def get_average(self, stage: str) -> float:
        samples = self.by_stage.get(stage, [])
        return statistics.mean(samples) if samples else 0.0

    def get_p95(self, stage: str) -> float:
        """Get 95th percentile processing time."""
        samples = self.by_stage.get(stage, [])
        if not samples:
            return 0.0
        sorted_samples = sorted(samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]


# =============================================================================
# Metrics Collector (Singleton)
# =============================================================================

class MetricsCollector:
    """
    Thread-safe metrics collector for the reconciliation service.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_run_started()
        metrics.record_processing_time("match", 12.5)
    """

    _instance: Optional["MetricsCollector"] = None
    _lock = Lock()

    def __init__(self):
        self.runs = RunMetrics()
        self.rows = RowMetrics()
        self.timings = TimingMetrics()
        self.collaborator_fallbacks: Dict[str, int] = defaultdict(int)
        self._lock = Lock()

    @classmethod
    def instance(cls) -> "MetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    # =========================================================================
    # Run Metrics
    # =========================================================================

    def record_run_started(self):
        with self._lock:
            self.runs.started += 1

    def record_run_completed(self, kept_rows: int, dropped_rows: int, status_counts: Dict[str, int]):
        """Record a finished run and its row outcomes."""
        with self._lock:
            self.runs.completed += 1
            self.rows.kept += kept_rows
            self.rows.dropped += dropped_rows
            for status, count in status_counts.items():
                self.rows.by_status[status] += count

    def record_run_rejected(self, code: str):
        with self._lock:
            self.runs.rejected += 1
            self.runs.rejected_by_code[code] += 1

    def record_run_failed(self):
        with self._lock:
            self.runs.failed += 1

    def record_collaborator_fallback(self, collaborator: str):
        """Record a collaborator call that degraded to defaults."""
        with self._lock:
            self.collaborator_fallbacks[collaborator] += 1

    # =========================================================================
    # Timing Metrics
    # =========================================================================

    def record_processing_time(self, stage: str, duration_ms: float):
        """Record a processing time sample."""
        with self._lock:
            self.timings.add_sample(duration_ms, stage)

    def get_timing_stats(self, stage: str) -> Dict[str, float]:
        """Get timing statistics for a stage."""
        with self._lock:
            return {
                "average_ms": self.timings.get_average(stage),
                "p95_ms": self.timings.get_p95(stage),
                "sample_count": len(self.timings.by_stage.get(stage, [])),
            }

    # =========================================================================
    # Summary
    # =========================================================================

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "runs": {
                    "started": self.runs.started,
                    "completed": self.runs.completed,
                    "rejected": self.runs.rejected,
                    "failed": self.runs.failed,
                    "rejected_by_code": dict(self.runs.rejected_by_code),
                },
                "rows": {
                    "kept": self.rows.kept,
                    "dropped": self.rows.dropped,
                    "by_status": dict(self.rows.by_status),
                },
                "collaborator_fallbacks": dict(self.collaborator_fallbacks),
                "timings": {
                    stage: {
                        "average_ms": self.timings.get_average(stage),
                        "p95_ms": self.timings.get_p95(stage),
                    }
                    for stage in self.timings.by_stage.keys()
                },
            }


# =============================================================================
# Module-level convenience functions
# =============================================================================

def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return MetricsCollector.instance()


def record_collaborator_fallback(collaborator: str):
    get_metrics().record_collaborator_fallback(collaborator)


def record_processing_time(stage: str, duration_ms: float):
    """Record a processing time sample."""
    get_metrics().record_processing_time(stage, duration_ms)
