"""
Metrics Collection for the Migration Engine

Collects and exposes metrics for:
- Migration runs (started, completed, failed, skipped)
- Pass execution (started, completed, failed)
- Processing times per pass (average, p95)
- Repairs applied, by kind (owner_created, fk_remapped, enum_defaulted, ...)

Metrics are process-local and kept in memory.
"""

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, List, Optional, Any


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class RunMetrics:
    """Metrics for migration runs."""
    started: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    in_progress: int = 0

    # By target version
    by_version: Dict[int, Dict[str, int]] = field(default_factory=lambda: defaultdict(lambda: {"started": 0, "completed": 0, "failed": 0}))


@dataclass
class PassMetrics:
    """Metrics for pass execution."""
    started: int = 0
    completed: int = 0
    failed: int = 0

    # By pass name
    by_name: Dict[str, Dict[str, int]] = field(default_factory=lambda: defaultdict(lambda: {"started": 0, "completed": 0, "failed": 0}))


@dataclass
class TimingMetrics:
    """Processing time metrics."""
    # Raw timing samples (keep last N for percentile calculations)
    samples: List[float] = field(default_factory=list)
    max_samples: int = 1000

    # By stage
    by_stage: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))

    def add_sample(self, duration_ms: float, stage: str = None):
        """Add a timing sample."""
        self.samples.append(duration_ms)
        if len(self.samples) > self.max_samples:
            self.samples = self.samples[-self.max_samples:]

        if stage:
            self.by_stage[stage].append(duration_ms)
            if len(self.by_stage[stage]) > self.max_samples:
                self.by_stage[stage] = self.by_stage[stage][-self.max_samples:]

    def get_average(self, stage: str = None) -> float:
        """Get average processing time."""
        samples = self.by_stage.get(stage, []) if stage else self.samples
        return statistics.mean(samples) if samples else 0.0

    def get_p95(self, stage: str = None) -> float:
        """Get 95th percentile processing time."""
        samples = self.by_stage.get(stage, []) if stage else self.samples
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
    Thread-safe metrics collector for migration runs.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_run_started(target_version=3)
        metrics.record_pass_completed("referential_repair", duration_ms=4.2)
        metrics.record_repairs("fk_remapped", 2)
    """

    _instance: Optional["MetricsCollector"] = None
    _lock = Lock()

    def __init__(self):
        self.runs = RunMetrics()
        self.passes = PassMetrics()
        self.timings = TimingMetrics()
        self.repairs: Dict[str, int] = defaultdict(int)
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

    def record_run_started(self, target_version: int):
        """Record a migration run start."""
        with self._lock:
            self.runs.started += 1
            self.runs.in_progress += 1
            self.runs.by_version[target_version]["started"] += 1

    def record_run_completed(self, target_version: int, duration_ms: float = None):
        """Record a migration run completion."""
        with self._lock:
            self.runs.completed += 1
            self.runs.in_progress = max(0, self.runs.in_progress - 1)
            self.runs.by_version[target_version]["completed"] += 1

            if duration_ms is not None:
                self.timings.add_sample(duration_ms, "run")

    def record_run_failed(self, target_version: int, error: str = None):
        """Record a migration run failure."""
        with self._lock:
            self.runs.failed += 1
            self.runs.in_progress = max(0, self.runs.in_progress - 1)
            self.runs.by_version[target_version]["failed"] += 1

    def record_run_skipped(self):
        """Record a run that the version gate turned away."""
        with self._lock:
            self.runs.skipped += 1

    # =========================================================================
    # Pass Metrics
    # =========================================================================

    def record_pass_started(self, pass_name: str):
        """Record a pass start."""
        with self._lock:
            self.passes.started += 1
            self.passes.by_name[pass_name]["started"] += 1

    def record_pass_completed(self, pass_name: str, duration_ms: float = None):
        """Record a pass completion."""
        with self._lock:
            self.passes.completed += 1
            self.passes.by_name[pass_name]["completed"] += 1

            if duration_ms is not None:
                self.timings.add_sample(duration_ms, f"pass.{pass_name}")

    def record_pass_failed(self, pass_name: str, error: str = None):
        """Record a pass failure."""
        with self._lock:
            self.passes.failed += 1
            self.passes.by_name[pass_name]["failed"] += 1

    # =========================================================================
    # Repair Counters
    # =========================================================================

    def record_repairs(self, kind: str, count: int = 1):
        """Add to the counter for one kind of repair."""
        if count <= 0:
            return
        with self._lock:
            self.repairs[kind] += count

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
                    "failed": self.runs.failed,
                    "skipped": self.runs.skipped,
                    "in_progress": self.runs.in_progress,
                    "by_version": {k: dict(v) for k, v in self.runs.by_version.items()},
                },
                "passes": {
                    "started": self.passes.started,
                    "completed": self.passes.completed,
                    "failed": self.passes.failed,
                    "by_name": {k: dict(v) for k, v in self.passes.by_name.items()},
                },
                "repairs": dict(self.repairs),
                "timings": {
                    "overall": {
                        "average_ms": self.timings.get_average(),
                        "p95_ms": self.timings.get_p95(),
                    },
                    "by_stage": {
                        stage: {
                            "average_ms": self.timings.get_average(stage),
                            "p95_ms": self.timings.get_p95(stage),
                        }
                        for stage in self.timings.by_stage.keys()
                    },
                },
            }


# =============================================================================
# Module-level convenience functions
# =============================================================================

def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return MetricsCollector.instance()
