"""Selector performance metrics.

Tracks how often each container and field rule matches and how often its
matches hold up, so rule authors can find brittle selectors. The collector
is a plain object owned by the caller; persistence happens only when the
caller asks for it via ``load``/``flush``.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from functools import cmp_to_key
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from admirror.config.settings import EngineSettings
from admirror.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1000
PROBLEMATIC_MIN_SAMPLES = 10
TOP_MIN_SAMPLES = 5
STALE_MAX_SAMPLES = 5
SUCCESS_RATE_TIE_MARGIN = 0.1

RuleKind = Literal["container", "field"]

_WIRE_CONFIG = ConfigDict(populate_by_name=True, alias_generator=to_camel)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SelectorPerformanceMetric(BaseModel):
    model_config = _WIRE_CONFIG

    rule_id: str
    rule_type: RuleKind
    times_matched: int = 0
    times_validated: int = 0
    average_confidence: float = 0.0
    last_used: datetime = Field(default_factory=_utcnow)
    success_rate: float = 0.0

    def record(self, hit: bool, sample: float, at: datetime) -> None:
        self.times_matched += 1
        if hit:
            self.times_validated += 1
        n = self.times_matched
        self.average_confidence = (self.average_confidence * (n - 1) + sample) / n
        self.success_rate = self.times_validated / n
        self.last_used = at


class MetricsSnapshot(BaseModel):
    """Exported metrics, as written by ``flush`` and read by ``load``."""

    model_config = _WIRE_CONFIG

    timestamp: datetime = Field(default_factory=_utcnow)
    platform: str = "all"
    total_detections: int = 0
    metrics: list[SelectorPerformanceMetric] = Field(default_factory=list)


class MetricsSummary(BaseModel):
    model_config = _WIRE_CONFIG

    total_rules: int
    total_matches: int
    avg_success_rate: float
    avg_confidence: float
    problematic_rules_count: int


def _compare_top(a: SelectorPerformanceMetric, b: SelectorPerformanceMetric) -> int:
    # Success rate decides unless the two are close; then confidence does.
    if abs(a.success_rate - b.success_rate) > SUCCESS_RATE_TIE_MARGIN:
        diff = b.success_rate - a.success_rate
    else:
        diff = b.average_confidence - a.average_confidence
    return (diff > 0) - (diff < 0)


class SelectorMetricsCollector:
    """Thread-safe, bounded store of per-rule performance metrics.

    ``path`` is the snapshot file used by ``load()`` and ``flush()`` when
    they are called without one.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES, path: Path | None = None) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._max_entries = max_entries
        self._path = path
        self._metrics: dict[str, SelectorPerformanceMetric] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: EngineSettings | None = None) -> SelectorMetricsCollector:
        settings = settings or EngineSettings()
        return cls(max_entries=settings.metrics_max_entries, path=settings.metrics_path)

    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def path(self) -> Path | None:
        return self._path

    def _resolve_path(self, path: Path | None) -> Path:
        resolved = path or self._path
        if resolved is None:
            raise ValueError("No metrics path given and none configured")
        return resolved

    def __len__(self) -> int:
        with self._lock:
            return len(self._metrics)

    # --- Recording ---

    def record_container_match(self, rule_id: str, validated: bool, confidence: float) -> None:
        """A container rule matched; ``validated`` says whether the candidate was accepted."""
        self._record(rule_id, "container", validated, confidence)

    def record_field_match(self, rule_id: str, found: bool, score: float) -> None:
        """A field rule was attempted; ``found`` says whether it produced a value."""
        self._record(rule_id, "field", found, score)

    def _record(self, rule_id: str, rule_type: RuleKind, hit: bool, sample: float) -> None:
        with self._lock:
            metric = self._metrics.get(rule_id)
            if metric is None:
                metric = SelectorPerformanceMetric(rule_id=rule_id, rule_type=rule_type)
                self._metrics[rule_id] = metric
            metric.record(hit, sample, _utcnow())
            self._prune_locked()

    # --- Queries ---

    def get_metrics(self) -> list[SelectorPerformanceMetric]:
        with self._lock:
            return [metric.model_copy() for metric in self._metrics.values()]

    def get_metric(self, rule_id: str) -> SelectorPerformanceMetric | None:
        with self._lock:
            metric = self._metrics.get(rule_id)
            return metric.model_copy() if metric is not None else None

    def get_problematic_rules(self, threshold: float = 0.5) -> list[SelectorPerformanceMetric]:
        """Rules with enough samples whose success rate is below ``threshold``, worst first."""
        problematic = [
            metric
            for metric in self.get_metrics()
            if metric.success_rate < threshold and metric.times_matched >= PROBLEMATIC_MIN_SAMPLES
        ]
        return sorted(problematic, key=lambda m: m.success_rate)

    def get_top_rules(self, n: int = 10) -> list[SelectorPerformanceMetric]:
        candidates = [m for m in self.get_metrics() if m.times_matched >= TOP_MIN_SAMPLES]
        return sorted(candidates, key=cmp_to_key(_compare_top))[:n]

    def get_stale_rules(self, days: int = 30) -> list[SelectorPerformanceMetric]:
        """Rarely used rules not seen for ``days`` days; candidates for removal."""
        cutoff = _utcnow() - timedelta(days=days)
        return [
            metric
            for metric in self.get_metrics()
            if metric.last_used < cutoff and metric.times_matched < STALE_MAX_SAMPLES
        ]

    def summary(self) -> MetricsSummary:
        metrics = self.get_metrics()
        if not metrics:
            return MetricsSummary(
                total_rules=0,
                total_matches=0,
                avg_success_rate=0.0,
                avg_confidence=0.0,
                problematic_rules_count=0,
            )
        return MetricsSummary(
            total_rules=len(metrics),
            total_matches=sum(m.times_matched for m in metrics),
            avg_success_rate=sum(m.success_rate for m in metrics) / len(metrics),
            avg_confidence=sum(m.average_confidence for m in metrics) / len(metrics),
            problematic_rules_count=len(self.get_problematic_rules()),
        )

    # --- Export / import ---

    def export_metrics(self, platform: str | None = None) -> MetricsSnapshot:
        metrics = self.get_metrics()
        return MetricsSnapshot(
            platform=platform or "all",
            total_detections=sum(m.times_matched for m in metrics),
            metrics=metrics,
        )

    def import_metrics(self, snapshot: MetricsSnapshot) -> None:
        """Merge a snapshot in; imported entries replace same-id entries."""
        with self._lock:
            for metric in snapshot.metrics:
                self._metrics[metric.rule_id] = metric.model_copy()
            self._prune_locked()

    def clear(self) -> None:
        with self._lock:
            self._metrics.clear()

    def prune(self) -> None:
        with self._lock:
            self._prune_locked()

    def _prune_locked(self) -> None:
        if len(self._metrics) <= self._max_entries:
            return
        ranked = sorted(
            self._metrics.values(),
            key=lambda m: (m.times_matched, m.last_used),
            reverse=True,
        )
        kept = ranked[: self._max_entries]
        dropped = len(self._metrics) - len(kept)
        self._metrics = {metric.rule_id: metric for metric in kept}
        logger.debug("Pruned %d metric entries (cap %d)", dropped, self._max_entries)

    # --- Persistence ---

    def load(self, path: Path | None = None) -> int:
        """Merge metrics from a snapshot file. Returns the number of entries read.

        Defaults to the configured path. A missing file is not an error. A
        corrupt file is logged and ignored.
        """
        path = self._resolve_path(path)
        if not path.exists():
            return 0
        try:
            snapshot = MetricsSnapshot.model_validate_json(path.read_text())
        except (OSError, ValidationError) as e:
            emit_structured_error(
                logger,
                code=ErrorCode.METRICS_LOAD_FAILED,
                message=str(e),
                suppressed=True,
                phase="metrics",
                details={"path": str(path)},
            )
            return 0
        self.import_metrics(snapshot)
        logger.info("Loaded %d selector metrics from %s", len(snapshot.metrics), path)
        return len(snapshot.metrics)

    def flush(self, path: Path | None = None, platform: str | None = None) -> int:
        """Atomically write a snapshot, to the configured path by default.

        Returns the number of entries written.
        """
        path = self._resolve_path(path)
        snapshot = self.export_metrics(platform)
        path.parent.mkdir(parents=True, exist_ok=True)

        # Write atomically: write to temp file then rename
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(snapshot.model_dump_json(by_alias=True, indent=2))
            temp_path.replace(path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise

        logger.debug("Flushed %d selector metrics to %s", len(snapshot.metrics), path)
        return len(snapshot.metrics)
