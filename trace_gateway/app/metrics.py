"""
Metrics collection for chain submissions.

Every attempt made by the transaction submitter is recorded here:
latency, outcome and failure kind. /metrics exposes the summary so an
operator can see congestion or nonce contention without reading logs.
"""
import threading
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


@dataclass
class SubmissionMetric:
    ts: str
    operation: str
    product_id: str
    latency_ms: float
    success: bool
    failure_kind: Optional[str] = None


@dataclass
class MetricsSummary:
    started_at: str
    total_submitted: int
    total_success: int
    total_failed: int
    avg_latency_ms: float
    p95_latency_ms: float
    by_operation: dict
    by_failure_kind: dict


class MetricsCollector:
    """Thread-safe, bounded collector of submission metrics."""

    def __init__(self, max_records: int = 5000):
        self._lock = threading.Lock()
        self._records: deque[SubmissionMetric] = deque(maxlen=max_records)
        self._started_at = datetime.now(timezone.utc).isoformat(timespec="seconds")

    def record(self, metric: SubmissionMetric):
        with self._lock:
            self._records.append(metric)

    def summary(self) -> MetricsSummary:
        with self._lock:
            records = list(self._records)

        latencies = sorted(r.latency_ms for r in records if r.success)
        success_count = sum(1 for r in records if r.success)

        avg = sum(latencies) / len(latencies) if latencies else 0.0
        p95 = latencies[int(len(latencies) * 0.95)] if latencies else 0.0

        return MetricsSummary(
            started_at=self._started_at,
            total_submitted=len(records),
            total_success=success_count,
            total_failed=len(records) - success_count,
            avg_latency_ms=round(avg, 2),
            p95_latency_ms=round(p95, 2),
            by_operation=dict(Counter(r.operation for r in records)),
            by_failure_kind=dict(Counter(r.failure_kind for r in records if not r.success)),
        )

    def recent(self, n: int = 50) -> list[SubmissionMetric]:
        with self._lock:
            return list(self._records)[-n:]

    def reset(self):
        with self._lock:
            self._records.clear()


# Module-level singleton - shared across the gateway process.
collector = MetricsCollector()
