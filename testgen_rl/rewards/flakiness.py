"""
Cross-run flakiness tracking.

Execution outcomes are kept per artifact fingerprint in a bounded ring
buffer. Because the fingerprint is a hash of the artifact text, byte-identical
artifacts produced by unrelated workflows share one history.
"""

from __future__ import annotations

import hashlib
import math
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional

DEFAULT_CAPACITY = 10
DEFAULT_WINDOW = 5

# Largest standard deviation pass rates in [0, 1] can reasonably show.
MAX_PASS_RATE_STDDEV = 0.5


def fingerprint_artifact(artifact_text: str) -> str:
    """Deterministic content hash identifying a tested artifact."""
    return hashlib.sha256(artifact_text.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ExecutionRunSample:
    """One historical execution outcome."""

    fingerprint: str
    pass_rate: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class StabilityReport:
    """Flakiness estimate for one fingerprint."""

    flakiness: float
    stability: float
    variance: float = 0.0
    mean_pass_rate: Optional[float] = None
    run_count: int = 1

    def to_dict(self) -> Dict[str, object]:
        return {
            "flakiness": self.flakiness,
            "stability": self.stability,
            "variance": self.variance,
            "mean_pass_rate": self.mean_pass_rate,
            "run_count": self.run_count,
        }


class _Bucket:
    """History for one fingerprint, guarded by its own lock."""

    def __init__(self, capacity: int):
        self.lock = threading.Lock()
        self.samples: Deque[ExecutionRunSample] = deque(maxlen=capacity)


class FlakinessTracker:
    """Bounded per-fingerprint execution history and stability estimates.

    Each fingerprint bucket has its own mutex, so workflows testing different
    artifacts never contend; the bucket registry itself is guarded only while
    a bucket is looked up or created.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, window: int = DEFAULT_WINDOW):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if window < 1:
            raise ValueError("window must be at least 1")
        self.capacity = capacity
        self.window = window
        self._buckets: Dict[str, _Bucket] = {}
        self._registry_lock = threading.Lock()

    def _bucket(self, fingerprint: str) -> _Bucket:
        with self._registry_lock:
            bucket = self._buckets.get(fingerprint)
            if bucket is None:
                bucket = _Bucket(self.capacity)
                self._buckets[fingerprint] = bucket
            return bucket

    def record_run(
        self,
        fingerprint: str,
        pass_rate: float,
        timestamp: Optional[datetime] = None,
    ) -> ExecutionRunSample:
        """Append a sample, evicting the oldest once the buffer is full."""
        sample = self._make_sample(fingerprint, pass_rate, timestamp)
        bucket = self._bucket(fingerprint)
        with bucket.lock:
            bucket.samples.append(sample)
        return sample

    def stability_of(self, fingerprint: str, current_pass_rate: float) -> StabilityReport:
        """Estimate flakiness from prior samples plus the current run."""
        bucket = self._bucket(fingerprint)
        with bucket.lock:
            prior = [s.pass_rate for s in bucket.samples]
        return self._estimate(prior, current_pass_rate)

    def observe(
        self,
        fingerprint: str,
        current_pass_rate: float,
        timestamp: Optional[datetime] = None,
    ) -> StabilityReport:
        """Estimate stability, then record the run, as one atomic step."""
        sample = self._make_sample(fingerprint, current_pass_rate, timestamp)
        bucket = self._bucket(fingerprint)
        with bucket.lock:
            prior = [s.pass_rate for s in bucket.samples]
            bucket.samples.append(sample)
        return self._estimate(prior, sample.pass_rate)

    def history(self, fingerprint: str) -> List[ExecutionRunSample]:
        """Samples for ``fingerprint``, oldest first."""
        with self._registry_lock:
            bucket = self._buckets.get(fingerprint)
        if bucket is None:
            return []
        with bucket.lock:
            return list(bucket.samples)

    def fingerprints(self) -> List[str]:
        with self._registry_lock:
            return list(self._buckets)

    def _make_sample(
        self, fingerprint: str, pass_rate: float, timestamp: Optional[datetime]
    ) -> ExecutionRunSample:
        if not fingerprint:
            raise ValueError("fingerprint must not be empty")
        if not 0.0 <= pass_rate <= 1.0:
            raise ValueError(f"pass_rate must be within [0, 1], got {pass_rate}")
        if timestamp is None:
            return ExecutionRunSample(fingerprint=fingerprint, pass_rate=pass_rate)
        return ExecutionRunSample(fingerprint=fingerprint, pass_rate=pass_rate, timestamp=timestamp)

    def _estimate(self, prior: List[float], current_pass_rate: float) -> StabilityReport:
        # First run of an artifact is assumed stable.
        if not prior:
            return StabilityReport(
                flakiness=0.0,
                stability=1.0,
                mean_pass_rate=current_pass_rate,
                run_count=1,
            )

        rates = prior[-self.window:] + [current_pass_rate]
        mean = sum(rates) / len(rates)
        variance = sum((r - mean) ** 2 for r in rates) / len(rates)
        flakiness = min(1.0, math.sqrt(variance) / MAX_PASS_RATE_STDDEV)
        flakiness = max(0.0, flakiness)
        return StabilityReport(
            flakiness=flakiness,
            stability=max(0.0, min(1.0, 1.0 - flakiness)),
            variance=variance,
            mean_pass_rate=mean,
            run_count=len(rates),
        )
