from __future__ import annotations

import time
from collections import Counter
from threading import Lock
from typing import Dict, List, Optional, Tuple

import psutil

from .models import FunnelPass, MetricsSnapshot, ResourceUsage, Stage, StageCounts

_STAGES = (Stage.DNS, Stage.HTTP, Stage.TEXT)


class MetricsCollector:
    """Process-wide funnel counters.

    The controller records each FunnelPass once, where the pass completes.
    Attempts are implicit: every processed domain attempts DNS, and a stage
    is attempted only when the previous one succeeded."""

    def __init__(self, total: int = 0, sample_resources: bool = True) -> None:
        self._lock = Lock()
        self._total = total
        self._sample_resources = sample_resources
        self._started = time.monotonic()
        self._processed = 0
        self._faults = 0
        self._succeeded: Dict[Stage, int] = {s: 0 for s in _STAGES}
        self._failed: Dict[Stage, int] = {s: 0 for s in _STAGES}
        self._reasons: Dict[Stage, Counter] = {s: Counter() for s in _STAGES}
        self._latency_sum: Dict[Stage, int] = {s: 0 for s in _STAGES}
        self._latency_count: Dict[Stage, int] = {s: 0 for s in _STAGES}

    def start(self, total: int) -> None:
        """Reset the clock at the beginning of a run over ``total`` domains."""
        with self._lock:
            self._total = total
            self._started = time.monotonic()

    def record_pass(self, result: FunnelPass) -> None:
        reached = result.record.stage
        with self._lock:
            self._processed += 1
            if result.fault:
                self._faults += 1

            failed_at = _failing_stage(reached)
            for stage in _STAGES:
                if stage is failed_at:
                    self._failed[stage] += 1
                    self._reasons[stage][result.error_type or "Unknown"] += 1
                    break
                self._succeeded[stage] += 1

            for stage, latency_ms in result.latencies_ms.items():
                self._latency_sum[stage] += latency_ms
                self._latency_count[stage] += 1

    def should_log(self, interval: int) -> bool:
        """True on every ``interval``-th processed domain and on the last one."""
        with self._lock:
            processed, total = self._processed, self._total
        if processed == 0:
            return False
        return processed % interval == 0 or processed == total

    def snapshot(self) -> MetricsSnapshot:
        now = time.time()
        with self._lock:
            elapsed = time.monotonic() - self._started
            counts = {stage: self._stage_counts(stage, elapsed) for stage in _STAGES}
            processed, total, faults = self._processed, self._total, self._faults
        return MetricsSnapshot(
            processed=processed,
            total=total,
            elapsed_secs=elapsed,
            dns=counts[Stage.DNS],
            http=counts[Stage.HTTP],
            text=counts[Stage.TEXT],
            faults=faults,
            resources=sample_resources() if self._sample_resources else None,
            timestamp=now,
        )

    def top_reasons(self, stage: Stage, n: int = 3) -> List[Tuple[str, int]]:
        with self._lock:
            return self._reasons[stage].most_common(n)

    def _stage_counts(self, stage: Stage, elapsed: float) -> StageCounts:
        succeeded = self._succeeded[stage]
        failed = self._failed[stage]
        count = self._latency_count[stage]
        return StageCounts(
            attempted=succeeded + failed,
            succeeded=succeeded,
            failed=failed,
            rate_per_sec=rate(succeeded, elapsed),
            avg_latency_ms=(self._latency_sum[stage] / count) if count else 0.0,
        )


def _failing_stage(reached: Stage) -> Optional[Stage]:
    return {
        Stage.FAIL: Stage.DNS,
        Stage.DNS: Stage.HTTP,
        Stage.HTTP: Stage.TEXT,
        Stage.TEXT: None,
    }[reached]


def rate(count: int, elapsed_secs: float) -> float:
    return count / elapsed_secs if elapsed_secs > 0 else 0.0


def sample_resources() -> ResourceUsage:
    """Read-only host indicators; informational only."""
    proc = psutil.Process()
    try:
        handles: Optional[int] = proc.num_fds()
    except AttributeError:
        handles = getattr(proc, "num_handles", lambda: None)()
    load = psutil.getloadavg()
    return ResourceUsage(
        rss_mb=proc.memory_info().rss / 1e6,
        load_avg=(load[0], load[1], load[2]),
        open_handles=handles,
        threads=proc.num_threads(),
    )


def format_resources(usage: Optional[ResourceUsage]) -> str:
    if usage is None:
        return "resources n/a"
    loads = ", ".join(f"{v:.2f}" for v in usage.load_avg)
    handles = usage.open_handles if usage.open_handles is not None else "n/a"
    return f"RSS {usage.rss_mb:.1f}MB | Load [1,5,15m]: {loads} | Handles: {handles} | Threads: {usage.threads}"


def format_progress(snapshot: MetricsSnapshot) -> List[str]:
    lines = [f"[Progress] {snapshot.processed}/{snapshot.total} | Elapsed {snapshot.elapsed_secs:.1f}s"]
    for label, counts in (("DNS", snapshot.dns), ("HTTP", snapshot.http), ("TEXT", snapshot.text)):
        lines.append(
            f"  {label + ':':<5} ok={counts.succeeded} fail={counts.failed} "
            f"rate={counts.rate_per_sec:.2f}/s avg={counts.avg_latency_ms:.0f}ms"
        )
    lines.append(f"  {format_resources(snapshot.resources)}")
    return lines
