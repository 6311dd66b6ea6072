from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Stage(str, Enum):
    """Deepest funnel stage a domain completed."""

    FAIL = "fail"
    DNS = "dns"
    HTTP = "http"
    TEXT = "text"


@dataclass(frozen=True)
class ResolveResult:
    has_dns: bool
    dns_ips: Optional[Tuple[str, ...]] = None
    error_type: Optional[str] = None
    latency_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.has_dns

    @classmethod
    def failed(cls, error_type: Optional[str] = None, latency_ms: int = 0) -> "ResolveResult":
        return cls(has_dns=False, error_type=error_type, latency_ms=latency_ms)


@dataclass(frozen=True)
class ProbeResult:
    http_ok: bool
    final_url: Optional[str] = None
    status_code: Optional[int] = None
    used_https: bool = False
    error_type: Optional[str] = None
    latency_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.http_ok

    @classmethod
    def failed(cls, error_type: Optional[str] = None, latency_ms: int = 0) -> "ProbeResult":
        return cls(http_ok=False, error_type=error_type, latency_ms=latency_ms)


@dataclass(frozen=True)
class TextResult:
    text_ok: bool
    homepage_text: Optional[str] = None
    error_type: Optional[str] = None
    latency_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.text_ok

    @classmethod
    def failed(cls, error_type: Optional[str] = None, latency_ms: int = 0) -> "TextResult":
        return cls(text_ok=False, error_type=error_type, latency_ms=latency_ms)


@dataclass(frozen=True)
class DomainRecord:
    """One output row per input domain.

    Fields owned by a stage that did not succeed are None, never an
    empty-looking value. Construction fails if the flags, the optional
    fields and ``stage`` disagree.
    """

    domain: str
    has_dns: bool
    dns_ips: Optional[Tuple[str, ...]]
    http_ok: bool
    final_url: Optional[str]
    status_code: Optional[int]
    used_https: bool
    text_ok: bool
    homepage_text: Optional[str]
    stage: Stage

    def __post_init__(self) -> None:
        if not self.domain:
            raise ValueError("domain is required")
        if self.has_dns != (self.dns_ips is not None):
            raise ValueError("dns_ips must be present iff has_dns")
        if self.http_ok and not self.has_dns:
            raise ValueError("http_ok requires has_dns")
        if self.http_ok != (self.final_url is not None) or self.http_ok != (self.status_code is not None):
            raise ValueError("final_url and status_code must be present iff http_ok")
        if self.used_https and not self.http_ok:
            raise ValueError("used_https requires http_ok")
        if self.text_ok and not self.http_ok:
            raise ValueError("text_ok requires http_ok")
        if self.text_ok != (self.homepage_text is not None):
            raise ValueError("homepage_text must be present iff text_ok")
        if self.stage is not _reached_stage(self.has_dns, self.http_ok, self.text_ok):
            raise ValueError(f"stage {self.stage.value!r} does not match the recorded flags")

    @classmethod
    def failed(cls, domain: str) -> "DomainRecord":
        return cls.from_stages(domain, ResolveResult.failed())

    @classmethod
    def from_stages(
        cls,
        domain: str,
        resolve: ResolveResult,
        probe: Optional[ProbeResult] = None,
        text: Optional[TextResult] = None,
    ) -> "DomainRecord":
        """Fold the stage results reached so far into a record.

        Results for stages after the first failing one are ignored.
        """
        has_dns = resolve.ok
        http_ok = has_dns and probe is not None and probe.ok
        text_ok = http_ok and text is not None and text.ok
        return cls(
            domain=domain,
            has_dns=has_dns,
            dns_ips=tuple(resolve.dns_ips) if has_dns else None,
            http_ok=http_ok,
            final_url=probe.final_url if http_ok else None,
            status_code=probe.status_code if http_ok else None,
            used_https=probe.used_https if http_ok else False,
            text_ok=text_ok,
            homepage_text=text.homepage_text if text_ok else None,
            stage=_reached_stage(has_dns, http_ok, text_ok),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "has_dns": self.has_dns,
            "dns_ips": list(self.dns_ips) if self.dns_ips is not None else None,
            "http_ok": self.http_ok,
            "final_url": self.final_url,
            "status_code": self.status_code,
            "used_https": self.used_https,
            "text_ok": self.text_ok,
            "homepage_text": self.homepage_text,
            "stage": self.stage.value,
        }


def _reached_stage(has_dns: bool, http_ok: bool, text_ok: bool) -> Stage:
    if text_ok:
        return Stage.TEXT
    if http_ok:
        return Stage.HTTP
    if has_dns:
        return Stage.DNS
    return Stage.FAIL


@dataclass(frozen=True)
class FunnelPass:
    """Everything the controller learned about one domain."""

    record: DomainRecord
    error_type: Optional[str] = None
    latencies_ms: Dict[Stage, int] = field(default_factory=dict)
    fault: bool = False


@dataclass(frozen=True)
class StageCounts:
    attempted: int
    succeeded: int
    failed: int
    rate_per_sec: float
    avg_latency_ms: float


@dataclass(frozen=True)
class ResourceUsage:
    rss_mb: float
    load_avg: Tuple[float, float, float]
    open_handles: Optional[int]
    threads: int


@dataclass(frozen=True)
class MetricsSnapshot:
    processed: int
    total: int
    elapsed_secs: float
    dns: StageCounts
    http: StageCounts
    text: StageCounts
    faults: int
    resources: Optional[ResourceUsage]
    timestamp: float
