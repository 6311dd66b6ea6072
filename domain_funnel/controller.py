from __future__ import annotations

import logging
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Deque, Dict, List, Optional, Sequence

from .base import BaseStage
from .config import FunnelConfig
from .limiter import StageLimiter
from .metrics import MetricsCollector, format_progress
from .models import DomainRecord, FunnelPass, MetricsSnapshot, Stage
from .stages import DnsResolveStage, HttpFetcher, HttpProbeStage, TextExtractStage
from .storage import StorageBase

logger = logging.getLogger(__name__)


class FunnelController:
    """Runs every domain through resolve -> probe -> extract.

    - Each pass stops at the first failing stage and still yields a record.
    - Passes run on a bounded thread pool; each stage stays capped by its own
      limiter. ``workers=1`` processes domains strictly one at a time.
    - Finished passes are consumed in submission order, so records reach the
      sink and the metrics in input order, from this thread only.
    """

    def __init__(
        self,
        resolve: BaseStage,
        probe: BaseStage,
        extract: BaseStage,
        metrics: Optional[MetricsCollector] = None,
        log_interval: int = 100,
        workers: int = 1,
    ) -> None:
        self._resolve = resolve
        self._probe = probe
        self._extract = extract
        self._metrics = metrics or MetricsCollector()
        self._log_interval = max(1, log_interval)
        self._workers = max(1, workers)

    @classmethod
    def from_config(cls, config: FunnelConfig, metrics: Optional[MetricsCollector] = None) -> "FunnelController":
        fetcher = HttpFetcher(
            timeout_secs=config.timeout_secs,
            max_redirects=config.max_redirects,
            user_agent=config.user_agent,
            impersonate=config.impersonate,
            max_body_bytes=config.max_body_bytes,
        )
        resolve = DnsResolveStage(
            StageLimiter("dns", config.dns_concurrency),
            nameserver=config.resolver,
            port=config.resolver_port,
            timeout_secs=config.dns_timeout_secs,
        )
        probe = HttpProbeStage(StageLimiter("http", config.http_concurrency), fetcher)
        extract = TextExtractStage(
            StageLimiter("text", config.text_concurrency),
            fetcher,
            min_chars=config.text_min_chars,
            max_chars=config.text_max_chars,
        )
        return cls(
            resolve,
            probe,
            extract,
            metrics=metrics,
            log_interval=config.log_interval,
            workers=config.workers,
        )

    def run(self, domains: Sequence[str], sink: StorageBase) -> MetricsSnapshot:
        """Process all domains, writing exactly one record per domain to sink."""
        self._metrics.start(len(domains))
        window = self._workers * 2
        pending: Deque[Future] = deque()
        executor = ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="funnel")
        try:
            for domain in domains:
                pending.append(executor.submit(self.process, domain))
                if len(pending) >= window:
                    self._complete(pending.popleft().result(), sink)
            while pending:
                self._complete(pending.popleft().result(), sink)
        except BaseException:
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown(wait=True)
        return self._metrics.snapshot()

    def process(self, domain: str) -> FunnelPass:
        """One funnel pass. Never raises."""
        latencies: Dict[Stage, int] = {}
        try:
            resolve = self._resolve.run(domain)
            latencies[Stage.DNS] = resolve.latency_ms
            if not resolve.ok:
                return FunnelPass(DomainRecord.from_stages(domain, resolve), resolve.error_type, latencies)

            probe = self._probe.run(domain)
            latencies[Stage.HTTP] = probe.latency_ms
            if not probe.ok:
                return FunnelPass(DomainRecord.from_stages(domain, resolve, probe), probe.error_type, latencies)

            text = self._extract.run(probe.final_url)
            latencies[Stage.TEXT] = text.latency_ms
            record = DomainRecord.from_stages(domain, resolve, probe, text)
            return FunnelPass(record, text.error_type, latencies)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Unexpected %s while processing %s: %s",
                type(exc).__name__,
                domain,
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            return FunnelPass(
                DomainRecord.failed(domain),
                error_type=type(exc).__name__,
                latencies_ms=latencies,
                fault=True,
            )

    def _complete(self, result: FunnelPass, sink: StorageBase) -> None:
        self._metrics.record_pass(result)
        sink.write(result.record)
        logger.debug(
            "%s stage=%s reason=%s",
            result.record.domain,
            result.record.stage.value,
            result.error_type,
        )
        if self._metrics.should_log(self._log_interval):
            for line in format_progress(self._metrics.snapshot()):
                logger.info(line)

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def limiters(self) -> List[StageLimiter]:
        return [self._resolve.limiter, self._probe.limiter, self._extract.limiter]
