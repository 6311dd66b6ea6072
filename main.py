from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from domain_funnel import config as defaults
from domain_funnel.config import FunnelConfig
from domain_funnel.controller import FunnelController
from domain_funnel.metrics import MetricsCollector, format_resources, rate
from domain_funnel.models import MetricsSnapshot, Stage
from domain_funnel.sources import SourceError, load_domains
from domain_funnel.storage import StorageBase, StorageError, build_storage

logger = logging.getLogger("domain_funnel")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Check a batch of domains for DNS, HTTP reachability and homepage text"
    )
    parser.add_argument("--input", default=defaults.DEFAULT_INPUT_PATH, help="Input .parquet (domain column) or text list")
    parser.add_argument("--output", default=defaults.DEFAULT_OUTPUT_PATH, help="Output file path")
    parser.add_argument("--format", choices=defaults.OUTPUT_FORMATS, default=None, help="Output format (default: from --output suffix)")
    parser.add_argument("--limit", type=int, default=None, help="Max number of domains to load")

    parser.add_argument("--log-interval", type=int, default=defaults.DEFAULT_LOG_INTERVAL, help="Log progress every N domains")
    parser.add_argument("--text-min-chars", type=int, default=defaults.DEFAULT_TEXT_MIN_CHARS, help="Minimum homepage text length")
    parser.add_argument("--text-max-chars", type=int, default=defaults.DEFAULT_TEXT_MAX_CHARS, help="Homepage text is truncated to this length")
    parser.add_argument("--timeout-ms", type=int, default=defaults.DEFAULT_TIMEOUT_MS, help="Per-request HTTP timeout")
    parser.add_argument("--dns-timeout-ms", type=int, default=defaults.DEFAULT_DNS_TIMEOUT_MS, help="Per-lookup DNS timeout")
    parser.add_argument("--max-redirects", type=int, default=defaults.DEFAULT_MAX_REDIRECTS, help="Redirects followed per request")
    parser.add_argument("--max-body-bytes", type=int, default=defaults.DEFAULT_MAX_BODY_BYTES, help="Response bytes read per page")

    parser.add_argument("--dns-concurrency", type=int, default=defaults.DEFAULT_DNS_CONCURRENCY, help="Max in-flight DNS lookups")
    parser.add_argument("--http-concurrency", type=int, default=defaults.DEFAULT_HTTP_CONCURRENCY, help="Max in-flight HTTP probes")
    parser.add_argument("--text-concurrency", type=int, default=defaults.DEFAULT_TEXT_CONCURRENCY, help="Max in-flight text extractions")
    parser.add_argument("--workers", type=int, default=defaults.DEFAULT_WORKERS, help="Domains processed concurrently (1 = strictly sequential)")

    parser.add_argument("--resolver", default=defaults.DEFAULT_RESOLVER, help="Nameserver address used for every lookup")
    parser.add_argument("--resolver-port", type=int, default=defaults.DEFAULT_RESOLVER_PORT, help="Nameserver port")
    parser.add_argument("--user-agent", default=defaults.DEFAULT_USER_AGENT, help="User-Agent header for HTTP requests")
    parser.add_argument("--impersonate", default=None, help="curl_cffi browser profile, e.g. chrome120")

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Log every domain's outcome")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Headless mode: warnings and errors only")
    return parser


def config_from_args(args: argparse.Namespace) -> FunnelConfig:
    return FunnelConfig(
        input_path=args.input,
        output_path=args.output,
        output_format=args.format,
        limit=args.limit,
        log_interval=args.log_interval,
        text_min_chars=args.text_min_chars,
        text_max_chars=args.text_max_chars,
        timeout_ms=args.timeout_ms,
        dns_timeout_ms=args.dns_timeout_ms,
        max_redirects=args.max_redirects,
        max_body_bytes=args.max_body_bytes,
        dns_concurrency=args.dns_concurrency,
        http_concurrency=args.http_concurrency,
        text_concurrency=args.text_concurrency,
        workers=args.workers,
        resolver=args.resolver,
        resolver_port=args.resolver_port,
        user_agent=args.user_agent,
        impersonate=args.impersonate,
    ).validate()


def run_funnel(config: FunnelConfig) -> int:
    """Load, process and write one batch. Returns the process exit code."""
    try:
        domains = load_domains(config.input_path, limit=config.limit)
    except SourceError as exc:
        logger.error("Cannot read input: %s", exc)
        return 1
    logger.info("Loaded %d domains from %s", len(domains), config.input_path)

    try:
        storage = build_storage(config.output_path, config.resolved_output_format())
    except StorageError as exc:
        logger.error("Cannot open output: %s", exc)
        return 1

    controller = FunnelController.from_config(config, metrics=MetricsCollector())
    try:
        try:
            snapshot = controller.run(domains, storage)
        finally:
            storage.close()
    except StorageError as exc:
        logger.error("Cannot write output: %s", exc)
        return 1

    _log_summary(snapshot, controller, storage)
    return 0


def _log_summary(snapshot: MetricsSnapshot, controller: FunnelController, storage: StorageBase) -> None:
    metrics = controller.metrics
    lines: List[str] = [
        "Funnel Summary",
        f"Input domains       : {snapshot.total}",
        f"DNS-active          : {snapshot.dns.succeeded} (fail {snapshot.dns.failed})",
        f"HTTP-responding     : {snapshot.http.succeeded} (fail {snapshot.http.failed})",
        f"Text usable         : {snapshot.text.succeeded} (fail {snapshot.text.failed})",
        f"Unexpected faults   : {snapshot.faults}",
        f"Final records       : {storage.count}",
        f"Elapsed time        : {snapshot.elapsed_secs:.1f}s",
        f"Throughput          : {rate(snapshot.processed, snapshot.elapsed_secs):.2f} domains/sec",
    ]
    for stage in (Stage.DNS, Stage.HTTP, Stage.TEXT):
        reasons = ", ".join(f"{name}={count}" for name, count in metrics.top_reasons(stage))
        lines.append(f"{stage.value.upper() + ' failures':<20}: {reasons or '-'}")
    peaks = ", ".join(f"{lim.name}={lim.peak}/{lim.limit}" for lim in controller.limiters)
    lines.append(f"Peak in-flight      : {peaks}")
    lines.append(f"System              : {format_resources(snapshot.resources)}")
    lines.append(f"Saved to            : {storage.path}")
    for line in lines:
        logger.info(line)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        config = config_from_args(args)
    except ValueError as exc:
        parser.error(str(exc))
    return run_funnel(config)


if __name__ == "__main__":
    sys.exit(main())
