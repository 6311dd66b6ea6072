from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

DEFAULT_INPUT_PATH = "domains.parquet"
DEFAULT_OUTPUT_PATH = "dns_http_text.parquet"

DEFAULT_LOG_INTERVAL = 100
DEFAULT_TEXT_MIN_CHARS = 200
DEFAULT_TEXT_MAX_CHARS = 10000
DEFAULT_TIMEOUT_MS = 8000
DEFAULT_DNS_TIMEOUT_MS = 5000
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_MAX_BODY_BYTES = 2 * 1024 * 1024
DEFAULT_DNS_CONCURRENCY = 100
DEFAULT_HTTP_CONCURRENCY = 20
DEFAULT_TEXT_CONCURRENCY = 10
DEFAULT_WORKERS = 100
DEFAULT_RESOLVER = "127.0.0.1"
DEFAULT_RESOLVER_PORT = 53
DEFAULT_USER_AGENT = "Mozilla/5.0"

OUTPUT_FORMATS = ("parquet", "jsonl")


@dataclass(frozen=True)
class FunnelConfig:
    """Settings for one funnel run. Every field can be overridden from the CLI."""

    input_path: str = DEFAULT_INPUT_PATH
    output_path: str = DEFAULT_OUTPUT_PATH
    output_format: Optional[str] = None
    limit: Optional[int] = None

    log_interval: int = DEFAULT_LOG_INTERVAL
    text_min_chars: int = DEFAULT_TEXT_MIN_CHARS
    text_max_chars: int = DEFAULT_TEXT_MAX_CHARS
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    dns_timeout_ms: int = DEFAULT_DNS_TIMEOUT_MS
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES

    dns_concurrency: int = DEFAULT_DNS_CONCURRENCY
    http_concurrency: int = DEFAULT_HTTP_CONCURRENCY
    text_concurrency: int = DEFAULT_TEXT_CONCURRENCY
    workers: int = DEFAULT_WORKERS

    resolver: str = DEFAULT_RESOLVER
    resolver_port: int = DEFAULT_RESOLVER_PORT
    user_agent: str = DEFAULT_USER_AGENT
    impersonate: Optional[str] = None

    def validate(self) -> "FunnelConfig":
        """Raise ValueError on settings the funnel cannot run with."""
        positive = {
            "log_interval": self.log_interval,
            "text_max_chars": self.text_max_chars,
            "timeout_ms": self.timeout_ms,
            "dns_timeout_ms": self.dns_timeout_ms,
            "max_body_bytes": self.max_body_bytes,
            "dns_concurrency": self.dns_concurrency,
            "http_concurrency": self.http_concurrency,
            "text_concurrency": self.text_concurrency,
            "workers": self.workers,
        }
        for name, value in positive.items():
            if value < 1:
                raise ValueError(f"{name} must be >= 1, got {value}")
        if self.text_min_chars < 0:
            raise ValueError(f"text_min_chars must be >= 0, got {self.text_min_chars}")
        if self.text_min_chars > self.text_max_chars:
            raise ValueError(
                f"text_min_chars ({self.text_min_chars}) exceeds text_max_chars ({self.text_max_chars})"
            )
        if self.max_redirects < 0:
            raise ValueError(f"max_redirects must be >= 0, got {self.max_redirects}")
        if self.limit is not None and self.limit < 1:
            raise ValueError(f"limit must be >= 1, got {self.limit}")
        if not self.resolver:
            raise ValueError("resolver address is required")
        self.resolved_output_format()
        return self

    def resolved_output_format(self) -> str:
        """Explicit output_format, else inferred from the output path suffix."""
        fmt = self.output_format
        if fmt is None:
            fmt = "jsonl" if self.output_path.endswith((".jsonl", ".ndjson")) else "parquet"
        if fmt not in OUTPUT_FORMATS:
            raise ValueError(f"Unknown output format: {fmt}")
        return fmt

    @property
    def timeout_secs(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def dns_timeout_secs(self) -> float:
        return self.dns_timeout_ms / 1000.0
