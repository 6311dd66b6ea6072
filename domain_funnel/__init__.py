"""Domain liveness funnel.

Checks a batch of domains for DNS records, HTTP reachability and usable
homepage text, recording for each domain the deepest stage it reached.

Key modules:
    models      -- Stage, stage results, DomainRecord, FunnelPass, MetricsSnapshot
    config      -- FunnelConfig settings and defaults
    limiter     -- StageLimiter FIFO admission gate
    base        -- BaseStage abstract class
    stages      -- DnsResolveStage, HttpProbeStage, TextExtractStage
    controller  -- FunnelController driving domains through the stages
    metrics     -- MetricsCollector for per-stage counters and progress lines
    storage     -- StorageBase, ParquetStorage, JsonlStorage
    sources     -- load_domains for the input batch
"""
