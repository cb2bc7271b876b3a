# asset_store/metrics/asset_metrics.py

from prometheus_client import Counter, Histogram

variant_generation_duration = Histogram(
    "asset_store_variant_generation_seconds",
    "Time spent fetching, resizing and storing one variant",
    ["variant_type"]
)

variant_cache_hits = Counter(
    "asset_store_variant_resolutions_total",
    "How ensure_variant satisfied a request",
    ["source"]  # recorded / dedup / generated
)

variant_commit_conflicts = Counter(
    "asset_store_variant_commit_conflicts_total",
    "Optimistic-concurrency conflicts while committing the variants field"
)

upstream_failures = Counter(
    "asset_store_upstream_failures_total",
    "Blob store or image pipeline calls that failed after retries",
    ["operation"]
)

background_task_failures = Counter(
    "asset_store_background_task_failures_total",
    "Best-effort background jobs that ended with an error",
    ["task"]
)
