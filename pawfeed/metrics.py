"""Prometheus metrics for the feed API and the encoding worker."""

from prometheus_client import Counter, Histogram

# ============================================================================
# Encoding jobs
# ============================================================================

# Job outcomes: succeeded, retried, failed, skipped
encode_jobs_total = Counter(
    "pawfeed_encode_jobs_total",
    "Encode jobs by outcome",
    ["outcome"]
)

encode_duration_seconds = Histogram(
    "pawfeed_encode_duration_seconds",
    "Wall time of a successful encode attempt",
    buckets=[5, 15, 30, 60, 120, 300, 600, 1200, 3600]
)

# ============================================================================
# Streaming
# ============================================================================

hls_proxy_requests_total = Counter(
    "pawfeed_hls_proxy_requests_total",
    "HLS proxy requests by file kind and cache result",
    ["kind", "cache"]
)

prefetch_segments_total = Counter(
    "pawfeed_prefetch_segments_total",
    "Prefetched segments by result",
    ["result"]
)
