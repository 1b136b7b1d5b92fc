# Author: Bradley R. Kinnard — counting everything

"""Prometheus metrics. Import and use from anywhere."""

from prometheus_client import Counter, Histogram, Gauge, REGISTRY, generate_latest

# latency for the full analyze pipeline, per outcome
analyze_latency = Histogram(
    "analyze_latency_seconds",
    "Time spent in analyze()",
    ["outcome"],  # cache, database, upstream, fallback, rejected
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0]
)

# cache hits vs misses
cache_hit_total = Counter(
    "cache_hit_total",
    "Result cache hits"
)
cache_miss_total = Counter(
    "cache_miss_total",
    "Result cache misses"
)
cache_error_total = Counter(
    "cache_error_total",
    "Result cache operations that failed open",
    ["op"]
)

# second tier
store_hit_total = Counter(
    "store_hit_total",
    "Persisted store hits for recent analyses"
)
store_error_total = Counter(
    "store_error_total",
    "Persisted store operations that failed and were absorbed",
    ["op"]
)

# upstream calls by outcome
upstream_call_total = Counter(
    "upstream_call_total",
    "Upstream analyzer invocations",
    ["service", "outcome"]  # ok, or an ErrorKind value
)

# requests that joined someone else's in-flight computation
dedup_join_total = Counter(
    "dedup_join_total",
    "Callers that attached to an in-flight analysis"
)

fallback_served_total = Counter(
    "fallback_served_total",
    "Fallback results served",
    ["service", "reason"]
)

circuit_trip_total = Counter(
    "circuit_trip_total",
    "Circuit breaker transitions to open",
    ["service"]
)

circuit_open = Gauge(
    "circuit_open",
    "1 if the breaker for a service is open",
    ["service"]
)


def get_metrics() -> bytes:
    """dump all metrics in prometheus format"""
    return generate_latest(REGISTRY)
