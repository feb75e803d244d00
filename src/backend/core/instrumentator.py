"""
HTTP instrumentation for Prometheus.

Exposes request counts and latencies per route on /metrics, next to the
lifecycle counters defined in core.metrics.
"""

from prometheus_fastapi_instrumentator import Instrumentator

instrumentator = Instrumentator(
    should_group_status_codes=False,
    should_ignore_untemplated=True,
    excluded_handlers=["/metrics", "/health"],
)
