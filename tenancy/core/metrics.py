"""
Prometheus metrics for monitoring.

Metrics collected:
- HTTP request duration (histogram) and count by status code (counter)
- Signup outcomes and identity provider step latency
- Subscription state transitions
- Scheduled sweep results
- Notification deliveries
- Background task duration
"""

from prometheus_client import Counter, Histogram, Gauge, Info
from functools import wraps
import time


# Application info
app_info = Info("tenancy_app", "Tenancy service information")
app_info.info({
    "version": "1.0.0",
    "environment": "development",
})

# HTTP metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests in progress",
    ["method", "endpoint"],
)

# Signup metrics
tenant_signups_total = Counter(
    "tenant_signups_total",
    "Tenant signups by outcome",
    ["outcome"],  # active, validation, conflict, provisioning_failed, reconciliation_incomplete
)

identity_provider_step_duration_seconds = Histogram(
    "identity_provider_step_duration_seconds",
    "Duration of each identity provider call made during provisioning",
    ["step", "status"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0),
)

# Subscription metrics
subscription_transitions_total = Counter(
    "subscription_transitions_total",
    "Subscription status transitions",
    ["from_status", "to_status", "trigger"],
)

sweep_rows_total = Counter(
    "sweep_rows_total",
    "Rows handled by scheduled sweeps",
    ["sweep", "outcome"],  # outcome: applied, skipped, failed
)

# Notification metrics
notifications_total = Counter(
    "notifications_total",
    "Notification delivery attempts",
    ["kind", "status"],
)

# Background task metrics
task_duration_seconds = Histogram(
    "task_duration_seconds",
    "Background task duration in seconds",
    ["task_name"],
    buckets=(1.0, 5.0, 10.0, 30.0, 60.0, 300.0, 600.0),
)


# Decorator for tracking function execution time
def track_time(metric: Histogram, labels: dict = None):
    """
    Decorator to track function execution time.

    Usage:
        @track_time(task_duration_seconds, {"task_name": "process_renewals"})
        async def run_renewals():
            ...
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                result = await func(*args, **kwargs)
                return result
            finally:
                duration = time.time() - start_time
                if labels:
                    metric.labels(**labels).observe(duration)
                else:
                    metric.observe(duration)
        return wrapper
    return decorator
