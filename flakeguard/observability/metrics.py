"""Prometheus metrics definitions."""

from prometheus_client import Counter, Gauge, Histogram

# Ingestion metrics
RESULTS_INGESTED = Counter(
    "flakeguard_results_ingested_total",
    "Total number of test results folded into patterns",
    ["status"],
)

RESULTS_DUPLICATE = Counter(
    "flakeguard_results_duplicate_total",
    "Total number of test results skipped as already processed",
)

# Evaluation metrics
EVALUATIONS = Counter(
    "flakeguard_evaluations_total",
    "Total number of test evaluations",
    ["outcome"],
)

EVALUATION_TIMEOUTS = Counter(
    "flakeguard_evaluation_timeouts_total",
    "Total number of evaluations abandoned after the time budget",
)

TRANSITIONS = Counter(
    "flakeguard_transitions_total",
    "Total number of applied quarantine transitions",
    ["action", "source"],
)

QUARANTINED_TESTS = Gauge(
    "flakeguard_quarantined_tests",
    "Number of currently quarantined tests",
    ["project_id"],
)

# Scheduler metrics
SWEEPS = Counter(
    "flakeguard_sweeps_total",
    "Total number of scheduler sweeps",
    ["cadence", "status"],
)

SWEEP_DURATION = Histogram(
    "flakeguard_sweep_duration_seconds",
    "Scheduler sweep duration in seconds",
    ["cadence"],
    buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0),
)

# Notification metrics
NOTIFICATIONS_QUEUED = Counter(
    "flakeguard_notifications_queued_total",
    "Total notifications queued",
    ["notification_type"],
)

NOTIFICATIONS_SENT = Counter(
    "flakeguard_notifications_sent_total",
    "Total notifications sent",
    ["channel", "status"],
)

NOTIFICATION_QUEUE_LENGTH = Gauge(
    "flakeguard_notification_queue_length",
    "Number of tasks in notification queue",
)
