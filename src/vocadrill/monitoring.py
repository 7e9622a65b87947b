"""Monitoring configuration for the practice engine."""
from prometheus_client import Counter, Histogram, start_http_server

# Session metrics
sessions_created = Counter(
    "vocadrill_sessions_created_total",
    "Total number of practice sessions created",
)

sessions_completed = Counter(
    "vocadrill_sessions_completed_total",
    "Total number of practice sessions that finished the final phase",
)

# Practice metrics
attempts = Counter(
    "vocadrill_attempts_total",
    "Total number of recorded answer attempts",
    ["phase", "correct"],
)

autocorrections = Counter(
    "vocadrill_autocorrections_total",
    "Total number of typed-recall attempts that needed autocorrection",
)

duplicate_attempts = Counter(
    "vocadrill_duplicate_attempts_total",
    "Total number of replayed submissions answered from stored attempts",
)

batteries_composed = Counter(
    "vocadrill_batteries_composed_total",
    "Total number of batteries composed",
    ["phase"],
)

phase_advances = Counter(
    "vocadrill_phase_advances_total",
    "Total number of phase advances",
    ["from_phase"],
)

perfect_scores = Counter(
    "vocadrill_perfect_scores_total",
    "Total number of perfect-score holds raised",
)

# Error metrics
error_count = Counter(
    "vocadrill_errors_total",
    "Total number of errors encountered",
    ["error_type"],
)

# Performance metrics
request_duration = Histogram(
    "vocadrill_request_duration_seconds",
    "Duration of engine operations in seconds",
    ["operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0],
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)
