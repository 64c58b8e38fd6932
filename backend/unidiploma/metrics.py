"""Custom Prometheus metrics for the diploma pipeline."""

from prometheus_client import Counter, Histogram

DIPLOMAS_ISSUED = Counter(
    "unidiploma_diplomas_issued_total",
    "Total diplomas issued",
)
DIPLOMAS_AUTHENTICATED = Counter(
    "unidiploma_diplomas_authenticated_total",
    "Total diplomas authenticated by the ministry",
)
VERIFICATIONS = Counter(
    "unidiploma_verifications_total",
    "Total verification requests by outcome",
    ["status"],
)

# Cover and authentication page composition, worker thread included
COMPOSITION_DURATION = Histogram(
    "unidiploma_composition_duration_seconds",
    "Duration of PDF page composition",
    ["page"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)
