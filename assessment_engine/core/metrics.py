"""Engine metrics using the Prometheus client library.

All metrics are defined here, in one inventory.  Other modules import the
specific metric and increment/observe it at the point of action.

WHAT WE MEASURE
-----------------
  backend_requests_total / backend_request_duration_seconds
      Every call through a backend adapter.  The duration histogram is
      what tells you whether the fixed request timeout is sized right.

  collection_fetch_fallbacks_total
      Bulk fetches that failed and degraded to an empty collection.  A
      non-zero rate here means users are looking at partial dashboards.

  reconciliation_gaps_total
      Records skipped because a foreign key could not be resolved.  A
      spike usually means the backend changed a payload shape.

  quiz_submissions_total / grade_writes_total
      The two non-idempotent write paths, by outcome.

  snapshot_version
      Bumps every time the entity index is rebuilt.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# Backend transport (populated by backend adapters)
# ---------------------------------------------------------------------------

BACKEND_REQUESTS = Counter(
    "backend_requests_total",
    "Backend calls by operation and outcome",
    ["operation", "outcome"],  # outcome: ok|client_error|server_error|unavailable
)

BACKEND_REQUEST_DURATION = Histogram(
    "backend_request_duration_seconds",
    "Backend call duration in seconds",
    ["operation"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0],
)

# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

COLLECTION_FETCH_FALLBACKS = Counter(
    "collection_fetch_fallbacks_total",
    "Bulk collection fetches that degraded to an empty collection",
    ["collection"],
)

RECONCILIATION_GAPS = Counter(
    "reconciliation_gaps_total",
    "Records skipped because a reference could not be resolved",
    ["kind"],
)

SNAPSHOT_VERSION = Gauge(
    "snapshot_version",
    "Version of the most recently built entity index",
)

# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

QUIZ_SUBMISSIONS = Counter(
    "quiz_submissions_total",
    "Quiz attempt submissions by outcome",
    ["outcome"],  # completed|conflict|rejected|aborted
)

GRADE_WRITES = Counter(
    "grade_writes_total",
    "Grade writes by assessment kind and outcome",
    ["kind", "outcome"],  # outcome: ok|no_submission|invalid|conflict
)
