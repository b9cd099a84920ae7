"""
Operational metrics for snapshot ingestion.

Prometheus instruments only; exposing them over HTTP is left to the host process.
"""

from prometheus_client import Counter, Histogram

SNAPSHOTS_STORED = Counter(
    "snapledger_snapshots_stored_total",
    "Snapshots applied to the version store, by diff classification",
    ["resource_type", "classification"],
)

INGESTION_ITEMS_SKIPPED = Counter(
    "snapledger_ingestion_items_skipped_total",
    "Raw items skipped during an ingestion run",
    ["resource_type", "stage"],
)

STALE_RESOURCES_RETIRED = Counter(
    "snapledger_stale_resources_retired_total",
    "Current records retired by the staleness reconciler",
    ["resource_type"],
)

RECONCILIATION_FAILURES = Counter(
    "snapledger_reconciliation_failures_total",
    "Reconciliation passes that failed and were left for the next run",
    ["resource_type"],
)

INGESTION_RUN_DURATION = Histogram(
    "snapledger_ingestion_run_duration_seconds",
    "Duration of one ingestion run (fetch, store and reconcile)",
    ["resource_type", "status"],
    buckets=(0.1, 0.5, 1, 5, 10, 30, 60, 120, 300, 600),
)
