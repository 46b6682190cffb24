"""
Prometheus metrics for the statement reconciliation service.
"""

from prometheus_client import Counter, Histogram, Gauge


# ── Upload Items ─────────────────────────────────────────────
upload_items_total = Counter(
    "statement_upload_items_total",
    "Upload items that reached a status in the extraction pipeline",
    ["status"],
)

bank_matches_total = Counter(
    "statement_bank_matches_total",
    "Bank matching outcomes for upload items",
    ["source"],
)

# ── Extraction ───────────────────────────────────────────────
extraction_attempts_total = Counter(
    "statement_extraction_attempts_total",
    "Extraction engine calls",
    ["engine_name", "outcome"],
)

extraction_duration_seconds = Histogram(
    "statement_extraction_duration_seconds",
    "Latency of a single extraction engine call",
    ["engine_name"],
    buckets=[0.5, 1, 2, 5, 10, 30, 60, 120, 300],
)

password_unlocks_total = Counter(
    "statement_password_unlocks_total",
    "Password handling outcomes for protected documents",
    ["outcome"],
)

# ── Batches ──────────────────────────────────────────────────
batch_items_in_flight = Gauge(
    "statement_batch_items_in_flight",
    "Documents currently held by the extraction worker (never above one)",
)

# ── Reconciliation ───────────────────────────────────────────
reconciliation_writes_total = Counter(
    "statement_reconciliation_writes_total",
    "Per-month record writes performed by reconciliation",
    ["kind", "outcome"],
)

# ── Validation ───────────────────────────────────────────────
validations_total = Counter(
    "statement_validations_total",
    "Validation runs against bank ground truth",
    ["result"],
)
