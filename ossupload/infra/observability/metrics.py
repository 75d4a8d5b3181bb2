from prometheus_client import Counter, Gauge, Histogram

# Low-cardinality labels only: endpoint classes and fixed outcome names.
BATCH_REQUESTS = Counter(
    "ossupload_signed_url_batches_total",
    "Signed part URL batches requested",
    ["reason"],
)

PART_UPLOADS = Counter(
    "ossupload_part_uploads_total",
    "Part upload outcomes",
    ["outcome"],
)

PART_LATENCY = Histogram(
    "ossupload_part_upload_duration_seconds",
    "Part upload latency in seconds, retries included",
)

RETRIES = Counter(
    "ossupload_retries_total",
    "Retried remote calls",
    ["endpoint"],
)

CIRCUIT_STATE = Gauge(
    "ossupload_circuit_state",
    "Circuit breaker state (0=closed, 1=half-open, 2=open)",
    ["endpoint"],
)

TRANSFERS = Counter(
    "ossupload_transfers_total",
    "Finished transfers",
    ["status"],
)
