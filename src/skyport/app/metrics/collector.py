"""Prometheus metrics definitions."""

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Histogram Buckets
# =============================================================================
# Scale: logarithmic with SLO boundaries (200ms, 1s, 5s)

# MEDIUM: API calls, node agent round trips (5ms ~ 60s)
_BUCKETS_MEDIUM = (
    0.005, 0.01, 0.02, 0.04, 0.09,
    0.18, 0.36, 0.73, 1.5, 3,
    6.2, 12.7, 26, 53,
)  # 14 buckets

# =============================================================================
# HTTP Metrics
# =============================================================================

HTTP_REQUESTS_TOTAL = Counter(
    "skyport_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

HTTP_REQUEST_DURATION = Histogram(
    "skyport_http_request_duration_seconds",
    "HTTP request duration",
    ["method", "endpoint"],
    buckets=_BUCKETS_MEDIUM,
)

# =============================================================================
# Node Health Metrics
# =============================================================================

NODE_PROBES_TOTAL = Counter(
    "skyport_node_probes_total",
    "Node health probes by result",
    ["result"],  # online, offline
)

NODES_BY_STATUS = Gauge(
    "skyport_nodes",
    "Number of nodes by last observed status",
    ["status"],
)

# =============================================================================
# Reconciliation Metrics
# =============================================================================

RECONCILE_POLLS_TOTAL = Counter(
    "skyport_reconcile_polls_total",
    "Instance state polls by outcome",
    ["outcome"],  # installing, ready, error, failed
)

RECONCILE_ACTIVE_CHAINS = Gauge(
    "skyport_reconcile_active_chains",
    "Reconciliation chains currently running",
)

# =============================================================================
# Workflow Metrics
# =============================================================================

WORKFLOW_EXECUTIONS_TOTAL = Counter(
    "skyport_workflow_executions_total",
    "Workflow ticks by outcome",
    ["outcome"],  # success, failed, skipped
)

WORKFLOW_SCHEDULED_JOBS = Gauge(
    "skyport_workflow_scheduled_jobs",
    "Workflow jobs currently scheduled",
)

# =============================================================================
# Relay Metrics
# =============================================================================

RELAY_ACTIVE_SESSIONS = Gauge(
    "skyport_relay_active_sessions",
    "Open console/stats relay sessions",
    ["kind"],
)

RELAY_ERRORS = Counter(
    "skyport_relay_errors_total",
    "Relay upstream errors",
    ["kind", "error_type"],
)
