"""Logging field schema - v1.0

Standard fields (added to all logs):
- schema_version: Log schema version
- service: Service name (skyport-control-plane)
- component: Component name (registry, orchestrator, poller, health, ...)
- event: Event type (reconcile_complete, operation_failed, etc.)
- trace_id: Request trace ID
- duration_ms: Duration in milliseconds

High cardinality fields (OK in logs, NOT in metric labels):
- instance_id: Instance ID
- node_id: Node ID
- user_id: User ID
- container_id: Node-assigned container handle
"""

from enum import StrEnum


class LogEvent(StrEnum):
    """Standard log event types.

    Use these event types in the 'event' extra field for consistent
    log filtering and analysis.
    """

    # Orchestrator events
    OPERATION_STARTED = "operation_started"
    OPERATION_FAILED = "operation_failed"
    OPERATION_SUCCESS = "operation_success"
    OPERATION_TIMEOUT = "operation_timeout"
    STATE_CHANGED = "state_changed"

    # Reconciliation events
    RECONCILE_STARTED = "reconcile_started"
    RECONCILE_POLLED = "reconcile_polled"
    RECONCILE_COMPLETE = "reconcile_complete"
    RECONCILE_FAILED = "reconcile_failed"
    RECONCILE_CANCELLED = "reconcile_cancelled"
    RECONCILE_RESUMED = "reconcile_resumed"

    # Node health events
    NODE_ONLINE = "node_online"
    NODE_OFFLINE = "node_offline"
    NODE_CONFIGURED = "node_configured"
    NODE_FLAGGED = "node_flagged"

    # Workflow scheduler events
    WORKFLOW_SCHEDULED = "workflow_scheduled"
    WORKFLOW_CANCELLED = "workflow_cancelled"
    WORKFLOW_EXECUTED = "workflow_executed"
    WORKFLOW_FAILED = "workflow_failed"
    WORKFLOW_ORPHANED = "workflow_orphaned"
    WEBHOOK_FAILED = "webhook_failed"

    # Relay events
    RELAY_OPENED = "relay_opened"
    RELAY_CLOSED = "relay_closed"
    RELAY_REJECTED = "relay_rejected"
    RELAY_UPSTREAM_ERROR = "relay_upstream_error"

    # Lifecycle events
    APP_STARTED = "app_started"
    APP_STOPPED = "app_stopped"

    # API events
    REQUEST_COMPLETE = "request_complete"
    REQUEST_FAILED = "request_failed"
    REQUEST_SLOW = "request_slow"
    AUDIT = "audit"

    # Infra events
    REDIS_CONNECTION_ERROR = "redis_connection_error"
    FILE_STORE_ERROR = "file_store_error"


class ErrorClass(StrEnum):
    """Error classification for structured error logging.

    Use these in the 'error_class' extra field to enable
    filtering by error type and setting up alerts.
    """

    TRANSIENT = "transient"  # Retryable (network timeout, temp failure)
    PERMANENT = "permanent"  # Not retryable (invalid input, not found)
    TIMEOUT = "timeout"  # Timeout error


class Component(StrEnum):
    """Component identifiers for log filtering."""

    REGISTRY = "registry"
    ORCHESTRATOR = "orchestrator"
    POLLER = "poller"
    HEALTH = "health"
    SCHEDULER = "scheduler"
    RELAY = "relay"
    API = "api"
