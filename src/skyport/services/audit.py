"""Fire-and-forget audit trail.

Audit entries are ordinary structured log lines tagged with the AUDIT event;
shipping them anywhere else is the log pipeline's concern.
"""

import logging

from skyport.core.logging_schema import LogEvent

logger = logging.getLogger("skyport.audit")


def log_audit(
    user_id: str | None,
    username: str | None,
    action: str,
    ip: str | None = None,
    **fields: object,
) -> None:
    """Record an audited action. Never raises."""
    try:
        logger.info(
            "%s by %s",
            action,
            username or user_id or "anonymous",
            extra={
                "event": LogEvent.AUDIT,
                "user_id": user_id,
                "username": username,
                "action": action,
                "ip": ip,
                **fields,
            },
        )
    except Exception:
        logger.debug("Audit log emit failed for %s", action, exc_info=True)
