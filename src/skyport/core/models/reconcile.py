"""Persisted reconciliation chain state."""

from datetime import datetime

from pydantic import BaseModel


class ReconcileTask(BaseModel):
    """Progress of one instance's state polling chain.

    Persisted after every poll so a restarted process can resume the chain
    with the remaining attempts.
    """

    instance_id: str
    attempts: int = 0
    last_poll_at: datetime | None = None
    started_at: datetime
