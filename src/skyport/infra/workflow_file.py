"""Flat JSON file mapping instance id -> workflow definition.

The file is the source of truth for workflow execution and recovery; the
registry keeps a mirror under ``<instanceId>_workflow``. Writes go to a
temporary file in the same directory and are renamed into place, so a
crash never leaves a truncated file behind.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from skyport.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)


class WorkflowFileStore:
    """Reads and writes the workflow file under a process-local lock."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as e:
            logger.error(
                "Workflow file is corrupt, treating as empty",
                extra={"event": LogEvent.FILE_STORE_ERROR, "path": str(self._path), "error": str(e)},
            )
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, workflows: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".workflows-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(workflows, fh, indent=2)
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    async def load_all(self) -> dict[str, Any]:
        async with self._lock:
            return await asyncio.to_thread(self._read)

    async def get(self, instance_id: str) -> Any | None:
        workflows = await self.load_all()
        return workflows.get(instance_id)

    async def put(self, instance_id: str, workflow: Any) -> None:
        async with self._lock:
            workflows = await asyncio.to_thread(self._read)
            workflows[instance_id] = workflow
            await asyncio.to_thread(self._write, workflows)

    async def remove(self, instance_id: str) -> bool:
        """Drop the entry for instance_id. Returns True if it existed."""
        async with self._lock:
            workflows = await asyncio.to_thread(self._read)
            if instance_id not in workflows:
                return False
            del workflows[instance_id]
            await asyncio.to_thread(self._write, workflows)
            return True
