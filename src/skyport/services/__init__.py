"""Services module.

Node administration lives in ``skyport.services.nodes`` and is imported
from there directly; it depends on the control package.
"""

from skyport.services.access import AccessGuard
from skyport.services.audit import log_audit
from skyport.services.orchestrator import DeploymentOrchestrator, DeployRequest
from skyport.services.registry import InstanceRegistry
from skyport.services.users import UserDirectory

__all__ = [
    "AccessGuard",
    "DeployRequest",
    "DeploymentOrchestrator",
    "InstanceRegistry",
    "UserDirectory",
    "log_audit",
]
