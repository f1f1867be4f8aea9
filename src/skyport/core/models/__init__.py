"""Registry record models.

Records are persisted as JSON using the camel/Pascal-cased aliases of the
stored layout (``Id``, ``ContainerId``, ``apiKey`` ...) so existing registry
data stays readable.
"""

from skyport.core.models.image import ImageDefinition
from skyport.core.models.instance import Instance, NodeSnapshot
from skyport.core.models.node import Node
from skyport.core.models.reconcile import ReconcileTask
from skyport.core.models.user import User
from skyport.core.models.workflow import Workflow, WorkflowBlock, WorkflowBlockMeta

__all__ = [
    "ImageDefinition",
    "Instance",
    "Node",
    "NodeSnapshot",
    "ReconcileTask",
    "User",
    "Workflow",
    "WorkflowBlock",
    "WorkflowBlockMeta",
]
