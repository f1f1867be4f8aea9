"""API v1 module."""

from skyport.app.api.v1.instances import router as instances_router
from skyport.app.api.v1.nodes import router as nodes_router
from skyport.app.api.v1.workflows import router as workflows_router

__all__ = ["instances_router", "nodes_router", "workflows_router"]
