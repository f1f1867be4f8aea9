"""Node agent client."""

from skyport.agent.client import (
    NodeAgentClient,
    NodeAgentClientFactory,
    NodeEndpoint,
)

__all__ = ["NodeAgentClient", "NodeAgentClientFactory", "NodeEndpoint"]
