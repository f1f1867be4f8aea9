"""Node (execution agent) record."""

from pydantic import BaseModel, ConfigDict, Field

from skyport.core.domain import NodeStatus


class Node(BaseModel):
    """Execution agent registered with the control plane.

    ``configure_key`` is only set before the agent has configured itself;
    ``api_key`` is only set afterwards.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    name: str = ""
    address: str
    port: int
    tags: str | None = None
    ram: str | None = None
    disk: str | None = None
    processor: str | None = None
    api_key: str | None = Field(default=None, alias="apiKey")
    configure_key: str | None = Field(default=None, alias="configureKey")
    status: NodeStatus = NodeStatus.UNCONFIGURED
    version_family: str | None = Field(default=None, alias="versionFamily")
    version_release: str | None = Field(default=None, alias="versionRelease")
    remote: str | None = None
    docker: dict | None = None

    @property
    def base_url(self) -> str:
        return f"{self.address}:{self.port}"
