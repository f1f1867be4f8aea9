"""Instance record."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from skyport.core.domain import InternalState


class NodeSnapshot(BaseModel):
    """Connection info of the owning node, copied at deploy time.

    This is a snapshot, not a live reference: later node edits are not
    reflected here.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    address: str
    port: int
    api_key: str | None = Field(default=None, alias="apiKey")


class Instance(BaseModel):
    """One deployed workload.

    ``id`` (== ``volume_id``) is chosen by the control plane at creation and
    survives redeploy/reinstall; ``container_id`` is replaced every time.
    """

    model_config = ConfigDict(
        populate_by_name=True, extra="allow", coerce_numbers_to_str=True
    )

    id: str = Field(alias="Id")
    volume_id: str = Field(alias="VolumeId")
    container_id: str | None = Field(default=None, alias="ContainerId")
    node: NodeSnapshot = Field(alias="Node")
    user: str = Field(alias="User")
    name: str = Field(alias="Name")
    image: str = Field(alias="Image")
    alt_images: list[str] = Field(default_factory=list, alias="AltImages")
    env: Any = Field(default=None, alias="Env")
    memory: int = Field(alias="Memory")
    cpu: int = Field(alias="Cpu")
    ports: str = Field(alias="Ports")
    primary: str = Field(alias="Primary")
    stop_command: str | None = Field(default=None, alias="StopCommand")
    image_data: dict[str, Any] | None = Field(default=None, alias="imageData")
    internal_state: InternalState = Field(
        default=InternalState.INSTALLING, alias="InternalState"
    )
    suspended: bool = False
    suspended_reason: str | None = Field(default=None, alias="suspended-flagg")

    def to_record(self) -> dict[str, Any]:
        """Serialize for the key-value store."""
        return self.model_dump(mode="json", by_alias=True)
