"""Image catalogue entry."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ImageDefinition(BaseModel):
    """Image metadata used to build node-facing create/redeploy payloads."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str = Field(alias="Name")
    image: str = Field(alias="Image")
    env: dict[str, Any] | list[str] | None = Field(default=None, alias="Env")
    scripts: dict[str, Any] | None = Field(default=None, alias="Scripts")
    stop_command: str | None = Field(default=None, alias="StopCommand")
    alt_images: list[str] = Field(default_factory=list, alias="AltImages")
