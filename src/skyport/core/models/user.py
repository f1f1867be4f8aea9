"""User record."""

from pydantic import BaseModel, ConfigDict, Field


class User(BaseModel):
    """Control plane user. ``access_to`` lists instances shared with the user."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    user_id: str = Field(alias="userId")
    username: str
    admin: bool = False
    access_to: list[str] = Field(default_factory=list, alias="accessTo")
