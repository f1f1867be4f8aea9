"""Workflow (per-instance automation) definition."""

from pydantic import BaseModel, ConfigDict, Field

from skyport.core.domain import BlockType


class WorkflowBlockMeta(BaseModel):
    """Block configuration as produced by the automation editor."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    selected_value: str | None = Field(default=None, alias="selectedValue")
    input_value: str | None = Field(default=None, alias="inputValue")


class WorkflowBlock(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: BlockType
    meta: WorkflowBlockMeta = Field(default_factory=WorkflowBlockMeta)


class Workflow(BaseModel):
    """Unordered list of typed blocks bound to one instance."""

    model_config = ConfigDict(extra="allow")

    blocks: list[WorkflowBlock] = Field(default_factory=list)

    def blocks_of(self, block_type: BlockType) -> list[WorkflowBlock]:
        return [b for b in self.blocks if b.type == block_type]

    @property
    def interval_block(self) -> WorkflowBlock | None:
        """The interval block that drives scheduling, if any."""
        intervals = self.blocks_of(BlockType.INTERVAL)
        return intervals[0] if intervals else None

    def to_record(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
