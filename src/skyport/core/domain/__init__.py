"""Domain enums."""

from skyport.core.domain.instance import (
    BlockType,
    InternalState,
    JobState,
    NodeStatus,
    PowerAction,
    StreamKind,
)

__all__ = [
    "BlockType",
    "InternalState",
    "JobState",
    "NodeStatus",
    "PowerAction",
    "StreamKind",
]
