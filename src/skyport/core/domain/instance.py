"""Instance, node and workflow domain enums."""

from enum import StrEnum


class InternalState(StrEnum):
    """Lifecycle of the remote container (independent of registry existence)."""

    INSTALLING = "INSTALLING"
    READY = "READY"
    FAILED = "FAILED"


class NodeStatus(StrEnum):
    """Node status. Online/Offline are overwritten by every health probe."""

    UNCONFIGURED = "Unconfigured"
    CONFIGURED = "Configured"
    UNKNOWN = "Unknown"
    ONLINE = "Online"
    OFFLINE = "Offline"


class PowerAction(StrEnum):
    """Power actions accepted by the node agent."""

    START = "start"
    STOP = "stop"
    RESTART = "restart"
    KILL = "kill"


class BlockType(StrEnum):
    """Workflow block types."""

    INTERVAL = "interval"
    POWER = "power"
    WEBHOOK = "webhook"


class JobState(StrEnum):
    """Per-instance workflow job state."""

    IDLE = "Idle"
    SCHEDULED = "Scheduled"
    EXECUTING = "Executing"


class StreamKind(StrEnum):
    """Relayed node-agent stream kinds."""

    CONSOLE = "console"
    STATS = "stats"
