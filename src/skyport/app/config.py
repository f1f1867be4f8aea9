"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisConfig(BaseSettings):
    """Redis connection pool configuration (registry backend)."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    url: str = Field(default="redis://redis:6379")
    max_connections: int = Field(default=50)
    key_prefix: str = Field(default="skyport:")


class NodeAgentConfig(BaseSettings):
    """Node agent HTTP/WebSocket client configuration."""

    model_config = SettingsConfigDict(env_prefix="NODE_AGENT_")

    # Basic-auth username expected by the node agent; password is the node apiKey
    username: str = Field(default="Skyport")
    scheme: str = Field(default="http")
    ws_scheme: str = Field(default="ws")
    request_timeout: float = Field(default=30.0)  # seconds (create/redeploy/power)
    # Health probes must never hang on unreachable nodes
    probe_timeout: float = Field(default=5.0)  # seconds


class ReconcileConfig(BaseSettings):
    """State reconciliation poller configuration."""

    model_config = SettingsConfigDict(env_prefix="RECONCILE_")

    interval: float = Field(default=30.0)  # seconds between polls
    max_attempts: int = Field(default=50)  # 50 x 30s ~ 25 minutes


class WorkflowConfig(BaseSettings):
    """Workflow automation scheduler configuration."""

    model_config = SettingsConfigDict(env_prefix="WORKFLOW_")

    file_path: str = Field(default="storage/workflows.json")
    liveness_interval: float = Field(default=5.0)  # seconds (orphaned job check)
    webhook_timeout: float = Field(default=10.0)  # seconds


class RelayConfig(BaseSettings):
    """Console/stats WebSocket relay configuration."""

    model_config = SettingsConfigDict(env_prefix="RELAY_")

    open_timeout: float = Field(default=10.0)  # seconds
    ping_interval: float = Field(default=20.0)  # seconds
    ping_timeout: float = Field(default=20.0)  # seconds
    max_size: int = Field(default=16 * 1024 * 1024)  # 16MB


class SessionConfig(BaseSettings):
    """Session cookie lookup configuration."""

    model_config = SettingsConfigDict(env_prefix="SESSION_")

    cookie_name: str = Field(default="session")


class MetricsConfig(BaseSettings):
    """Prometheus metrics configuration."""

    model_config = SettingsConfigDict(env_prefix="METRICS_")

    enabled: bool = Field(default=True)


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Standard fields added to all logs:
    - schema_version: Log schema version for backwards compatibility
    - service: Service name (skyport-control-plane)

    Rate limiting:
    - Prevents log storms from repeated messages
    - ERROR logs bypass rate limiting (always logged)
    """

    model_config = SettingsConfigDict(env_prefix="LOGGING_")

    level: str = Field(default="INFO")
    schema_version: str = Field(default="1.0")
    slow_threshold_ms: float = Field(default=1000.0)
    rate_limit_per_minute: int = Field(default=100)
    service_name: str = Field(default="skyport-control-plane")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SKYPORT_",
        env_nested_delimiter="__",
    )

    redis: RedisConfig = Field(default_factory=RedisConfig)
    node_agent: NodeAgentConfig = Field(default_factory=NodeAgentConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


@lru_cache
def get_settings() -> Settings:
    return Settings()
