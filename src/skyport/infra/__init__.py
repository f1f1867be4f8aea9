"""Infrastructure connections (Redis, flat files).

Note: node agent calls are handled by skyport.agent.
"""

from skyport.infra.redis import close_redis, get_redis, init_redis
from skyport.infra.redis_kv import RedisKeyValueStore
from skyport.infra.workflow_file import WorkflowFileStore

__all__ = [
    "init_redis",
    "close_redis",
    "get_redis",
    "RedisKeyValueStore",
    "WorkflowFileStore",
]
