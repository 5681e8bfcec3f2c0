"""Storage backends: the shared Redis pool."""

from forgeflow.db.redis import close_redis, init_redis

__all__ = [
    "close_redis",
    "init_redis",
]
