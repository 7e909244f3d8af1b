"""
Serving Module
"""
from .cache import init_redis, close_redis, get_redis, invalidate_popularity_caches

__all__ = [
    "init_redis",
    "close_redis",
    "get_redis",
    "invalidate_popularity_caches",
]
