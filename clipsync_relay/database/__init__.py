"""
Storage package for ClipSync Relay.

Provides the Redis backed table storage used by the services.
"""

from clipsync_relay.database.redis_manager import (
    ASC,
    CLIPBOARD_ITEMS,
    DESC,
    PAIRINGS,
    RedisManager,
)

__all__ = [
    'ASC',
    'CLIPBOARD_ITEMS',
    'DESC',
    'PAIRINGS',
    'RedisManager',
]
