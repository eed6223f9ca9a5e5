"""
Core module - Configuration, database, locking, and utilities.
"""

from nodue.core.config import get_settings, settings
from nodue.core.database import Base, close_db, init_db
from nodue.core.locks import LocalLockManager, LockUnavailableError, RedisLockManager
from nodue.core.redis import close_redis, get_redis, init_redis

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Database
    "Base",
    "init_db",
    "close_db",
    # Redis
    "get_redis",
    "init_redis",
    "close_redis",
    # Locks
    "LocalLockManager",
    "RedisLockManager",
    "LockUnavailableError",
]
