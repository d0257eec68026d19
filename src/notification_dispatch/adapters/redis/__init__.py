from .cache import RedisCacheService
from .idempotency import RedisIdempotencyStore
from .locking import RedisLockStrategy

__all__ = ["RedisCacheService", "RedisIdempotencyStore", "RedisLockStrategy"]
