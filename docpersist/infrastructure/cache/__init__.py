from docpersist.infrastructure.cache.redis_cache import RedisCacheStore

__all__ = ["RedisCacheStore"]
