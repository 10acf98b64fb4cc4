from src.modules.cache.manager import CacheManager, create_cache_key, get_cache

__all__ = ["CacheManager", "create_cache_key", "get_cache"]
