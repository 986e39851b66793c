"""Cache storage adapters.

Every tier (in-process, distributed, layered) implements the same async
``CacheAdapter`` contract so the cache facade can select one strategy at
startup without the rest of the service knowing which.
"""
