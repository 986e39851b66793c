"""Rate limiting adapters.

The HTTP layer depends on ``AbstractUserRateLimiter`` only; the in-memory
multi-window implementation can later be replaced by a shared store
without touching the API layer.
"""
