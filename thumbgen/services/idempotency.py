import redis

from thumbgen.core.config import settings


class IdempotencyStore:
    """In-flight request lock: one running request per (scope, account, key)."""

    def __init__(self, client: redis.Redis | None = None) -> None:
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.default_ttl = settings.idempotency_ttl

    def check_and_set(self, key: str, ttl_seconds: int | None = None) -> bool:
        """Atomic operation: setnx + expire in one call."""
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        created = self.client.set(f"idempotency:{key}", "1", nx=True, ex=ttl)
        return created is not None

    def release(self, key: str) -> None:
        self.client.delete(f"idempotency:{key}")
