"""Short-lived Redis locks that stop the same client request from running twice at once."""
import redis

from adslot.core.config import settings

KEY_PREFIX = "adslot:idem"


def purchase_key(user_id: str, request_key: str) -> str:
    return f"slot_purchase:{user_id}:{request_key}"


class IdempotencyStore:
    def __init__(self, client: redis.Redis | None = None) -> None:
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.default_ttl = settings.idempotency_ttl

    def check_and_set(self, key: str, ttl_seconds: int | None = None) -> bool:
        """True for the first caller with this key; False while the key is held."""
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        return bool(self.client.set(f"{KEY_PREFIX}:{key}", "1", nx=True, ex=ttl))

    def release(self, key: str) -> None:
        """Free the key after a failed attempt so the client can retry with it."""
        self.client.delete(f"{KEY_PREFIX}:{key}")
