from __future__ import annotations

from typing import TYPE_CHECKING

from membank.backends.redis._pool import create_pool

if TYPE_CHECKING:
    from redis.asyncio import Redis


class RedisStateStore:
    """Shared state store: Redis strings under a key prefix."""

    def __init__(self, client: Redis, *, prefix: str = "membank:") -> None:
        self._r = client
        self._prefix = prefix

    @classmethod
    async def create(cls, redis_url: str, *, prefix: str = "membank:") -> RedisStateStore:
        client = await create_pool(redis_url)
        return cls(client, prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}state:{key}"

    async def get(self, key: str) -> bytes | None:
        value = await self._r.get(self._key(key))
        return value  # type: ignore[return-value]

    async def set(self, key: str, value: bytes) -> None:
        await self._r.set(self._key(key), value)

    async def delete(self, key: str) -> None:
        await self._r.delete(self._key(key))

    async def exists(self, key: str) -> bool:
        return bool(await self._r.exists(self._key(key)))

    async def close(self) -> None:
        await self._r.aclose()
