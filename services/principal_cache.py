import redis.asyncio as redis
import json
import os
import logging
from typing import Optional
from uuid import UUID

from models.principal import Principal, Role

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300


class PrincipalCache:
    """Short-lived Redis cache of resolved principals.

    Entries expire after ``PRINCIPAL_CACHE_TTL_SECONDS`` (default 5 minutes),
    so role or membership changes in the identity store take effect within
    that window. Every Redis failure is logged and treated as a miss.
    """

    def __init__(self, redis_url: Optional[str] = None, ttl_seconds: Optional[int] = None):
        redis_url = redis_url or os.getenv("REDIS_URL", "redis://localhost:6379")
        self.redis_client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=5,
            socket_connect_timeout=5
        )
        if ttl_seconds is None:
            ttl_seconds = int(os.getenv("PRINCIPAL_CACHE_TTL_SECONDS", str(DEFAULT_TTL_SECONDS)))
        self.ttl_seconds = ttl_seconds
        self.key_prefix = "principal"

    def _key(self, principal_id: str) -> str:
        return f"{self.key_prefix}:{principal_id}"

    async def get(self, principal_id: str) -> Optional[Principal]:
        """Return the cached principal, or None on miss or error."""
        try:
            raw = await self.redis_client.get(self._key(principal_id))
        except redis.RedisError as e:
            logger.warning(f"Principal cache read failed: principal_id={principal_id}, error={e}")
            return None

        if raw is None:
            return None

        try:
            return _decode(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding malformed cache entry: principal_id={principal_id}, error={e}")
            await self.invalidate(principal_id)
            return None

    async def set(self, principal: Principal) -> None:
        """Cache ``principal`` under its user id."""
        principal_id = str(principal.user_id)
        try:
            await self.redis_client.set(
                self._key(principal_id),
                _encode(principal),
                ex=self.ttl_seconds
            )
            logger.debug(f"Cached principal: principal_id={principal_id}, ttl={self.ttl_seconds}")
        except redis.RedisError as e:
            logger.warning(f"Principal cache write failed: principal_id={principal_id}, error={e}")

    async def invalidate(self, principal_id: str) -> None:
        try:
            await self.redis_client.delete(self._key(principal_id))
        except redis.RedisError as e:
            logger.warning(f"Principal cache delete failed: principal_id={principal_id}, error={e}")

    async def close(self) -> None:
        await self.redis_client.aclose()


def _encode(principal: Principal) -> str:
    return json.dumps({
        "user_id": str(principal.user_id),
        "tenant_id": principal.tenant_id,
        "roles": principal.roles.value,
        "email": principal.email,
        "full_name": principal.full_name,
        "depot_id": principal.depot_id,
        "assigned_vehicle_id": principal.assigned_vehicle_id,
    })


def _decode(raw: str) -> Principal:
    data = json.loads(raw)
    return Principal(
        user_id=UUID(data["user_id"]),
        tenant_id=int(data["tenant_id"]),
        roles=Role(data["roles"]),
        email=data["email"],
        full_name=data.get("full_name"),
        depot_id=data.get("depot_id"),
        assigned_vehicle_id=data.get("assigned_vehicle_id"),
    )


_principal_cache: Optional[PrincipalCache] = None


def get_principal_cache() -> Optional[PrincipalCache]:
    """Return the process-wide cache, or None when REDIS_URL is unset."""
    global _principal_cache

    if _principal_cache is None and os.getenv("REDIS_URL"):
        _principal_cache = PrincipalCache()
        logger.info(f"Principal cache enabled: ttl={_principal_cache.ttl_seconds}s")

    return _principal_cache


async def close_principal_cache() -> None:
    global _principal_cache

    if _principal_cache is not None:
        await _principal_cache.close()
        _principal_cache = None
