"""
Provider Credential Cache
Short-TTL, single-use capability cache keyed by provider task id
"""

from typing import Optional

import redis.asyncio as redis

from ..core.config import get_settings

settings = get_settings()

KEY_PREFIX = "beatmarket:provider-key:"


class CredentialCache:
    """
    Holds a caller's provider credential between generation dispatch and the
    completion callback so post-processing can start without the caller.

    Entries expire after PROVIDER_KEY_TTL_SECONDS and are deleted on first read.
    """

    def __init__(self, client: redis.Redis, ttl_seconds: int = settings.PROVIDER_KEY_TTL_SECONDS):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(task_id: str) -> str:
        return f"{KEY_PREFIX}{task_id}"

    async def store(self, task_id: str, api_key: str) -> None:
        await self.client.set(self._key(task_id), api_key, ex=self.ttl_seconds)

    async def consume(self, task_id: str) -> Optional[str]:
        """Atomically read and delete the credential for a task"""
        value = await self.client.getdel(self._key(task_id))
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)
