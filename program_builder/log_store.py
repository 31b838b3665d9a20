from __future__ import annotations

from typing import AsyncGenerator

import redis.asyncio as redis


class LogStore:
    """Redis-backed build log: a list per job plus a pubsub wake-up channel."""

    def __init__(self, client: redis.Redis, poll_interval: float = 1.0) -> None:
        self.redis = client
        self.poll_interval = poll_interval
        self._complete_key = "buildlog:complete:"
        self._list_key = "buildlog:list:"
        self._channel_key = "buildlog:channel:"

    def _list(self, job_id: str) -> str:
        return f"{self._list_key}{job_id}"

    def _complete(self, job_id: str) -> str:
        return f"{self._complete_key}{job_id}"

    def _channel(self, job_id: str) -> str:
        return f"{self._channel_key}{job_id}"

    async def register(self, job_id: str) -> None:
        await self.redis.delete(self._list(job_id), self._complete(job_id))

    async def append(self, job_id: str, text: str) -> None:
        await self.redis.rpush(self._list(job_id), text)  # type: ignore[misc]
        await self.redis.publish(self._channel(job_id), "1")  # type: ignore[misc]

    async def mark_complete(self, job_id: str) -> None:
        await self.redis.set(self._complete(job_id), "1")
        await self.redis.publish(self._channel(job_id), "1")  # type: ignore[misc]

    async def is_complete(self, job_id: str) -> bool:
        return bool(await self.redis.exists(self._complete(job_id)))

    async def tail(self, job_id: str) -> list[str]:
        raw = await self.redis.lrange(self._list(job_id), 0, -1)  # type: ignore[misc]
        return [self._decode(item) for item in raw]

    async def stream(self, job_id: str, start_at: int = 0) -> AsyncGenerator[str, None]:
        # subscribe before reading so a line appended mid-read still wakes us
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self._channel(job_id))
        idx = start_at
        try:
            while True:
                # read the flag first: once set, the list below is final
                complete = await self.is_complete(job_id)
                buffer = await self.redis.lrange(self._list(job_id), idx, -1)  # type: ignore[misc]
                for line in buffer:
                    yield self._decode(line)
                    idx += 1
                if complete:
                    return
                await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=self.poll_interval
                )
        finally:
            await pubsub.unsubscribe(self._channel(job_id))
            await pubsub.aclose()

    @staticmethod
    def _decode(value: str | bytes) -> str:
        if isinstance(value, bytes):
            return value.decode()
        return str(value)
