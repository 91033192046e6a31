"""Redis intent queue for handing steps to out-of-process executors."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional

import redis.asyncio as redis
from pydantic import ValidationError

from .base import ExecutionAdapter, StepIntent

logger = logging.getLogger(__name__)


class RedisExecutionAdapter(ExecutionAdapter):
    """Redis lists, one per action type, acting as intent queues."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        queue_prefix: str = "plangov:intents",
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.queue_prefix = queue_prefix
        self._redis: Optional[Any] = None

    def queue_name(self, action_type: str) -> str:
        return f"{self.queue_prefix}:{action_type}"

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, intent: StepIntent) -> None:
        if not self._redis:
            await self.connect()
        await self._redis.lpush(self.queue_name(intent.action_type), intent.to_json())

    async def subscribe(
        self, action_type: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[StepIntent]:
        if not self._redis:
            await self.connect()

        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break

            result = await self._redis.brpop(self.queue_name(action_type), timeout=1)
            if result:
                _, raw = result
                try:
                    yield StepIntent.from_json(raw)
                except ValidationError as e:
                    logger.warning(f"Dropping malformed intent on {action_type}: {e}")
                continue

            await asyncio.sleep(0.01)
