"""In-memory intent queue for tests and single-process runs."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, List, Optional

from .base import ExecutionAdapter, StepIntent


class InMemoryExecutionAdapter(ExecutionAdapter):
    """Simple in-process queue per action type."""

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[StepIntent]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def publish(self, intent: StepIntent) -> None:
        async with self._lock:
            self._queues[intent.action_type].append(intent)

    def pending(self, action_type: Optional[str] = None) -> List[StepIntent]:
        """Queued intents, for one action type or all of them."""
        if action_type is not None:
            return list(self._queues.get(action_type, ()))
        return [intent for queue in self._queues.values() for intent in queue]

    def drain(self) -> List[StepIntent]:
        """Remove and return every queued intent."""
        intents = self.pending()
        self._queues.clear()
        return intents

    async def subscribe(
        self, action_type: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[StepIntent]:
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break

            async with self._lock:
                queue = self._queues[action_type]
                intent = queue.popleft() if queue else None
            if intent is not None:
                yield intent
                continue

            await asyncio.sleep(0.05)
