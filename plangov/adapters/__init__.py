"""Execution adapter factory."""

from __future__ import annotations

import os
from typing import Optional

from ..config import PlangovConfig
from .base import ExecutionAdapter, StepIntent
from .inmemory import InMemoryExecutionAdapter


def get_execution_adapter(
    backend: Optional[str] = None, config: Optional[PlangovConfig] = None
) -> ExecutionAdapter:
    """Factory function to get the configured execution adapter."""

    config = config or PlangovConfig()
    backend = (
        backend or os.getenv("PLANGOV_EXECUTION_BACKEND") or config.execution.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryExecutionAdapter()
    elif backend == "redis":
        from .redis import RedisExecutionAdapter

        redis_conf = config.execution.redis
        return RedisExecutionAdapter(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
            queue_prefix=config.execution.queue_prefix,
        )
    else:
        raise ValueError(f"Unsupported execution backend: {backend}")


__all__ = [
    "ExecutionAdapter",
    "InMemoryExecutionAdapter",
    "StepIntent",
    "get_execution_adapter",
]
