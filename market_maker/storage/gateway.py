from __future__ import annotations

import logging

from redis import asyncio as redis
from redis.asyncio.client import Redis

from market_maker.common import log_event

from .redis_ops import RedisStorageOps
from .settings import StorageSettings


class StorageGateway(RedisStorageOps):
    def __init__(self, settings: StorageSettings, logger: logging.Logger) -> None:
        self.settings = settings
        self._logger = logger
        self._redis: Redis | None = None

    @property
    def bot_id(self) -> str:
        return self.settings.bot_id

    @property
    def run_id(self) -> str:
        return self.settings.bot_run_id

    async def connect(self) -> None:
        self._redis = redis.from_url(self.settings.redis_url, decode_responses=True)
        await self._redis.ping()
        log_event(
            self._logger,
            level="info",
            event="redis_connected",
            message="Connected to Redis",
        )

        runtime_config = await self.get_runtime_config()
        if not runtime_config:
            log_event(
                self._logger,
                level="warning",
                event="config_missing",
                message="Runtime config hash is empty; environment defaults apply",
                config_key=self.settings.redis_config_key,
            )

    async def healthcheck(self) -> None:
        redis_client = self._require_redis()
        await redis_client.ping()

    async def close(self) -> None:
        if self._redis is None:
            return
        close = getattr(self._redis, "aclose", None)
        if close:
            await close()
        else:
            await self._redis.close()
        self._redis = None
