from __future__ import annotations

import dataclasses
import os
from typing import TYPE_CHECKING

from membank.bank import MemoryBank
from membank.errors import ConfigError
from membank.logging import get_logger
from membank.storage.local import LocalStorageAdapter

if TYPE_CHECKING:
    from membank.config import MembankConfig
    from membank.protocols.storage import MemoryStorageAdapter

logger = get_logger("builder")


class MemoryBankBuilder:
    """Build a started MemoryBank from configuration.

    Usage:
        config = MembankConfig.load()
        bank = await MemoryBankBuilder(config).build()
        ...
        await bank.destroy()
    """

    def __init__(self, config: MembankConfig) -> None:
        self._config = config

    async def build(self) -> MemoryBank:
        adapter = await self.build_adapter()
        bank_config = dataclasses.replace(self._config.bank, storage_adapter=adapter)
        bank = MemoryBank(bank_config, owns_adapter=True)
        await bank.start()
        return bank

    async def build_adapter(self) -> MemoryStorageAdapter:
        backend = self._config.storage.backend
        logger.info("Building memory bank with %s storage", backend)

        if backend == "memory":
            return self._build_memory()
        elif backend == "sqlite":
            return await self._build_sqlite()
        elif backend == "redis":
            return await self._build_redis()
        elif backend == "remote":
            return self._build_remote()
        else:
            raise ConfigError(f"Unknown storage backend: {backend!r}")

    def _build_memory(self) -> LocalStorageAdapter:
        from membank.backends.memory import InProcessStateStore
        return LocalStorageAdapter(
            InProcessStateStore(), namespace=self._config.storage.namespace,
        )

    async def _build_sqlite(self) -> LocalStorageAdapter:
        from membank.backends.sqlite import SQLiteStateStore
        store = await SQLiteStateStore.create(self._config.storage.sqlite_path)
        return _ClosingLocalAdapter(store, namespace=self._config.storage.namespace)

    async def _build_redis(self) -> LocalStorageAdapter:
        from membank.backends.redis import RedisStateStore
        storage = self._config.storage
        store = await RedisStateStore.create(storage.redis_url, prefix=storage.redis_prefix)
        return _ClosingLocalAdapter(store, namespace=storage.namespace)

    def _build_remote(self) -> MemoryStorageAdapter:
        from membank.storage.remote import RemoteStorageAdapter
        storage = self._config.storage
        api_key = os.environ.get(storage.remote_api_key_env) or None
        if api_key is None:
            logger.debug("No API key in $%s, sending unauthenticated requests",
                         storage.remote_api_key_env)
        return RemoteStorageAdapter(
            storage.remote_url,
            api_key=api_key,
            timeout=storage.remote_timeout_seconds,
        )


class _ClosingLocalAdapter(LocalStorageAdapter):
    """Local adapter that closes its state store connection on ``aclose``."""

    async def aclose(self) -> None:
        await self._store.close()  # type: ignore[attr-defined]
