from __future__ import annotations

import dataclasses

import pytest
from membank.builder import MemoryBankBuilder
from membank.config import MembankConfig, MemoryBankConfig, StorageConfig
from membank.errors import ConfigError
from membank.storage import LocalStorageAdapter, RemoteStorageAdapter
from membank.types import MemoryType


def make_config(**storage) -> MembankConfig:
    return MembankConfig(
        bank=MemoryBankConfig(enable_auto_cleanup=False),
        storage=StorageConfig(**storage),
    )


class TestMemoryBankBuilder:
    async def test_build_memory_backend(self):
        bank = await MemoryBankBuilder(make_config(backend="memory")).build()
        try:
            assert isinstance(bank.service.adapter, LocalStorageAdapter)
            await bank.add_memory("x", MemoryType.FACT)
            assert (await bank.get_stats()).total_memories == 1
        finally:
            await bank.destroy()

    async def test_build_uses_bank_settings(self):
        config = dataclasses.replace(
            make_config(backend="memory", namespace="school"),
            bank=MemoryBankConfig(max_memories=7, enable_auto_cleanup=True),
        )
        bank = await MemoryBankBuilder(config).build()
        try:
            assert bank.config.max_memories == 7
            assert bank.config.storage_adapter is bank.service.adapter
            assert bank.service.adapter.collection_key == "school:memories"
            assert bank.scheduler is not None and bank.scheduler.running
        finally:
            await bank.destroy()
        assert bank.scheduler is None

    async def test_sqlite_backend_persists_across_builds(self, sqlite_db_path):
        config = make_config(backend="sqlite", sqlite_path=sqlite_db_path)

        bank = await MemoryBankBuilder(config).build()
        memory = await bank.add_memory("kept on disk", MemoryType.FACT)
        await bank.destroy()

        bank = await MemoryBankBuilder(config).build()
        try:
            stored = await bank.service.adapter.retrieve(memory.id)
            assert stored is not None
            assert stored.content == "kept on disk"
        finally:
            await bank.destroy()

    async def test_remote_adapter_reads_api_key_from_env(self, monkeypatch):
        monkeypatch.setenv("SCHOOL_MEMORY_KEY", "from-env")
        config = make_config(
            backend="remote",
            remote_url="https://memories.example.test/api/",
            remote_api_key_env="SCHOOL_MEMORY_KEY",
            remote_timeout_seconds=4.0,
        )
        adapter = await MemoryBankBuilder(config).build_adapter()
        try:
            assert isinstance(adapter, RemoteStorageAdapter)
            assert adapter.base_url == "https://memories.example.test/api"
            assert adapter.timeout == 4.0
            assert adapter._headers()["Authorization"] == "Bearer from-env"
        finally:
            await adapter.aclose()

    async def test_remote_adapter_without_key(self, monkeypatch):
        monkeypatch.delenv("MEMBANK_API_KEY", raising=False)
        adapter = await MemoryBankBuilder(make_config(backend="remote")).build_adapter()
        try:
            assert "Authorization" not in adapter._headers()
        finally:
            await adapter.aclose()

    async def test_unknown_backend(self):
        config = make_config()
        config = dataclasses.replace(
            config, storage=dataclasses.replace(config.storage, backend="floppy"),
        )
        with pytest.raises(ConfigError, match="Unknown storage backend"):
            await MemoryBankBuilder(config).build()

    async def test_redis_backend(self):
        pytest.importorskip("redis")
        config = make_config(backend="redis", redis_prefix="membank_test:")
        try:
            bank = await MemoryBankBuilder(config).build()
        except Exception:
            pytest.skip("Redis not available")
        try:
            await bank.clear_memories()
            await bank.add_memory("x", MemoryType.FACT)
            assert (await bank.get_stats()).total_memories == 1
            await bank.clear_memories()
        finally:
            await bank.destroy()
