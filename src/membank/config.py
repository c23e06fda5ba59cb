from __future__ import annotations

import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any

from membank.errors import ConfigError

if TYPE_CHECKING:
    from membank.protocols.storage import MemoryStorageAdapter

STORAGE_BACKENDS = ("memory", "sqlite", "redis", "remote")


def _load_toml(path: Path) -> dict:
    """Load a TOML file, returning empty dict if missing."""
    if not path.exists():
        return {}
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Could not read config file {path}: {exc}") from exc


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge override into base (1 level deep for TOML sections)."""
    merged = dict(base)
    for key, val in override.items():
        if (
            key in merged
            and isinstance(merged[key], dict)
            and isinstance(val, dict)
        ):
            merged[key] = {**merged[key], **val}
        else:
            merged[key] = val
    return merged


def _pick(section: dict, dc: type) -> dict:
    names = {f.name for f in fields(dc) if f.init}
    return {k: v for k, v in section.items() if k in names}


@dataclass(frozen=True, slots=True)
class MemoryBankConfig:
    """Capacity and cleanup settings owned by one MemoryBank instance.

    ``storage_adapter`` is the bound backing store; it is excluded from
    equality and repr so configs compare by their values alone.
    """
    max_memories: int = 1000
    default_importance: float = 0.5
    enable_auto_cleanup: bool = True
    cleanup_threshold: float = 0.8
    cleanup_interval_seconds: float = 3600.0
    storage_adapter: MemoryStorageAdapter | None = field(
        default=None, compare=False, repr=False,
    )

    def __post_init__(self) -> None:
        if isinstance(self.max_memories, bool) or not isinstance(self.max_memories, int):
            raise ConfigError(f"max_memories must be an integer, got {self.max_memories!r}")
        for name in ("default_importance", "cleanup_threshold", "cleanup_interval_seconds"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"{name} must be a number, got {value!r}")
        if self.max_memories < 1:
            raise ConfigError(f"max_memories must be >= 1, got {self.max_memories}")
        if not 0.0 <= self.default_importance <= 1.0:
            raise ConfigError(
                f"default_importance must be within [0, 1], got {self.default_importance}"
            )
        if not 0.0 < self.cleanup_threshold <= 1.0:
            raise ConfigError(
                f"cleanup_threshold must be within (0, 1], got {self.cleanup_threshold}"
            )
        if self.cleanup_interval_seconds <= 0:
            raise ConfigError(
                "cleanup_interval_seconds must be positive, "
                f"got {self.cleanup_interval_seconds}"
            )

    @property
    def cleanup_trigger(self) -> float:
        """Memory count above which the auto-cleanup check fires."""
        return self.max_memories * self.cleanup_threshold


@dataclass(frozen=True, slots=True)
class StorageConfig:
    backend: str = "sqlite"
    namespace: str = "memory_bank"
    sqlite_path: str = ".membank/membank.db"
    redis_url: str = "redis://localhost:6379"
    redis_prefix: str = "membank:"
    remote_url: str = "http://localhost:8080/api"
    remote_api_key_env: str = "MEMBANK_API_KEY"
    remote_timeout_seconds: float = 10.0


@dataclass(frozen=True, slots=True)
class MembankConfig:
    """Top-level configuration, parsed from membank.toml."""
    bank: MemoryBankConfig = field(default_factory=MemoryBankConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log_level: str = "INFO"

    @classmethod
    def from_toml(
        cls, path: Path | str = "membank.toml"
    ) -> MembankConfig:
        path = Path(path)
        raw = _load_toml(path)
        return cls._from_raw(raw)

    @classmethod
    def load(
        cls, project_dir: Path | str | None = None
    ) -> MembankConfig:
        """Load config with global → project layering.

        Resolution order (later wins):
        1. Built-in defaults
        2. ~/.membank/config.toml (global)
        3. .membank/config.toml or membank.toml (project)
        """
        global_path = Path.home() / ".membank" / "config.toml"

        project_dir = (
            Path.cwd() if project_dir is None else Path(project_dir)
        )

        project_path = project_dir / ".membank" / "config.toml"
        if not project_path.exists():
            project_path = project_dir / "membank.toml"

        global_raw = _load_toml(global_path)
        project_raw = _load_toml(project_path)
        merged = _deep_merge(global_raw, project_raw)

        return cls._from_raw(merged)

    @classmethod
    def _from_raw(cls, raw: dict[str, Any]) -> MembankConfig:
        """Build MembankConfig from a raw TOML dict."""
        bank_raw = {
            k: v for k, v in raw.get("bank", {}).items()
            if k != "storage_adapter"
        }
        storage_raw = raw.get("storage", {})

        storage = StorageConfig(**_pick(storage_raw, StorageConfig))
        if storage.backend not in STORAGE_BACKENDS:
            raise ConfigError(
                f"Unknown storage backend {storage.backend!r} "
                f"(expected one of: {', '.join(STORAGE_BACKENDS)})"
            )

        return cls(
            bank=MemoryBankConfig(**_pick(bank_raw, MemoryBankConfig)),
            storage=storage,
            log_level=raw.get("logging", {}).get("level", "INFO"),
        )
