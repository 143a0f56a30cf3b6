"""Configuration management for Ledger Vault.

Centralizes all configurable parameters with environment variable support
and runtime overrides.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional, TypeVar
import json


def _env_int(key: str, default: int) -> int:
    """Get integer from environment variable."""
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    """Get boolean from environment variable."""
    val = os.environ.get(key)
    if val is None:
        return default
    return val.lower() in ("true", "1", "yes", "on")


def _env_str(key: str, default: str) -> str:
    """Get string from environment variable."""
    return os.environ.get(key, default)


@dataclass
class BatchConfig:
    """Configuration for batch orchestration."""

    # Items prepared (uploaded) concurrently before the next chunk starts
    chunk_size: int = field(default_factory=lambda: _env_int("LV_BATCH_CHUNK_SIZE", 50))

    # Concurrent transaction posts for membership invites
    max_concurrent_invites: int = field(default_factory=lambda: _env_int("LV_BATCH_MAX_CONCURRENT_INVITES", 10))


@dataclass
class FileConfig:
    """Configuration for file transfer."""

    # Files larger than this are uploaded as numbered chunks
    chunk_size_bytes: int = field(default_factory=lambda: _env_int("LV_FILE_CHUNK_SIZE", 5 * 1024 * 1024))  # 5MB
    default_mime_type: str = field(default_factory=lambda: _env_str("LV_FILE_DEFAULT_MIME_TYPE", "application/octet-stream"))


@dataclass
class ServiceConfig:
    """Configuration shared by all services."""

    default_should_decrypt: bool = field(default_factory=lambda: _env_bool("LV_DEFAULT_SHOULD_DECRYPT", True))
    protocol_name: str = field(default_factory=lambda: _env_str("LV_PROTOCOL_NAME", "Ledger-Vault"))
    protocol_version: str = field(default_factory=lambda: _env_str("LV_PROTOCOL_VERSION", "2.0"))


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = field(default_factory=lambda: _env_str("LV_LOG_LEVEL", "INFO"))
    json_format: bool = field(default_factory=lambda: _env_bool("LV_LOG_JSON", False))
    log_dir: str = field(default_factory=lambda: _env_str("LV_LOG_DIR", ""))
    console_output: bool = field(default_factory=lambda: _env_bool("LV_LOG_CONSOLE", True))


@dataclass
class Config:
    """Main configuration container for Ledger Vault."""

    batch: BatchConfig = field(default_factory=BatchConfig)
    file: FileConfig = field(default_factory=FileConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        from dataclasses import asdict
        return asdict(self)

    def to_json(self, indent: int = 2) -> str:
        """Convert configuration to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        """Create configuration from dictionary."""
        return cls(
            batch=BatchConfig(**d.get("batch", {})) if d.get("batch") else BatchConfig(),
            file=FileConfig(**d.get("file", {})) if d.get("file") else FileConfig(),
            service=ServiceConfig(**d.get("service", {})) if d.get("service") else ServiceConfig(),
            logging=LoggingConfig(**d.get("logging", {})) if d.get("logging") else LoggingConfig(),
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Config":
        """Create configuration from JSON string."""
        return cls.from_dict(json.loads(json_str))

    @classmethod
    def from_file(cls, path: str) -> "Config":
        """Load configuration from JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_json(f.read())

    def save(self, path: str) -> None:
        """Save configuration to JSON file."""
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.to_json())


# Global configuration instance (singleton pattern)
_global_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance.

    Creates a default configuration if one doesn't exist.
    """
    global _global_config
    if _global_config is None:
        _global_config = Config()
    return _global_config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _global_config
    _global_config = config


def load_config(path: str) -> Config:
    """Load configuration from file and set as global."""
    config = Config.from_file(path)
    set_config(config)
    return config


def reset_config() -> None:
    """Reset global configuration to default."""
    global _global_config
    _global_config = None


T = TypeVar("T")


def merge_options(*layers: Optional[T]) -> T:
    """Merge option dataclasses of one type, later layers winning.

    Call as ``merge_options(service_default, per_call_default, caller)``.
    A field set to ``None`` in a later layer leaves the earlier value in
    place, so callers only override what they pass explicitly.
    """
    present = [layer for layer in layers if layer is not None]
    if not present:
        raise ValueError("merge_options needs at least one options object")
    merged = present[0]
    for layer in present[1:]:
        updates = {f.name: getattr(layer, f.name) for f in fields(layer) if getattr(layer, f.name) is not None}
        merged = replace(merged, **updates)
    return merged
