"""Configuration loading from environment variables and mneme.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_DATA_DIR = Path.home() / ".mneme" / "data"
_CONFIG_FILENAME = "mneme.toml"


@dataclass
class EngineConfig:
    """Configuration for the LLM engine."""

    name: str = "anthropic_api"
    model: str | None = None
    base_url: str | None = None
    api_key_env: str | None = None
    timeout: int = 120
    max_tokens: int = 1024
    temperature: float = 0.7


@dataclass
class MemoryConfig:
    """Context window and summarization settings."""

    recent_messages_count: int = 10
    summary_update_frequency: int = 5
    summary_temperature: float = 0.3
    summary_max_tokens: int = 2048

    def __post_init__(self) -> None:
        if self.recent_messages_count < 1:
            raise ValueError("recent_messages_count must be >= 1")
        if self.summary_update_frequency < 1:
            raise ValueError("summary_update_frequency must be >= 1")


@dataclass
class MnemeConfig:
    """Top-level Mneme configuration."""

    engine: EngineConfig = field(default_factory=EngineConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    data_dir: Path = _DEFAULT_DATA_DIR
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> MnemeConfig:
    """Load configuration from environment variables and optional mneme.toml.

    Priority: environment variables > mneme.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.mneme/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".mneme" / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    engine_data = file_data.get("engine", {})
    memory_data = file_data.get("memory", {})

    config = MnemeConfig(
        engine=EngineConfig(
            name=os.getenv("MNEME_ENGINE", engine_data.get("name", "anthropic_api")),
            model=os.getenv("MNEME_MODEL", engine_data.get("model")),
            base_url=os.getenv("MNEME_BASE_URL", engine_data.get("base_url")),
            api_key_env=engine_data.get("api_key_env"),
            timeout=int(os.getenv("MNEME_TIMEOUT", engine_data.get("timeout", 120))),
            max_tokens=int(os.getenv("MNEME_MAX_TOKENS", engine_data.get("max_tokens", 1024))),
            temperature=float(engine_data.get("temperature", 0.7)),
        ),
        memory=MemoryConfig(
            recent_messages_count=int(
                os.getenv("MNEME_RECENT_MESSAGES", memory_data.get("recent_messages_count", 10))
            ),
            summary_update_frequency=int(
                os.getenv(
                    "MNEME_SUMMARY_FREQUENCY", memory_data.get("summary_update_frequency", 5)
                )
            ),
            summary_temperature=float(memory_data.get("summary_temperature", 0.3)),
            summary_max_tokens=int(memory_data.get("summary_max_tokens", 2048)),
        ),
        data_dir=Path(
            os.getenv("MNEME_DATA_DIR", file_data.get("data_dir", str(_DEFAULT_DATA_DIR)))
        ).expanduser(),
        log_level=os.getenv("MNEME_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
