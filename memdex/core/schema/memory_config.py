"""Configuration schemas for the memory engine using Pydantic models."""

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

from ..enumeration import EmbeddingBackend

DEFAULT_EXTENSIONS = [
    ".md",
    ".txt",
    ".json",
    ".yaml",
    ".yml",
    ".xml",
    ".cs",
    ".py",
    ".js",
    ".ts",
    ".html",
    ".css",
    ".sql",
    ".sh",
    ".ps1",
    ".bat",
    ".cmd",
]


class ChunkingConfig(BaseModel):
    """Configuration for splitting documents into chunks."""

    model_config = ConfigDict(extra="allow")

    max_tokens: int = Field(default=512)
    overlap_tokens: int = Field(default=50)
    min_tokens: int = Field(default=50)
    markdown_aware: bool = Field(default=True)


class EmbeddingModelConfig(BaseModel):
    """Configuration for the embedding backend and its identity."""

    model_config = ConfigDict(extra="allow")

    backend: EmbeddingBackend = Field(default=EmbeddingBackend.OPENAI)
    model_name: str = Field(default="")
    dimensions: int | None = Field(default=None)
    api_key: str | None = Field(default=None)
    base_url: str | None = Field(default=None)
    api_version: str | None = Field(default=None)
    timeout: float = Field(default=60.0)
    max_retries: int = Field(default=3)
    max_input_length: int = Field(default=8192)
    max_cache_size: int = Field(default=2000)


class SearchConfig(BaseModel):
    """Default search behaviour."""

    model_config = ConfigDict(extra="allow")

    max_results: int = Field(default=10)
    min_score: float = Field(default=0.35)
    vector_weight: float = Field(default=0.7)
    text_weight: float = Field(default=0.3)
    candidate_multiplier: int = Field(default=3)
    snippet_max_chars: int = Field(default=500)


class WatchConfig(BaseModel):
    """Configuration for the file watch service."""

    model_config = ConfigDict(extra="allow")

    enabled: bool = Field(default=False)
    debounce_ms: int = Field(default=2000)


class MemoryConfig(BaseModel):
    """Root configuration for a memory engine instance."""

    model_config = ConfigDict(extra="allow")

    data_dir: str = Field(default=".memdex")
    store_name: str = Field(default="memdex")
    db_filename: str = Field(default="memory.db")
    memory_dirname: str = Field(default="memory")
    sessions_dirname: str = Field(default="sessions")
    extensions: list[str] = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))

    init_logger: bool = Field(default=False)
    log_dir: str = Field(default="logs")
    log_level: str = Field(default="INFO")
    log_to_console: bool = Field(default=True)

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    embedding: EmbeddingModelConfig = Field(default_factory=EmbeddingModelConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / self.db_filename

    @property
    def memory_dir(self) -> Path:
        return Path(self.data_dir) / self.memory_dirname

    @property
    def sessions_dir(self) -> Path:
        return Path(self.data_dir) / self.sessions_dirname

    @classmethod
    def from_file(cls, config_path: str | Path, **overrides: Any) -> "MemoryConfig":
        """Load configuration from a YAML or JSON file.

        Keyword overrides are applied on top of the file's top-level keys.
        """
        config_path = Path(config_path)
        suffix = config_path.suffix.lower()

        with config_path.open(encoding="utf-8") as f:
            if suffix in [".yaml", ".yml"]:
                config_dict = yaml.safe_load(f) or {}
            elif suffix == ".json":
                config_dict = json.load(f)
            else:
                raise ValueError(f"Unsupported file format: {suffix}")

        config_dict.update(overrides)
        return cls.model_validate(config_dict)
