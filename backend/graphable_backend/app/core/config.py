"""Centralized configuration management for Graphable."""

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from graphpipe import EngineOptions, PoolOptions

DEFAULT_DATA_ROOT = Path.home() / ".graphable"


class EngineSettings(BaseModel):
    """Limits applied to every execution request."""

    max_parallel_nodes: int = Field(default=4, ge=1, description="Concurrent SQL nodes per request")
    statement_timeout_seconds: float = Field(default=30.0, gt=0, description="Per-statement timeout")
    request_timeout_seconds: float = Field(default=60.0, gt=0, description="Deadline for a whole request")
    max_rows: int = Field(default=1000, ge=1, description="Rows returned per node")
    max_parallel_tiles: int = Field(default=4, ge=1, description="Dashboard tiles rendered at once")

    def to_options(self, max_query_length: int) -> EngineOptions:
        return EngineOptions(
            max_parallel_nodes=self.max_parallel_nodes,
            statement_timeout_seconds=self.statement_timeout_seconds,
            request_timeout_seconds=self.request_timeout_seconds,
            max_rows=self.max_rows,
            max_query_length=max_query_length,
        )


class ConnectionSettings(BaseModel):
    """Pooling and secret caching for target databases."""

    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=5, ge=0)
    pool_timeout_seconds: float = Field(default=10.0, gt=0, description="Checkout wait before PoolExhausted")
    connect_timeout_seconds: float = Field(default=5.0, gt=0)
    secret_cache_ttl_seconds: float = Field(default=300.0, ge=0, description="Resolved secret lifetime")

    def to_options(self) -> PoolOptions:
        return PoolOptions(
            pool_size=self.pool_size,
            max_overflow=self.max_overflow,
            pool_timeout_seconds=self.pool_timeout_seconds,
            connect_timeout_seconds=self.connect_timeout_seconds,
        )


class ExplorerSettings(BaseModel):
    """Ad-hoc explorer limits."""

    default_page_size: int = Field(default=100, ge=1)
    max_page_size: int = Field(default=1000, ge=1)
    max_sample_rows: int = Field(default=100, ge=1)
    max_query_length: int = Field(default=10000, ge=1)


class DataDirectory(BaseModel):
    """Directory layout for Graphable artifacts."""

    root: Path = Field(default_factory=lambda: DEFAULT_DATA_ROOT)
    graphs: Path = Field(default_factory=lambda: DEFAULT_DATA_ROOT / "graphs")
    data_sources: Path = Field(default_factory=lambda: DEFAULT_DATA_ROOT / "data_sources")

    def ensure(self) -> None:
        """Create the necessary directories if they don't exist."""

        for directory in {self.root, self.graphs, self.data_sources}:
            directory.mkdir(parents=True, exist_ok=True)


class GraphableSettings(BaseSettings):
    """Application-wide settings loaded from env, .env, and defaults."""

    data_dir: DataDirectory = Field(default_factory=DataDirectory)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    connections: ConnectionSettings = Field(default_factory=ConnectionSettings)
    explorer: ExplorerSettings = Field(default_factory=ExplorerSettings)
    log_level: str = Field(default="INFO", description="Log verbosity")

    model_config = SettingsConfigDict(
        env_prefix="GRAPHABLE_",
        env_file=".env",
        extra="ignore",
        env_nested_delimiter="__",
    )

    def prepare_environment(self) -> None:
        """Ensure directories exist and derive dependent settings."""

        root_override = os.getenv("GRAPHABLE_DATA_DIR__ROOT")
        if root_override:
            root = Path(root_override)
            self.data_dir.root = root
            if not os.getenv("GRAPHABLE_DATA_DIR__GRAPHS"):
                self.data_dir.graphs = root / "graphs"
            if not os.getenv("GRAPHABLE_DATA_DIR__DATA_SOURCES"):
                self.data_dir.data_sources = root / "data_sources"

        self.data_dir.ensure()


@lru_cache(maxsize=1)
def get_settings() -> GraphableSettings:
    """Return a cached settings instance."""

    settings = GraphableSettings()
    settings.prepare_environment()
    return settings
